"""Logging setup: plain text or JSON lines on stderr."""

import logging
import sys
from typing import Optional

from pythonjsonlogger import json as jsonlogger


TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(
    level: str | int = "INFO",
    *,
    json_format: bool = False,
    logger_name: Optional[str] = None,
) -> logging.Logger:
    """Attach a single stderr handler to `logger_name` (root by default).

    Calling it again replaces the handler installed by a previous call
    instead of stacking handlers.
    """
    target = logging.getLogger(logger_name)
    for handler in list(target.handlers):
        if getattr(handler, "_instance_state_handler", False):
            target.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(
            jsonlogger.JsonFormatter(JSON_FORMAT, rename_fields={"levelname": "level", "name": "logger"})
        )
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    handler._instance_state_handler = True  # type: ignore[attr-defined]

    target.addHandler(handler)
    target.setLevel(level if isinstance(level, int) else level.upper())
    return target


def configure_logging_from_config(config) -> logging.Logger:
    """Apply `log_level`/`log_json` of a StateStoreConfig to the root logger."""
    return configure_logging(config.log_level, json_format=config.log_json)
