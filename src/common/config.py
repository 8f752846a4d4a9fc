from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from state.side_effects import LocalStateSideEffect, S3StateSideEffect, StateSideEffect


# Environment variable names
ENV_BACKEND = "STATE_BACKEND"  # "local" (default) or "s3"
ENV_DATA_DIR = "STATE_DATA_DIR"
ENV_BUCKET = "STATE_BUCKET"
ENV_PREFIX = "STATE_PREFIX"
ENV_FERNET_KEY = "STATE_FERNET_KEY"
ENV_REGION = "AWS_REGION"
ENV_LOG_LEVEL = "STATE_LOG_LEVEL"
ENV_LOG_JSON = "STATE_LOG_JSON"

DEFAULT_DATA_DIR = "~/.instance-state"
BACKENDS = ("local", "s3")


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    val = _getenv(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class StateStoreConfig:
    backend: str = "local"
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    bucket: Optional[str] = None
    prefix: str = ""
    fernet_key: Optional[str] = None
    region: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "StateStoreConfig":
        backend = (_getenv(ENV_BACKEND, "local") or "local").strip().lower()
        if backend not in BACKENDS:
            raise RuntimeError(f"Unsupported {ENV_BACKEND}={backend!r}, expected one of: {', '.join(BACKENDS)}")

        bucket = _getenv(ENV_BUCKET)
        if backend == "s3" and not bucket:
            raise RuntimeError(f"Missing required environment variables for S3 state store: {ENV_BUCKET}")

        return cls(
            backend=backend,
            data_dir=Path(_getenv(ENV_DATA_DIR, DEFAULT_DATA_DIR) or DEFAULT_DATA_DIR).expanduser(),
            bucket=bucket,
            prefix=_getenv(ENV_PREFIX, "") or "",
            fernet_key=_getenv(ENV_FERNET_KEY),
            region=_getenv(ENV_REGION),
            log_level=(_getenv(ENV_LOG_LEVEL, "INFO") or "INFO").upper(),
            log_json=_getenv_bool(ENV_LOG_JSON),
        )


def build_side_effect(config: StateStoreConfig, *, s3: Optional[object] = None) -> StateSideEffect:
    """Instantiate the storage backend described by `config`."""
    if config.backend == "s3":
        if not config.bucket:
            raise RuntimeError(f"Missing required configuration: {ENV_BUCKET}")
        return S3StateSideEffect(
            s3=s3,
            bucket=config.bucket,
            prefix=config.prefix,
            fernet_key=config.fernet_key,
            region_name=config.region,
        )
    return LocalStateSideEffect(config.data_dir)


__all__ = ["StateStoreConfig", "build_side_effect"]
