from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..errors import StateNotFoundError, StatePersistenceError, StateSchemaValidationError
from .base import StateSideEffect


logger = logging.getLogger(__name__)

INSTANCES_DIR = "instances"
STATE_FILE = "state.yml"


class LocalStateSideEffect(StateSideEffect):
    """
    Filesystem persistence for instance states.

    Layout: `<data_root_dir>/instances/<name>/state.yml`. Writes go to a
    temporary file in the same directory and are moved into place with
    `os.replace`, so readers never see a partially written snapshot.
    """

    def __init__(self, data_root_dir: os.PathLike[str] | str) -> None:
        self.data_root_dir = Path(data_root_dir).expanduser()

    def instance_dir(self, name: str) -> Path:
        return self.data_root_dir / INSTANCES_DIR / name

    def state_path(self, name: str) -> Path:
        return self.instance_dir(name) / STATE_FILE

    # -------- StateSideEffect --------
    async def list_instances(self) -> List[str]:
        return await asyncio.to_thread(self._list_sync)

    async def _write_record(self, name: str, record: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_sync, name, record)

    async def _read_record(self, name: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self._read_sync, name)

    async def _delete_record(self, name: str) -> None:
        await asyncio.to_thread(self._delete_sync, name)

    # -------- Blocking helpers --------
    def _list_sync(self) -> List[str]:
        root = self.data_root_dir / INSTANCES_DIR
        if not root.is_dir():
            return []
        return sorted(p.name for p in root.iterdir() if (p / STATE_FILE).is_file())

    def _write_sync(self, name: str, record: Dict[str, Any]) -> None:
        path = self.state_path(name)
        logger.debug("Writing state of %s to %s", name, path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                    yaml.safe_dump(record, handle, sort_keys=False)
                os.replace(tmp_path, path)
            finally:
                tmp_path.unlink(missing_ok=True)
        except OSError as exc:
            raise StatePersistenceError(f"Failed to write state file {path}: {exc}") from exc

    def _read_sync(self, name: str) -> Dict[str, Any]:
        path = self.state_path(name)
        logger.debug("Reading state of %s from %s", name, path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise StateNotFoundError(name, f"State file not found for instance '{name}': {path}") from exc
        except OSError as exc:
            raise StatePersistenceError(f"Failed to read state file {path}: {exc}") from exc

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise StateSchemaValidationError(f"Failed to parse state file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StateSchemaValidationError(f"State file {path} does not contain a mapping")
        return data

    def _delete_sync(self, name: str) -> None:
        target = self.instance_dir(name)
        if not target.exists():
            logger.debug("No state directory to remove for %s", name)
            return
        logger.debug("Removing state directory %s", target)
        try:
            shutil.rmtree(target)
        except OSError as exc:
            raise StatePersistenceError(f"Failed to remove state directory {target}: {exc}") from exc


__all__ = ["LocalStateSideEffect", "INSTANCES_DIR", "STATE_FILE"]
