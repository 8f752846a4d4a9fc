from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..errors import StateNotFoundError, StateSchemaValidationError
from ..models import INSTANCE_NAME_PATTERN, InstanceStateV1


_INSTANCE_NAME_RE = re.compile(INSTANCE_NAME_PATTERN)


def validate_instance_name(name: str) -> str:
    """Reject names that could escape the storage root or build odd keys."""
    if not isinstance(name, str) or not _INSTANCE_NAME_RE.match(name) or name in (".", ".."):
        raise StateSchemaValidationError(f"Invalid instance name: {name!r}", ["name"])
    return name


class StateSideEffect(ABC):
    """
    Durability boundary for instance states.

    Contract
    - `persist_state(state)` replaces the snapshot stored under `state.name`.
      A single call is all-or-nothing and idempotent.
    - `load_raw_state(name)` returns the last persisted snapshot as a plain
      mapping, or raises `StateNotFoundError`.
    - `destroy_state(name)` deletes the snapshot and any instance-scoped data.

    Implementations do no locking: the last `persist_state` call wins.
    """

    async def persist_state(self, state: InstanceStateV1) -> None:
        validate_instance_name(state.name)
        await self._write_record(state.name, state.to_record())

    async def load_raw_state(self, name: str) -> Dict[str, Any]:
        validate_instance_name(name)
        return await self._read_record(name)

    async def destroy_state(self, name: str) -> None:
        validate_instance_name(name)
        await self._delete_record(name)

    async def instance_exists(self, name: str) -> bool:
        try:
            await self.load_raw_state(name)
        except StateNotFoundError:
            return False
        return True

    @abstractmethod
    async def list_instances(self) -> List[str]:
        """Names of all instances with a persisted snapshot."""

    @abstractmethod
    async def _write_record(self, name: str, record: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def _read_record(self, name: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def _delete_record(self, name: str) -> None: ...


__all__ = ["StateSideEffect", "validate_instance_name"]
