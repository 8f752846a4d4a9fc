from __future__ import annotations

from typing import List, Optional, Sequence

from pydantic import ValidationError


class StateError(RuntimeError):
    """Base error for instance state handling."""


class StateUninitializedError(StateError):
    """A StateWriter was used before `set_state()`."""


class StateNotFoundError(StateError, LookupError):
    """No persisted state exists for the requested instance."""

    def __init__(self, name: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"No state found for instance '{name}'")
        self.name = name


class StateAlreadyExistsError(StateError):
    """Raised when initializing an instance whose state already exists."""


class StateSchemaValidationError(StateError, ValueError):
    """
    Raw or mutated state does not conform to the expected schema.

    `fields` holds the offending field paths in dotted form
    (e.g. "provision.input.disk_size").
    """

    def __init__(self, message: str, fields: Sequence[str] = ()) -> None:
        self.fields: List[str] = list(fields)
        if self.fields:
            message = f"{message}: invalid field(s) {', '.join(self.fields)}"
        super().__init__(message)

    @classmethod
    def from_validation_error(
        cls, ve: ValidationError, *, prefix: str = "", message: str = "State schema validation failed"
    ) -> "StateSchemaValidationError":
        fields: List[str] = []
        for err in ve.errors():
            path = ".".join(str(p) for p in err.get("loc", ()))
            full = f"{prefix}.{path}" if prefix and path else (prefix or path or "<root>")
            if full not in fields:
                fields.append(full)
        return cls(message, fields)


class StatePersistenceError(StateError):
    """The storage backend failed to write, read or delete a snapshot."""


__all__ = [
    "StateError",
    "StateUninitializedError",
    "StateNotFoundError",
    "StateAlreadyExistsError",
    "StateSchemaValidationError",
    "StatePersistenceError",
]
