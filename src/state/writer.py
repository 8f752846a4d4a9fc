from __future__ import annotations

import copy
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generic, Mapping, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import StateSchemaValidationError, StateUninitializedError
from .models import STATE_MAX_EVENTS, InstanceEvent, InstanceEventEnum, InstanceStateV1
from .side_effects.base import StateSideEffect


logger = logging.getLogger(__name__)

ST = TypeVar("ST", bound=InstanceStateV1)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def deep_merge(base: Mapping[str, Any], partial: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return `base` with `partial` merged into it recursively.

    Mappings merge key by key; any other value (scalars, lists, None)
    present in `partial` replaces the existing one wholesale. Neither
    argument is modified.
    """
    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in partial.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _as_mapping(value: Any) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def _partial_mapping(partial: Any) -> Mapping[str, Any]:
    if isinstance(partial, BaseModel):
        return partial.model_dump(exclude_unset=True)
    if isinstance(partial, Mapping):
        return partial
    raise TypeError(f"Partial update must be a mapping, got {type(partial).__name__}")


def _event_timestamp_ms(at_date: Optional[datetime], clock: Callable[[], float]) -> int:
    # Truncated toward negative infinity; naive datetimes are local time
    if at_date is not None:
        aware = at_date if at_date.tzinfo is not None else at_date.astimezone()
        return (aware - _EPOCH) // _ONE_MS
    return int(clock() * 1000)


class StateWriter(Generic[ST]):
    """
    Owns the in-memory state of one instance and persists every change.

    Mutations follow a persist-then-commit protocol: the current state is
    deep-copied, the copy is changed and handed to the side effect, and only
    once the side effect returned does the copy replace the in-memory state.
    A failing write leaves the in-memory state untouched.

    Calls on one writer must be awaited one after the other. Two concurrent
    mutations start from the same base state and the last completed write
    wins. There is no locking across writers or processes either.
    """

    def __init__(self, *, side_effect: StateSideEffect, clock: Callable[[], float] = time.time) -> None:
        self.side_effect = side_effect
        self._clock = clock
        self._state: Optional[ST] = None

    def set_state(self, state: ST) -> None:
        self._state = state

    def get_state(self) -> ST:
        """
        Return the live in-memory state.

        The returned object is shared with the writer and must be treated as
        read-only; use `clone_state()` to get a copy that is safe to modify.
        """
        if self._state is None:
            raise StateUninitializedError(
                "State not set. Has this StateWriter been initialized with set_state()?"
            )
        return self._state

    def instance_name(self) -> str:
        return self.get_state().name

    def clone_state(self) -> ST:
        return self.get_state().model_copy(deep=True)

    # -------- Persistence --------
    async def _persist_state(self, new_state: ST) -> None:
        await self.side_effect.persist_state(new_state)
        self._state = new_state

    async def _mutate(self, what: str, fn: Callable[[ST], None]) -> None:
        new_state = self.clone_state()
        try:
            fn(new_state)
        except ValidationError as ve:
            raise StateSchemaValidationError.from_validation_error(
                ve, prefix=what.split(" ")[0], message=f"Invalid {what}"
            ) from ve
        await self._persist_state(new_state)
        logger.debug("Persisted %s for instance %s", what, new_state.name)

    async def persist_state_now(self) -> None:
        """Write the current in-memory state as-is."""
        await self.side_effect.persist_state(self.get_state())

    # -------- Provision / configuration --------
    async def set_provision_input(self, input: Any) -> None:
        def apply(s: ST) -> None:
            s.provision.input = copy.deepcopy(input)

        await self._mutate("provision input", apply)

    async def set_provision_output(self, output: Any = None) -> None:
        def apply(s: ST) -> None:
            s.provision.output = copy.deepcopy(output)

        await self._mutate("provision output", apply)

    async def set_configuration_input(self, input: Any) -> None:
        def apply(s: ST) -> None:
            s.configuration.input = copy.deepcopy(input)

        await self._mutate("configuration input", apply)

    async def set_configuration_output(self, output: Any = None) -> None:
        def apply(s: ST) -> None:
            s.configuration.output = copy.deepcopy(output)

        await self._mutate("configuration output", apply)

    async def update_provision_input(self, partial: Any) -> None:
        """Deep-merge `partial` into the provision input. Not for outputs."""
        changes = _partial_mapping(partial)

        def apply(s: ST) -> None:
            s.provision.input = deep_merge(_as_mapping(s.provision.input), changes)

        await self._mutate("provision input", apply)

    async def update_configuration_input(self, partial: Any) -> None:
        """Deep-merge `partial` into the configuration input. Not for outputs."""
        changes = _partial_mapping(partial)

        def apply(s: ST) -> None:
            s.configuration.input = deep_merge(_as_mapping(s.configuration.input), changes)

        await self._mutate("configuration input", apply)

    # -------- Events --------
    async def add_event(self, event: InstanceEventEnum | str, at_date: Optional[datetime] = None) -> None:
        """
        Record a lifecycle event, at `at_date` or now.

        When the log is full, events are sorted by timestamp and the oldest
        one is dropped before appending. Appends alone never re-sort.
        """
        event_type = InstanceEventEnum(event)
        timestamp = _event_timestamp_ms(at_date, self._clock)

        def apply(s: ST) -> None:
            new_event = InstanceEvent(type=event_type, timestamp=timestamp)
            if s.events is None:
                s.events = []
            if len(s.events) >= STATE_MAX_EVENTS:
                s.events.sort(key=lambda e: e.timestamp)
                s.events.pop(0)
            s.events.append(new_event)

        await self._mutate("events", apply)

    # -------- Destruction --------
    async def destroy_state(self) -> None:
        """
        Delete the durable state of the managed instance.

        The in-memory state is kept so the last known state can still be
        inspected; it is no longer backed by storage.
        """
        name = self.instance_name()
        logger.info("Destroying state of instance %s", name)
        await self.side_effect.destroy_state(name)


__all__ = ["StateWriter", "deep_merge"]
