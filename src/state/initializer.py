from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from .errors import StateAlreadyExistsError
from .models import InstanceStateV1
from .parser import GenericStateParser, StateParser
from .side_effects.base import StateSideEffect, validate_instance_name
from .writer import StateWriter


logger = logging.getLogger(__name__)


class StateInitializer:
    """Create and persist the first state of a new instance."""

    def __init__(self, *, side_effect: StateSideEffect, parser: Optional[StateParser[Any]] = None) -> None:
        self.side_effect = side_effect
        self.parser = parser or GenericStateParser()

    async def initialize(
        self,
        name: str,
        *,
        provider: str,
        provision_input: Any,
        configuration_input: Any,
        overwrite: bool = False,
    ) -> StateWriter[InstanceStateV1]:
        """
        Build the initial state (no outputs, no events), persist it and
        return a writer holding it.

        Raises StateAlreadyExistsError if `name` already has a state and
        `overwrite` is False.
        """
        validate_instance_name(name)
        if not overwrite and await self.side_effect.instance_exists(name):
            raise StateAlreadyExistsError(f"Instance '{name}' already exists")

        state = self.parser.parse(
            {
                "name": name,
                "provision": {"provider": provider, "input": _dump(provision_input), "output": None},
                "configuration": {"input": _dump(configuration_input), "output": None},
                "events": None,
            }
        )

        writer: StateWriter[InstanceStateV1] = StateWriter(side_effect=self.side_effect)
        writer.set_state(state)
        await writer.persist_state_now()
        logger.info("Initialized state for instance %s (provider %s)", name, provider)
        return writer


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if isinstance(value, Mapping):
        return dict(value)
    return value


__all__ = ["StateInitializer"]
