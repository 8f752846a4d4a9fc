from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .models import InstanceStateV1
from .parser import GenericStateParser, StateParser
from .side_effects.base import StateSideEffect


logger = logging.getLogger(__name__)


class StateLoader:
    """Read raw instance states through a side effect. No validation here."""

    def __init__(self, *, side_effect: StateSideEffect) -> None:
        self.side_effect = side_effect

    async def load_instance_state(self, name: str) -> Dict[str, Any]:
        """Return the raw persisted state of `name` (raises StateNotFoundError)."""
        logger.debug("Loading raw state for instance %s", name)
        return await self.side_effect.load_raw_state(name)

    async def list_instances(self) -> List[str]:
        return await self.side_effect.list_instances()

    async def instance_exists(self, name: str) -> bool:
        return await self.side_effect.instance_exists(name)

    async def load_and_parse(self, name: str, parser: Optional[StateParser[Any]] = None) -> InstanceStateV1:
        raw = await self.load_instance_state(name)
        return (parser or GenericStateParser()).parse(raw)


__all__ = ["StateLoader"]
