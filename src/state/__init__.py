"""
Instance state store.

Typed, versioned state of externally provisioned instances, persisted
through a pluggable side effect (local YAML files or S3). The `StateWriter`
owns the in-memory copy and persists every mutation before committing it.
"""

from .errors import (
    StateAlreadyExistsError,
    StateError,
    StateNotFoundError,
    StatePersistenceError,
    StateSchemaValidationError,
    StateUninitializedError,
)
from .initializer import StateInitializer
from .loader import StateLoader
from .models import (
    STATE_MAX_EVENTS,
    AnonymousInstanceStateV1,
    InstanceEvent,
    InstanceEventEnum,
    InstanceStateV1,
)
from .parser import AnonymousStateParser, GenericStateParser, StateParser
from .writer import StateWriter

__all__ = [
    "STATE_MAX_EVENTS",
    "AnonymousInstanceStateV1",
    "AnonymousStateParser",
    "GenericStateParser",
    "InstanceEvent",
    "InstanceEventEnum",
    "InstanceStateV1",
    "StateAlreadyExistsError",
    "StateError",
    "StateInitializer",
    "StateLoader",
    "StateNotFoundError",
    "StateParser",
    "StatePersistenceError",
    "StateSchemaValidationError",
    "StateUninitializedError",
    "StateWriter",
]
