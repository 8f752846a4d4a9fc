from __future__ import annotations

from typing import Any, Dict, Generic, Mapping, Optional, Type, TypeVar

from pydantic import ValidationError

from .errors import StateSchemaValidationError
from .models import CommonConfigurationInputV1, InstanceStateV1


ST = TypeVar("ST", bound=InstanceStateV1)


class StateParser(Generic[ST]):
    """
    Validate and coerce raw (loaded) data into a typed instance state.

    Parsing is pure: the raw mapping is never modified. Any mismatch is
    reported as `StateSchemaValidationError` listing the offending fields.
    """

    def __init__(self, model: Type[ST]) -> None:
        self.model = model

    def parse(self, raw: Any) -> ST:
        if not isinstance(raw, Mapping):
            raise StateSchemaValidationError(
                f"Expected a mapping for instance state, got {type(raw).__name__}"
            )
        try:
            return self.model.model_validate(dict(raw))
        except ValidationError as ve:
            raise StateSchemaValidationError.from_validation_error(
                ve, message=f"Invalid {self.model.__name__}"
            ) from ve


class AnonymousStateParser(StateParser[InstanceStateV1]):
    """Validate only the envelope; provider payloads stay loose mappings."""

    def __init__(self) -> None:
        super().__init__(InstanceStateV1)


def parse_common_configuration_input(raw: Any) -> CommonConfigurationInputV1:
    """Validate the provider-agnostic subset of a configuration input."""
    try:
        return CommonConfigurationInputV1.model_validate(raw)
    except ValidationError as ve:
        raise StateSchemaValidationError.from_validation_error(
            ve, prefix="configuration.input", message="Invalid configuration input"
        ) from ve


class GenericStateParser(StateParser[InstanceStateV1]):
    """
    Dispatch parsing to the provider-specific parser.

    The provider is read from `provision.provider` and looked up in the
    provider registry (see `providers`). Unknown or missing providers are
    schema errors.
    """

    def __init__(self, parsers: Optional[Mapping[str, StateParser[Any]]] = None) -> None:
        super().__init__(InstanceStateV1)
        self._parsers: Optional[Dict[str, StateParser[Any]]] = dict(parsers) if parsers is not None else None

    def _registry(self) -> Mapping[str, StateParser[Any]]:
        if self._parsers is not None:
            return self._parsers
        # Imported lazily: providers depend on this module
        from providers import PROVIDER_PARSERS

        return PROVIDER_PARSERS

    def parse(self, raw: Any) -> InstanceStateV1:
        provider = _provider_of(raw)
        parser = self._registry().get(provider)
        if parser is None:
            raise StateSchemaValidationError(
                f"Unknown provider '{provider}'", ["provision.provider"]
            )
        return parser.parse(raw)


def _provider_of(raw: Any) -> str:
    provision = raw.get("provision") if isinstance(raw, Mapping) else None
    provider = provision.get("provider") if isinstance(provision, Mapping) else None
    if not isinstance(provider, str) or not provider:
        raise StateSchemaValidationError("Missing provider discriminant", ["provision.provider"])
    return provider


__all__ = [
    "StateParser",
    "AnonymousStateParser",
    "GenericStateParser",
    "parse_common_configuration_input",
]
