from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# Maximum number of lifecycle events kept in an instance state
STATE_MAX_EVENTS = 10

STATE_VERSION = "1"

# Instance names double as directory names and S3 key segments
INSTANCE_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"


class InstanceEventEnum(str, Enum):
    """Lifecycle markers recorded in the state event log."""

    ProvisionBegin = "provision-begin"
    ProvisionEnd = "provision-end"
    ConfigurationBegin = "configuration-begin"
    ConfigurationEnd = "configuration-end"
    StartBegin = "start-begin"
    StartEnd = "start-end"
    StopBegin = "stop-begin"
    StopEnd = "stop-end"
    DestroyBegin = "destroy-begin"
    DestroyEnd = "destroy-end"


class InstanceEvent(BaseModel):
    type: InstanceEventEnum
    timestamp: int = Field(..., description="Milliseconds since epoch")


# -------- Common provider-agnostic schemas --------


class SshConfigV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user: str
    private_key_path: Optional[str] = None


class CommonProvisionInputV1(BaseModel):
    """Fields every provider's provision input carries."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    ssh: SshConfigV1


class CommonProvisionOutputV1(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    host: str


class AutoStopConfigV1(BaseModel):
    enable: bool = False
    timeout_seconds: int = Field(default=900, gt=0)


class CommonConfigurationInputV1(BaseModel):
    """
    Configuration input shared by all providers.

    Only the common subset is typed; extra keys are kept as-is so
    configurator-specific settings survive a load/persist cycle.
    """

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    autostop: Optional[AutoStopConfigV1] = None


class CommonConfigurationOutputV1(BaseModel):
    model_config = ConfigDict(extra="allow", validate_assignment=True)

    data_disk_configured: Optional[bool] = None


# -------- Envelope --------


class InstanceProvisionV1(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    provider: str = Field(..., min_length=1)
    input: Dict[str, Any]
    output: Optional[Dict[str, Any]] = None


class InstanceConfigurationV1(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    input: Dict[str, Any]
    output: Optional[Dict[str, Any]] = None


class CommonConfigurationV1(InstanceConfigurationV1):
    input: CommonConfigurationInputV1
    output: Optional[CommonConfigurationOutputV1] = None


class InstanceStateV1(BaseModel):
    """
    Persistent state of a single instance.

    Fields
    - name: unique instance name, identity key within a storage root.
    - provision: provider discriminant, requested input and produced output
      (output is None until provisioning succeeded once).
    - configuration: same shape for the post-provision configuration step.
    - events: bounded lifecycle history (at most STATE_MAX_EVENTS entries),
      None until the first event is recorded.

    Notes
    - Input/output are loose mappings here. Provider modules subclass this
      envelope with typed provision/configuration models.
    - The in-memory object is mutated only through StateWriter.
    """

    model_config = ConfigDict(validate_assignment=True)

    version: Literal["1"] = STATE_VERSION
    name: str = Field(..., min_length=1, pattern=INSTANCE_NAME_PATTERN)
    provision: InstanceProvisionV1
    configuration: InstanceConfigurationV1
    events: Optional[List[InstanceEvent]] = Field(default=None, max_length=STATE_MAX_EVENTS)

    def to_record(self) -> Dict[str, Any]:
        """JSON-compatible mapping written by storage backends."""
        return self.model_dump(mode="json")


# Envelope-only view: provider payloads stay untyped mappings
AnonymousInstanceStateV1 = InstanceStateV1


__all__ = [
    "STATE_MAX_EVENTS",
    "STATE_VERSION",
    "INSTANCE_NAME_PATTERN",
    "InstanceEventEnum",
    "InstanceEvent",
    "SshConfigV1",
    "CommonProvisionInputV1",
    "CommonProvisionOutputV1",
    "AutoStopConfigV1",
    "CommonConfigurationInputV1",
    "CommonConfigurationOutputV1",
    "InstanceProvisionV1",
    "InstanceConfigurationV1",
    "CommonConfigurationV1",
    "InstanceStateV1",
    "AnonymousInstanceStateV1",
]
