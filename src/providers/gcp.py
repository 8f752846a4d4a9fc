from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field

from state.models import (
    CommonConfigurationV1,
    CommonProvisionInputV1,
    CommonProvisionOutputV1,
    InstanceProvisionV1,
    InstanceStateV1,
)
from state.parser import StateParser


PROVIDER_GCP = "gcp"


class GcpProvisionInputV1(CommonProvisionInputV1):
    project_id: str
    region: str
    zone: str
    machine_type: str
    accelerator_type: Optional[str] = None
    disk_size: int = Field(..., gt=0, description="Boot disk size in GB")
    use_spot: bool = False


class GcpProvisionOutputV1(CommonProvisionOutputV1):
    instance_name: str


class GcpProvisionV1(InstanceProvisionV1):
    provider: Literal["gcp"] = PROVIDER_GCP
    input: GcpProvisionInputV1
    output: Optional[GcpProvisionOutputV1] = None


class GcpInstanceStateV1(InstanceStateV1):
    provision: GcpProvisionV1
    configuration: CommonConfigurationV1


class GcpStateParser(StateParser[GcpInstanceStateV1]):
    def __init__(self) -> None:
        super().__init__(GcpInstanceStateV1)
