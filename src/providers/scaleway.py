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


PROVIDER_SCALEWAY = "scaleway"


class ScalewayProvisionInputV1(CommonProvisionInputV1):
    project_id: str
    region: str
    zone: str
    instance_type: str
    disk_size_gb: int = Field(..., gt=0)


class ScalewayProvisionOutputV1(CommonProvisionOutputV1):
    instance_server_id: str
    # Only set once a separate data disk was created
    data_disk_id: Optional[str] = None


class ScalewayProvisionV1(InstanceProvisionV1):
    provider: Literal["scaleway"] = PROVIDER_SCALEWAY
    input: ScalewayProvisionInputV1
    output: Optional[ScalewayProvisionOutputV1] = None


class ScalewayInstanceStateV1(InstanceStateV1):
    provision: ScalewayProvisionV1
    configuration: CommonConfigurationV1


class ScalewayStateParser(StateParser[ScalewayInstanceStateV1]):
    def __init__(self) -> None:
        super().__init__(ScalewayInstanceStateV1)
