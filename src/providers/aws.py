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


PROVIDER_AWS = "aws"


class AwsProvisionInputV1(CommonProvisionInputV1):
    instance_type: str
    disk_size: int = Field(..., gt=0, description="Root disk size in GB")
    public_ip_type: Literal["static", "dynamic"] = "static"
    region: str
    use_spot: bool = False


class AwsProvisionOutputV1(CommonProvisionOutputV1):
    instance_id: str


class AwsProvisionV1(InstanceProvisionV1):
    provider: Literal["aws"] = PROVIDER_AWS
    input: AwsProvisionInputV1
    output: Optional[AwsProvisionOutputV1] = None


class AwsInstanceStateV1(InstanceStateV1):
    provision: AwsProvisionV1
    configuration: CommonConfigurationV1


class AwsStateParser(StateParser[AwsInstanceStateV1]):
    def __init__(self) -> None:
        super().__init__(AwsInstanceStateV1)
