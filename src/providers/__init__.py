"""
Provider-specific state schemas.

Each provider declares typed provision input/output models on top of the
common envelope, plus a parser. `PROVIDER_PARSERS` maps the
`provision.provider` discriminant to that parser.
"""

from typing import Any, Dict

from state.parser import StateParser

from .aws import PROVIDER_AWS, AwsInstanceStateV1, AwsStateParser
from .gcp import PROVIDER_GCP, GcpInstanceStateV1, GcpStateParser
from .scaleway import PROVIDER_SCALEWAY, ScalewayInstanceStateV1, ScalewayStateParser


PROVIDER_PARSERS: Dict[str, StateParser[Any]] = {
    PROVIDER_AWS: AwsStateParser(),
    PROVIDER_GCP: GcpStateParser(),
    PROVIDER_SCALEWAY: ScalewayStateParser(),
}

__all__ = [
    "PROVIDER_PARSERS",
    "PROVIDER_AWS",
    "PROVIDER_GCP",
    "PROVIDER_SCALEWAY",
    "AwsInstanceStateV1",
    "AwsStateParser",
    "GcpInstanceStateV1",
    "GcpStateParser",
    "ScalewayInstanceStateV1",
    "ScalewayStateParser",
]
