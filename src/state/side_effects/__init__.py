from .base import StateSideEffect, validate_instance_name
from .local import LocalStateSideEffect
from .s3 import S3StateSideEffect

__all__ = [
    "StateSideEffect",
    "LocalStateSideEffect",
    "S3StateSideEffect",
    "validate_instance_name",
]
