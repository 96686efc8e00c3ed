"""Deployment record persistence."""

from .schema import CURRENT_SCHEMA_VERSION, DeploymentRecord
from .store import (
    DeploymentRepository,
    StateLoadError,
    StateSaveError,
    deployment_from_record,
    record_from_deployment,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "DeploymentRecord",
    "DeploymentRepository",
    "StateLoadError",
    "StateSaveError",
    "deployment_from_record",
    "record_from_deployment",
]
