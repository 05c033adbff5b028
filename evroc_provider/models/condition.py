"""Condition entries attached to object status."""

from datetime import datetime

from pydantic import field_validator

from evroc_provider.models.meta import KubeModel

# Severities follow the Cluster API convention; a True condition has none.
SEVERITY_ERROR = "Error"
SEVERITY_WARNING = "Warning"
SEVERITY_INFO = "Info"
SEVERITY_NONE = ""

# Condition types
READY = "Ready"
NETWORK_READY = "NetworkReady"
VPC_READY = "VPCReady"
SUBNETS_READY = "SubnetsReady"
VM_READY = "VMReady"
BOOTSTRAP_DATA_READY = "BootstrapDataReady"
DISK_READY = "DiskReady"
PUBLIC_IP_READY = "PublicIPReady"
CONTROL_PLANE_INITIALIZED = "ControlPlaneInitialized"


class Condition(KubeModel):
    """A named boolean-with-reason status entry."""

    type: str
    status: str
    severity: str = SEVERITY_NONE
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        """Validate status is one of the allowed values."""
        allowed = ["True", "False", "Unknown"]
        if v not in allowed:
            raise ValueError(f"status must be one of {allowed}, got {v}")
        return v

    @field_validator("severity")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        """Validate severity is one of the allowed values."""
        allowed = [SEVERITY_ERROR, SEVERITY_WARNING, SEVERITY_INFO, SEVERITY_NONE]
        if v not in allowed:
            raise ValueError(f"severity must be one of {allowed}, got {v}")
        return v
