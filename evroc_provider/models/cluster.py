"""EvrocCluster: the cluster-wide network specification and its observed state."""

import ipaddress

from pydantic import Field, field_validator

from evroc_provider.models.condition import Condition
from evroc_provider.models.meta import KubeModel, KubeObject


class APIEndpoint(KubeModel):
    """Host and port of a control plane API server."""

    host: str = ""
    port: int = 0

    @property
    def is_zero(self) -> bool:
        return not self.host and not self.port


class EvrocVPCSpec(KubeModel):
    """Virtual private cloud settings; an empty name means the cluster name."""

    name: str = ""


class EvrocSubnetSpec(KubeModel):
    """A subnet to create inside the VPC."""

    name: str
    cidr_block: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate subnet name is not empty."""
        if not v:
            raise ValueError("subnet name cannot be empty")
        return v

    @field_validator("cidr_block")
    @classmethod
    def validate_cidr_block(cls, v: str) -> str:
        """Validate cidr_block is a valid CIDR."""
        try:
            ipaddress.ip_network(v, strict=False)
        except ValueError:
            raise ValueError(f"cidr_block '{v}' must be a valid CIDR (e.g., 10.0.0.0/24)")
        return v


class EvrocNetworkSpec(KubeModel):
    vpc: EvrocVPCSpec = Field(default_factory=EvrocVPCSpec)
    subnets: list[EvrocSubnetSpec] = Field(default_factory=list)


class EvrocClusterSpec(KubeModel):
    """Desired state of an EvrocCluster."""

    region: str = ""
    project: str = ""
    identity_secret_name: str = ""
    control_plane_endpoint: APIEndpoint = Field(default_factory=APIEndpoint)
    network: EvrocNetworkSpec = Field(default_factory=EvrocNetworkSpec)


class EvrocVPCStatus(KubeModel):
    name: str = ""
    ready: bool = False


class EvrocSubnetStatus(KubeModel):
    name: str
    id: str = ""
    cidr_block: str = ""
    ready: bool = False


class EvrocNetworkStatus(KubeModel):
    vpc: EvrocVPCStatus = Field(default_factory=EvrocVPCStatus)
    subnets: list[EvrocSubnetStatus] = Field(default_factory=list)


class EvrocClusterStatus(KubeModel):
    """Observed state of an EvrocCluster."""

    ready: bool = False
    network: EvrocNetworkStatus = Field(default_factory=EvrocNetworkStatus)
    control_plane_public_ip_name: str = Field(default="", alias="controlPlanePublicIPName")
    failure_reason: str | None = None
    failure_message: str | None = None
    conditions: list[Condition] = Field(default_factory=list)


class EvrocCluster(KubeObject):
    """Infrastructure for one workload cluster in an evroc project."""

    spec: EvrocClusterSpec = Field(default_factory=EvrocClusterSpec)
    status: EvrocClusterStatus = Field(default_factory=EvrocClusterStatus)

    @property
    def vpc_name(self) -> str:
        """Name of the VPC, defaulting to the cluster's own name."""
        return self.spec.network.vpc.name or self.metadata.name

    @property
    def control_plane_public_ip_name(self) -> str:
        """Deterministic name of the pre-allocated control plane public IP."""
        return f"{self.metadata.name}-cp-publicip"
