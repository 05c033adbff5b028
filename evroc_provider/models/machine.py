"""EvrocMachine: per-node machine specification and its observed state."""

from pydantic import Field, field_validator

from evroc_provider.models.condition import Condition
from evroc_provider.models.meta import KubeModel, KubeObject

# Node address types, as reported on Machine objects
INTERNAL_IP = "InternalIP"
EXTERNAL_IP = "ExternalIP"


class EvrocDiskSpec(KubeModel):
    """Boot disk settings."""

    image_name: str
    storage_class: str
    size_gb: int = Field(alias="sizeGB")

    @field_validator("size_gb")
    @classmethod
    def validate_size_gb(cls, v: int) -> int:
        """Validate disk size is positive."""
        if v <= 0:
            raise ValueError(f"size_gb must be positive, got {v}")
        return v


class EvrocMachineSpec(KubeModel):
    """Desired state of an EvrocMachine."""

    provider_id: str | None = Field(default=None, alias="providerID")
    virtual_resources_ref: str
    boot_disk: EvrocDiskSpec
    ssh_key: str | None = None
    subnet_name: str = ""
    security_groups: list[str] = Field(default_factory=list)
    public_ip: bool = Field(default=False, alias="publicIP")


class MachineAddress(KubeModel):
    type: str
    address: str


class EvrocMachineStatus(KubeModel):
    """Observed state of an EvrocMachine."""

    ready: bool = False
    addresses: list[MachineAddress] = Field(default_factory=list)
    instance_state: str | None = None
    failure_reason: str | None = None
    failure_message: str | None = None
    conditions: list[Condition] = Field(default_factory=list)


class EvrocMachine(KubeObject):
    """A single evroc virtual machine backing a Cluster API Machine."""

    spec: EvrocMachineSpec
    status: EvrocMachineStatus = Field(default_factory=EvrocMachineStatus)

    @property
    def boot_disk_name(self) -> str:
        return f"{self.metadata.name}-bootdisk"

    @property
    def public_ip_name(self) -> str:
        """Name of the per-machine public IP allocated for non control plane machines."""
        return f"{self.metadata.name}-publicip"


class EvrocMachineTemplateResource(KubeModel):
    spec: EvrocMachineSpec


class EvrocMachineTemplateSpec(KubeModel):
    template: EvrocMachineTemplateResource


class EvrocMachineTemplate(KubeObject):
    """Template from which machine sets stamp out EvrocMachines."""

    spec: EvrocMachineTemplateSpec
