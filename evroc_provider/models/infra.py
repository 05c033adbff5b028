"""Resource kinds of the evroc cloud's own declarative API.

Networking kinds live in ``networking.evroc.com``, compute kinds in ``compute.evroc.com``;
both are namespaced by project.
"""

from pydantic import Field

from evroc_provider.models.meta import KubeModel, KubeObject

VM_RUNNING = "Running"


class EmptySpec(KubeModel):
    pass


class VirtualPrivateCloud(KubeObject):
    spec: EmptySpec = Field(default_factory=EmptySpec)


class VpcRef(KubeModel):
    name: str


class Ipv4CidrBlock(KubeModel):
    block: str


class SubnetSpec(KubeModel):
    vpc_ref: VpcRef
    ipv4_cidr_block: Ipv4CidrBlock


class Subnet(KubeObject):
    spec: SubnetSpec


class PublicIPStatus(KubeModel):
    public_ipv4_address: str = Field(default="", alias="publicIPv4Address")


class PublicIP(KubeObject):
    """A static public IPv4 address. The address is allocated asynchronously."""

    spec: EmptySpec = Field(default_factory=EmptySpec)
    status: PublicIPStatus = Field(default_factory=PublicIPStatus)


class DiskSize(KubeModel):
    amount: int
    unit: str = "GB"


class DiskImageRef(KubeModel):
    name: str


class DiskImageInfo(KubeModel):
    disk_image_ref: DiskImageRef


class DiskStorageClassInfo(KubeModel):
    name: str


class DiskSpec(KubeModel):
    disk_size: DiskSize | None = None
    disk_image: DiskImageInfo | None = None
    disk_storage_class: DiskStorageClassInfo | None = None


class Disk(KubeObject):
    spec: DiskSpec = Field(default_factory=DiskSpec)


class VMVirtualResourcesRef(KubeModel):
    vm_virtual_resources_ref_name: str


class DiskRef(KubeModel):
    name: str
    boot_from: bool = False


class VMAuthorizedKey(KubeModel):
    value: str


class VMSSHSettings(KubeModel):
    authorized_keys: list[VMAuthorizedKey] = Field(default_factory=list)


class VMOSSettings(KubeModel):
    cloud_init_user_data: str = ""
    ssh: VMSSHSettings | None = None


class VMStaticPublicIPv4AddressSettings(KubeModel):
    public_ip_ref: str = Field(alias="publicIPRef")


class VMPublicIPv4AddressSettings(KubeModel):
    static: VMStaticPublicIPv4AddressSettings | None = None


class SecurityGroupMembershipRef(KubeModel):
    name: str


class SecurityGroupSettings(KubeModel):
    security_group_memberships: list[SecurityGroupMembershipRef] = Field(default_factory=list)


class VMNetworkingSettings(KubeModel):
    public_ipv4_address: VMPublicIPv4AddressSettings | None = Field(
        default=None, alias="publicIPv4Address"
    )
    security_groups: SecurityGroupSettings | None = None


class VirtualMachineSpec(KubeModel):
    running: bool = False
    vm_virtual_resources_ref: VMVirtualResourcesRef
    disk_refs: list[DiskRef] = Field(default_factory=list)
    os_settings: VMOSSettings | None = None
    networking: VMNetworkingSettings | None = None


class VMNetworkStatus(KubeModel):
    private_ipv4_address: str = Field(default="", alias="privateIPv4Address")
    public_ipv4_address: str = Field(default="", alias="publicIPv4Address")


class VirtualMachineStatus(KubeModel):
    virtual_machine_status: str = ""
    networking: VMNetworkStatus = Field(default_factory=VMNetworkStatus)


class VirtualMachine(KubeObject):
    spec: VirtualMachineSpec
    status: VirtualMachineStatus = Field(default_factory=VirtualMachineStatus)

    @property
    def is_running(self) -> bool:
        return self.status.virtual_machine_status == VM_RUNNING
