"""Disk, public IP and virtual machine operations."""

import base64
from dataclasses import dataclass

from evroc_provider.models.capi import Machine
from evroc_provider.models.cluster import EvrocCluster
from evroc_provider.models.infra import (
    Disk,
    DiskImageInfo,
    DiskImageRef,
    DiskRef,
    DiskSize,
    DiskSpec,
    DiskStorageClassInfo,
    PublicIP,
    SecurityGroupMembershipRef,
    SecurityGroupSettings,
    VirtualMachine,
    VirtualMachineSpec,
    VMAuthorizedKey,
    VMNetworkingSettings,
    VMOSSettings,
    VMPublicIPv4AddressSettings,
    VMSSHSettings,
    VMStaticPublicIPv4AddressSettings,
    VMVirtualResourcesRef,
)
from evroc_provider.models.machine import EvrocMachine
from evroc_provider.models.meta import ObjectMeta
from evroc_provider.owners import is_control_plane_machine


def provider_id(project: str, vm_name: str) -> str:
    return f"evroc://{project}/{vm_name}"


@dataclass
class MachineInstance:
    """Observed state of a machine's cloud resources after a reconcile."""

    name: str
    state: str
    running: bool
    disk_name: str
    public_ip_name: str = ""
    provider_id: str = ""
    internal_address: str = ""
    external_address: str = ""


class MachineMixin:
    """Machine operations of EvrocService."""

    def reconcile_public_ip(
        self, evroc_cluster: EvrocCluster, evroc_machine: EvrocMachine, machine: Machine
    ) -> str:
        """Ensure the machine's public IP, returning its name.

        Control plane machines reuse the cluster's pre-allocated IP; other machines
        get their own.
        """
        cp_ip_name = evroc_cluster.status.control_plane_public_ip_name
        if is_control_plane_machine(machine) and cp_ip_name:
            self.log.info(f"Using pre-allocated control plane PublicIP {cp_ip_name}")
            return cp_ip_name

        public_ip, _ = self.get_or_create(
            PublicIP(metadata=ObjectMeta(name=evroc_machine.public_ip_name, namespace=self.project))
        )
        return public_ip.name

    def reconcile_disk(self, evroc_machine: EvrocMachine) -> Disk:
        boot_disk = evroc_machine.spec.boot_disk
        disk = Disk(
            metadata=ObjectMeta(name=evroc_machine.boot_disk_name, namespace=self.project),
            spec=DiskSpec(
                disk_image=DiskImageInfo(disk_image_ref=DiskImageRef(name=boot_disk.image_name)),
                disk_size=DiskSize(amount=boot_disk.size_gb, unit="GB"),
                disk_storage_class=DiskStorageClassInfo(name=boot_disk.storage_class),
            ),
        )
        disk, _ = self.get_or_create(disk)
        return disk

    def build_virtual_machine(
        self, evroc_machine: EvrocMachine, disk_name: str, public_ip_name: str, bootstrap_data: bytes
    ) -> VirtualMachine:
        """Render the desired VirtualMachine for an EvrocMachine."""
        spec = evroc_machine.spec

        ssh = None
        if spec.ssh_key:
            ssh = VMSSHSettings(authorized_keys=[VMAuthorizedKey(value=spec.ssh_key)])

        networking = None
        if public_ip_name or spec.security_groups:
            networking = VMNetworkingSettings()
            if public_ip_name:
                networking.public_ipv4_address = VMPublicIPv4AddressSettings(
                    static=VMStaticPublicIPv4AddressSettings(public_ip_ref=public_ip_name)
                )
            if spec.security_groups:
                networking.security_groups = SecurityGroupSettings(
                    security_group_memberships=[
                        SecurityGroupMembershipRef(name=sg) for sg in spec.security_groups
                    ]
                )

        return VirtualMachine(
            metadata=ObjectMeta(name=evroc_machine.name, namespace=self.project),
            spec=VirtualMachineSpec(
                running=True,
                vm_virtual_resources_ref=VMVirtualResourcesRef(
                    vm_virtual_resources_ref_name=spec.virtual_resources_ref
                ),
                disk_refs=[DiskRef(name=disk_name, boot_from=True)],
                os_settings=VMOSSettings(
                    cloud_init_user_data=base64.b64encode(bootstrap_data).decode("ascii"),
                    ssh=ssh,
                ),
                networking=networking,
            ),
        )

    def reconcile_machine(
        self,
        evroc_cluster: EvrocCluster,
        evroc_machine: EvrocMachine,
        machine: Machine,
        bootstrap_data: bytes,
    ) -> MachineInstance:
        """Ensure the public IP (if requested), boot disk and VM exist, in that order.

        Returns:
            The observed instance. ``running`` is False until the VM reports Running;
            addresses and provider ID are only filled in once it does.
        """
        self.log.info("Reconciling machine")

        public_ip_name = ""
        if evroc_machine.spec.public_ip:
            public_ip_name = self.reconcile_public_ip(evroc_cluster, evroc_machine, machine)

        disk = self.reconcile_disk(evroc_machine)

        vm, _ = self.get_or_create(
            self.build_virtual_machine(evroc_machine, disk.name, public_ip_name, bootstrap_data)
        )

        instance = MachineInstance(
            name=vm.name,
            state=vm.status.virtual_machine_status,
            running=vm.is_running,
            disk_name=disk.name,
            public_ip_name=public_ip_name,
        )
        if not instance.running:
            self.log.info(f"VM {vm.name} is not yet in Running state: {instance.state or 'unknown'}")
            return instance

        instance.provider_id = provider_id(self.project, vm.name)
        instance.internal_address = vm.status.networking.private_ipv4_address
        instance.external_address = vm.status.networking.public_ipv4_address
        return instance

    def delete_machine(self, evroc_machine: EvrocMachine) -> None:
        """Delete the VM, then its boot disk, then its own public IP if one was requested.

        A reused control plane IP is left alone; it belongs to the cluster.
        """
        self.log.info("Deleting machine")

        self.delete_resource(VirtualMachine, evroc_machine.name)
        self.delete_resource(Disk, evroc_machine.boot_disk_name)
        if evroc_machine.spec.public_ip:
            self.delete_resource(PublicIP, evroc_machine.public_ip_name)
