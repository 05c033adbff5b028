"""Data models for provider objects and evroc cloud resources."""

from evroc_provider.models.capi import Cluster, Machine
from evroc_provider.models.cluster import (
    APIEndpoint,
    EvrocCluster,
    EvrocClusterSpec,
    EvrocClusterStatus,
    EvrocNetworkSpec,
    EvrocSubnetSpec,
    EvrocSubnetStatus,
    EvrocVPCSpec,
)
from evroc_provider.models.condition import Condition
from evroc_provider.models.infra import Disk, PublicIP, Subnet, VirtualMachine, VirtualPrivateCloud
from evroc_provider.models.machine import (
    EvrocDiskSpec,
    EvrocMachine,
    EvrocMachineSpec,
    EvrocMachineStatus,
    EvrocMachineTemplate,
    MachineAddress,
)
from evroc_provider.models.meta import KubeObject, ObjectMeta, OwnerReference

__all__ = [
    "APIEndpoint",
    "Cluster",
    "Condition",
    "Disk",
    "EvrocCluster",
    "EvrocClusterSpec",
    "EvrocClusterStatus",
    "EvrocDiskSpec",
    "EvrocMachine",
    "EvrocMachineSpec",
    "EvrocMachineStatus",
    "EvrocMachineTemplate",
    "EvrocNetworkSpec",
    "EvrocSubnetSpec",
    "EvrocSubnetStatus",
    "EvrocVPCSpec",
    "KubeObject",
    "Machine",
    "MachineAddress",
    "ObjectMeta",
    "OwnerReference",
    "PublicIP",
    "Subnet",
    "VirtualMachine",
    "VirtualPrivateCloud",
]
