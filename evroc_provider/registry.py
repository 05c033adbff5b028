"""Type registry mapping model classes to API resource kinds.

A registry is built once at process start and handed to every component that
encodes or decodes API objects.
"""

from dataclasses import dataclass

from evroc_provider.exceptions import RegistryError
from evroc_provider.models.capi import CLUSTER_API_GROUP, Cluster, Machine
from evroc_provider.models.cluster import EvrocCluster
from evroc_provider.models.infra import Disk, PublicIP, Subnet, VirtualMachine, VirtualPrivateCloud
from evroc_provider.models.machine import EvrocMachine, EvrocMachineTemplate
from evroc_provider.models.meta import KubeObject

INFRASTRUCTURE_GROUP = "infrastructure.cluster.x-k8s.io"
EVROC_NETWORKING_GROUP = "networking.evroc.com"
EVROC_COMPUTE_GROUP = "compute.evroc.com"


@dataclass(frozen=True)
class ResourceKind:
    """Group, version and names of one API resource."""

    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


class Registry:
    """Maps model classes to resource kinds and converts between models and API bodies."""

    def __init__(self):
        self._kinds: dict[type, ResourceKind] = {}

    def register(self, model_cls: type[KubeObject], kind: ResourceKind) -> None:
        self._kinds[model_cls] = kind

    def kind_for(self, model_cls: type[KubeObject]) -> ResourceKind:
        try:
            return self._kinds[model_cls]
        except KeyError:
            raise RegistryError(
                f"No resource kind registered for {model_cls.__name__}",
                f"Registered kinds: {', '.join(sorted(k.kind for k in self._kinds.values()))}",
            )

    def model_for_kind(self, kind: str) -> type[KubeObject]:
        for model_cls, resource in self._kinds.items():
            if resource.kind == kind:
                return model_cls
        raise RegistryError(f"No model registered for kind {kind}")

    def kinds(self) -> list[type[KubeObject]]:
        return list(self._kinds)

    def decode(self, model_cls: type[KubeObject], body: dict) -> KubeObject:
        """Build a model from an API response body."""
        self.kind_for(model_cls)
        return model_cls.model_validate(body)

    def encode(self, obj: KubeObject) -> dict:
        """Render a model as an API request body with apiVersion and kind set."""
        resource = self.kind_for(type(obj))
        body = obj.to_dict()
        body["apiVersion"] = resource.api_version
        body["kind"] = resource.kind
        return body


def build_management_registry() -> Registry:
    """Registry of the kinds the provider watches and patches on the management cluster."""
    registry = Registry()
    registry.register(
        EvrocCluster, ResourceKind(INFRASTRUCTURE_GROUP, "v1beta1", "EvrocCluster", "evrocclusters")
    )
    registry.register(
        EvrocMachine, ResourceKind(INFRASTRUCTURE_GROUP, "v1beta1", "EvrocMachine", "evrocmachines")
    )
    registry.register(
        EvrocMachineTemplate,
        ResourceKind(INFRASTRUCTURE_GROUP, "v1beta1", "EvrocMachineTemplate", "evrocmachinetemplates"),
    )
    registry.register(Cluster, ResourceKind(CLUSTER_API_GROUP, "v1beta1", "Cluster", "clusters"))
    registry.register(Machine, ResourceKind(CLUSTER_API_GROUP, "v1beta1", "Machine", "machines"))
    return registry


def build_evroc_registry() -> Registry:
    """Registry of the evroc cloud resource kinds."""
    registry = Registry()
    registry.register(
        VirtualPrivateCloud,
        ResourceKind(EVROC_NETWORKING_GROUP, "v1alpha1", "VirtualPrivateCloud", "virtualprivateclouds"),
    )
    registry.register(Subnet, ResourceKind(EVROC_NETWORKING_GROUP, "v1alpha1", "Subnet", "subnets"))
    registry.register(
        PublicIP, ResourceKind(EVROC_NETWORKING_GROUP, "v1alpha1", "PublicIP", "publicips")
    )
    registry.register(
        VirtualMachine,
        ResourceKind(EVROC_COMPUTE_GROUP, "v1alpha1", "VirtualMachine", "virtualmachines"),
    )
    registry.register(Disk, ResourceKind(EVROC_COMPUTE_GROUP, "v1alpha1", "Disk", "disks"))
    return registry
