"""The generic Cluster API objects the provider reads and, for the endpoint, patches.

Only the fields the provider touches are modelled.
"""

from pydantic import Field

from evroc_provider.models.cluster import APIEndpoint
from evroc_provider.models.condition import Condition
from evroc_provider.models.meta import KubeModel, KubeObject

CLUSTER_API_GROUP = "cluster.x-k8s.io"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"
PAUSED_ANNOTATION = "cluster.x-k8s.io/paused"


class ObjectReference(KubeModel):
    api_version: str = ""
    kind: str = ""
    name: str = ""
    namespace: str = ""


class ClusterSpec(KubeModel):
    paused: bool = False
    control_plane_endpoint: APIEndpoint = Field(default_factory=APIEndpoint)
    infrastructure_ref: ObjectReference | None = None


class ClusterStatus(KubeModel):
    infrastructure_ready: bool = False
    conditions: list[Condition] = Field(default_factory=list)


class Cluster(KubeObject):
    """A Cluster API Cluster."""

    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)


class Bootstrap(KubeModel):
    data_secret_name: str | None = None


class MachineSpec(KubeModel):
    cluster_name: str = ""
    bootstrap: Bootstrap = Field(default_factory=Bootstrap)
    infrastructure_ref: ObjectReference | None = None


class Machine(KubeObject):
    """A Cluster API Machine."""

    spec: MachineSpec = Field(default_factory=MachineSpec)
