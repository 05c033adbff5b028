"""Owner resolution: look up the Cluster API objects an infrastructure object belongs to.

Owner references are plain back-references. They are resolved on demand and
never held as parent pointers.
"""

from kubernetes.client.exceptions import ApiException

from evroc_provider.logging_config import get_logger
from evroc_provider.models.capi import (
    CLUSTER_API_GROUP,
    CLUSTER_NAME_LABEL,
    CONTROL_PLANE_LABEL,
    PAUSED_ANNOTATION,
    Cluster,
    Machine,
)
from evroc_provider.models.meta import KubeObject, ObjectMeta
from evroc_provider.store import ObjectStore

logger = get_logger(__name__)


def _get_owner(store: ObjectStore, meta: ObjectMeta, model_cls: type[KubeObject], kind: str):
    for ref in meta.owner_references:
        if ref.kind != kind or ref.group != CLUSTER_API_GROUP:
            continue
        try:
            return store.get(model_cls, meta.namespace, ref.name)
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"Owner {kind} {meta.namespace}/{ref.name} not found")
                return None
            raise
    return None


def get_owner_cluster(store: ObjectStore, meta: ObjectMeta) -> Cluster | None:
    """Return the Cluster owning an object, or None if there is none yet."""
    return _get_owner(store, meta, Cluster, "Cluster")


def get_owner_machine(store: ObjectStore, meta: ObjectMeta) -> Machine | None:
    """Return the Machine owning an object, or None if there is none yet."""
    return _get_owner(store, meta, Machine, "Machine")


def get_cluster_from_metadata(store: ObjectStore, meta: ObjectMeta) -> Cluster | None:
    """Return the Cluster named by the cluster-name label, or None."""
    cluster_name = meta.labels.get(CLUSTER_NAME_LABEL)
    if not cluster_name:
        return None
    try:
        return store.get(Cluster, meta.namespace, cluster_name)
    except ApiException as e:
        if e.status == 404:
            return None
        raise


def has_paused_annotation(obj: KubeObject) -> bool:
    return PAUSED_ANNOTATION in obj.metadata.annotations


def is_paused(cluster: Cluster, obj: KubeObject) -> bool:
    """True if the cluster is paused or either object carries the paused annotation."""
    return cluster.spec.paused or has_paused_annotation(cluster) or has_paused_annotation(obj)


def is_control_plane_machine(machine: Machine) -> bool:
    return CONTROL_PLANE_LABEL in machine.metadata.labels
