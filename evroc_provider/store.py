"""Access to a declarative object store (a Kubernetes API server).

The same store abstraction addresses the management cluster and the evroc cloud API,
which speaks the same protocol scoped to a project.
"""

import base64
import copy
from contextlib import contextmanager
from typing import Iterator, Protocol, TypeVar

from kubernetes import client

from evroc_provider.logging_config import get_logger
from evroc_provider.models.meta import KubeObject
from evroc_provider.registry import Registry

logger = get_logger(__name__)

T = TypeVar("T", bound=KubeObject)

MERGE_PATCH = "application/merge-patch+json"

# Metadata fields a reconciler may change; everything else is server owned
PATCHABLE_METADATA = ("finalizers", "labels", "annotations")


class ObjectStore(Protocol):
    """Operations the reconcilers need from an object store.

    Every failure is raised as ``kubernetes.client.exceptions.ApiException``
    carrying the HTTP status of the signal (404 not found, 409 conflict, ...).
    """

    def get(self, model_cls: type[T], namespace: str, name: str) -> T: ...

    def list(self, model_cls: type[T], namespace: str | None = None) -> list[T]: ...

    def create(self, obj: T) -> T: ...

    def patch(self, obj: T, body: dict) -> T: ...

    def delete(self, model_cls: type[KubeObject], namespace: str, name: str) -> None: ...

    def get_secret(self, namespace: str, name: str) -> dict[str, bytes]: ...


class KubernetesObjectStore:
    """Object store backed by the kubernetes client's custom objects API."""

    def __init__(self, api_client: client.ApiClient, registry: Registry):
        """Initialize the store.

        Args:
            api_client: Configured kubernetes API client
            registry: Registry resolving model classes to resource kinds
        """
        self.registry = registry
        self.custom = client.CustomObjectsApi(api_client)
        self.core = client.CoreV1Api(api_client)

    def get(self, model_cls: type[T], namespace: str, name: str) -> T:
        kind = self.registry.kind_for(model_cls)
        body = self.custom.get_namespaced_custom_object(
            kind.group, kind.version, namespace, kind.plural, name
        )
        return self.registry.decode(model_cls, body)

    def list(self, model_cls: type[T], namespace: str | None = None) -> list[T]:
        kind = self.registry.kind_for(model_cls)
        if namespace:
            body = self.custom.list_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural
            )
        else:
            body = self.custom.list_cluster_custom_object(kind.group, kind.version, kind.plural)
        return [self.registry.decode(model_cls, item) for item in body.get("items", [])]

    def watch_args(self, model_cls: type[KubeObject], namespace: str | None = None):
        """List function and arguments for ``kubernetes.watch.Watch.stream``.

        Returns:
            Tuple of the list function and its positional arguments
        """
        kind = self.registry.kind_for(model_cls)
        if namespace:
            return self.custom.list_namespaced_custom_object, (
                kind.group,
                kind.version,
                namespace,
                kind.plural,
            )
        return self.custom.list_cluster_custom_object, (kind.group, kind.version, kind.plural)

    def create(self, obj: T) -> T:
        kind = self.registry.kind_for(type(obj))
        logger.debug(f"Creating {kind.kind} {obj.key}")
        body = self.custom.create_namespaced_custom_object(
            kind.group, kind.version, obj.namespace, kind.plural, self.registry.encode(obj)
        )
        return self.registry.decode(type(obj), body)

    def patch(self, obj: T, body: dict) -> T:
        """Apply a JSON merge patch; status goes through the status sub-resource.

        When the body carries ``metadata.resourceVersion`` the server rejects the write
        with 409 if the object changed since it was read.
        """
        kind = self.registry.kind_for(type(obj))
        body = copy.deepcopy(body)
        status = body.pop("status", None)
        metadata = body.get("metadata", {})
        result = None

        # Status first: dropping the last finalizer may remove the object
        if status is not None:
            status_body = {"status": status}
            if "resourceVersion" in metadata:
                status_body["metadata"] = {"resourceVersion": metadata["resourceVersion"]}
            result = self.custom.patch_namespaced_custom_object_status(
                kind.group,
                kind.version,
                obj.namespace,
                kind.plural,
                obj.name,
                status_body,
                _content_type=MERGE_PATCH,
            )
            if "resourceVersion" in metadata:
                metadata["resourceVersion"] = result["metadata"]["resourceVersion"]

        if set(body) - {"metadata"} or set(metadata) - {"resourceVersion"}:
            result = self.custom.patch_namespaced_custom_object(
                kind.group,
                kind.version,
                obj.namespace,
                kind.plural,
                obj.name,
                body,
                _content_type=MERGE_PATCH,
            )

        if result is None:
            return obj
        return self.registry.decode(type(obj), result)

    def delete(self, model_cls: type[KubeObject], namespace: str, name: str) -> None:
        kind = self.registry.kind_for(model_cls)
        logger.debug(f"Deleting {kind.kind} {namespace}/{name}")
        self.custom.delete_namespaced_custom_object(
            kind.group, kind.version, namespace, kind.plural, name
        )

    def get_secret(self, namespace: str, name: str) -> dict[str, bytes]:
        secret = self.core.read_namespaced_secret(name, namespace)
        return {key: base64.b64decode(value) for key, value in (secret.data or {}).items()}


def merge_patch_diff(before: dict, after: dict) -> dict:
    """Compute the JSON merge patch (RFC 7386) turning ``before`` into ``after``."""
    diff = {}
    for key, value in after.items():
        old = before.get(key)
        if old == value and key in before:
            continue
        if isinstance(old, dict) and isinstance(value, dict):
            nested = merge_patch_diff(old, value)
            if nested:
                diff[key] = nested
        else:
            diff[key] = value
    for key in before:
        if key not in after:
            diff[key] = None
    return diff


class PatchHelper:
    """Snapshots an object and later writes back everything the caller changed."""

    def __init__(self, store: ObjectStore, obj: KubeObject):
        self.store = store
        self.before = obj.to_dict()

    def calculate_patch(self, obj: KubeObject) -> dict:
        after = obj.to_dict()
        body = {}

        before_meta = {k: self.before["metadata"].get(k) for k in PATCHABLE_METADATA}
        after_meta = {k: after["metadata"].get(k) for k in PATCHABLE_METADATA}
        metadata = merge_patch_diff(
            {k: v for k, v in before_meta.items() if v is not None},
            {k: v for k, v in after_meta.items() if v is not None},
        )
        if metadata:
            body["metadata"] = metadata

        for section in ("spec", "status"):
            diff = merge_patch_diff(self.before.get(section, {}), after.get(section, {}))
            if diff:
                body[section] = diff
        return body

    def patch(self, obj: KubeObject) -> bool:
        """Write back pending changes in a single optimistic-concurrency-checked patch.

        Returns:
            True if a patch was sent, False if nothing changed
        """
        body = self.calculate_patch(obj)
        if not body:
            return False
        if obj.metadata.resource_version:
            body.setdefault("metadata", {})["resourceVersion"] = obj.metadata.resource_version
        result = self.store.patch(obj, body)
        obj.metadata.resource_version = result.metadata.resource_version
        self.before = obj.to_dict()
        return True


@contextmanager
def patch_on_exit(store: ObjectStore, obj: KubeObject) -> Iterator[KubeObject]:
    """Commit all changes made to ``obj`` when the block exits, however it exits.

    A patch failure after a successful block is raised; after a failed block it is
    logged and the block's own exception wins.
    """
    helper = PatchHelper(store, obj)
    try:
        yield obj
    except BaseException:
        try:
            helper.patch(obj)
        except Exception as e:
            logger.error(f"Failed to patch {type(obj).__name__} {obj.key}: {e}")
        raise
    helper.patch(obj)
