"""Pytest configuration and shared fixtures."""

import copy
import itertools

import pytest
from hypothesis import Verbosity, settings
from kubernetes.client.exceptions import ApiException

from evroc_provider.cloud.service import EvrocService
from evroc_provider.models.capi import (
    CLUSTER_NAME_LABEL,
    CONTROL_PLANE_LABEL,
    Bootstrap,
    Cluster,
    ClusterSpec,
    ClusterStatus,
    Machine,
    MachineSpec,
    ObjectReference,
)
from evroc_provider.models.cluster import (
    EvrocCluster,
    EvrocClusterSpec,
    EvrocNetworkSpec,
    EvrocSubnetSpec,
)
from evroc_provider.models.condition import CONTROL_PLANE_INITIALIZED, Condition
from evroc_provider.models.machine import EvrocDiskSpec, EvrocMachine, EvrocMachineSpec
from evroc_provider.models.meta import ObjectMeta, OwnerReference
from evroc_provider.registry import build_evroc_registry

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")

NAMESPACE = "default"
PROJECT = "test-project"
DELETION_TIMESTAMP = "2026-01-01T00:00:00Z"


def apply_merge_patch(target, patch):
    """Apply a JSON merge patch (RFC 7386)."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = dict(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


class FakeObjectStore:
    """In-memory object store answering like an API server.

    Objects are kept as API bodies. Missing objects raise 404, duplicate creates and
    stale resource versions raise 409, and deleting an object with finalizers only
    marks it for deletion. Every call is recorded in ``calls`` as ``(verb, kind, name)``.
    """

    def __init__(self):
        self.objects: dict[tuple[type, str, str], dict] = {}
        self.secrets: dict[tuple[str, str], dict[str, bytes]] = {}
        self.errors: dict[tuple[str, str, str], ApiException] = {}
        self.on_create: dict[type, callable] = {}
        self.calls: list[tuple[str, str, str]] = []
        self._versions = itertools.count(1)

    # Test helpers

    def add(self, obj):
        body = obj.to_dict()
        body["metadata"].setdefault("resourceVersion", str(next(self._versions)))
        self.objects[(type(obj), obj.namespace, obj.name)] = body
        return obj

    def add_secret(self, namespace: str, name: str, data: dict[str, bytes]) -> None:
        self.secrets[(namespace, name)] = data

    def fail(self, verb: str, kind: str, name: str, status: int, reason: str = "") -> None:
        """Make every ``verb`` call on ``kind/name`` raise an ApiException."""
        self.errors[(verb, kind, name)] = ApiException(status=status, reason=reason)

    def read(self, model_cls, namespace: str, name: str):
        body = self.objects.get((model_cls, namespace, name))
        return None if body is None else model_cls.model_validate(copy.deepcopy(body))

    def exists(self, model_cls, namespace: str, name: str) -> bool:
        return (model_cls, namespace, name) in self.objects

    def set_status(self, model_cls, namespace: str, name: str, status: dict) -> None:
        body = self.objects[(model_cls, namespace, name)]
        body["status"] = apply_merge_patch(body.get("status", {}), status)

    def calls_for(self, verb: str) -> list[tuple[str, str]]:
        return [(kind, name) for v, kind, name in self.calls if v == verb]

    # ObjectStore

    def _enter(self, verb: str, kind: str, name: str) -> None:
        self.calls.append((verb, kind, name))
        error = self.errors.get((verb, kind, name))
        if error is not None:
            raise error

    @staticmethod
    def _not_found(kind: str, name: str) -> ApiException:
        return ApiException(status=404, reason=f"{kind} {name} Not Found")

    def get(self, model_cls, namespace, name):
        self._enter("get", model_cls.__name__, name)
        body = self.objects.get((model_cls, namespace, name))
        if body is None:
            raise self._not_found(model_cls.__name__, name)
        return model_cls.model_validate(copy.deepcopy(body))

    def list(self, model_cls, namespace=None):
        self._enter("list", model_cls.__name__, namespace or "")
        return [
            model_cls.model_validate(copy.deepcopy(body))
            for (cls, ns, _), body in sorted(self.objects.items(), key=lambda item: item[0][1:])
            if cls is model_cls and (namespace is None or ns == namespace)
        ]

    def create(self, obj):
        model_cls = type(obj)
        self._enter("create", model_cls.__name__, obj.name)
        key = (model_cls, obj.namespace, obj.name)
        if key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        body = obj.to_dict()
        body["metadata"]["resourceVersion"] = str(next(self._versions))
        body["metadata"]["uid"] = f"uid-{obj.name}"
        hook = self.on_create.get(model_cls)
        if hook is not None:
            hook(body)
        self.objects[key] = body
        return model_cls.model_validate(copy.deepcopy(body))

    def patch(self, obj, body):
        model_cls = type(obj)
        self._enter("patch", model_cls.__name__, obj.name)
        key = (model_cls, obj.namespace, obj.name)
        current = self.objects.get(key)
        if current is None:
            raise self._not_found(model_cls.__name__, obj.name)

        body = copy.deepcopy(body)
        resource_version = body.get("metadata", {}).pop("resourceVersion", None)
        if resource_version is not None and resource_version != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

        updated = apply_merge_patch(current, body)
        updated["metadata"]["resourceVersion"] = str(next(self._versions))
        metadata = updated["metadata"]
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            del self.objects[key]
        else:
            self.objects[key] = updated
        return model_cls.model_validate(copy.deepcopy(updated))

    def delete(self, model_cls, namespace, name):
        self._enter("delete", model_cls.__name__, name)
        key = (model_cls, namespace, name)
        body = self.objects.get(key)
        if body is None:
            raise self._not_found(model_cls.__name__, name)
        if body["metadata"].get("finalizers"):
            body["metadata"].setdefault("deletionTimestamp", DELETION_TIMESTAMP)
            body["metadata"]["resourceVersion"] = str(next(self._versions))
        else:
            del self.objects[key]

    def get_secret(self, namespace, name):
        self._enter("get_secret", "Secret", name)
        data = self.secrets.get((namespace, name))
        if data is None:
            raise self._not_found("Secret", name)
        return dict(data)


def make_cluster(name="test-cluster", infrastructure_ready=False, control_plane_initialized=False):
    cluster = Cluster(
        metadata=ObjectMeta(name=name, namespace=NAMESPACE, uid=f"uid-{name}"),
        spec=ClusterSpec(
            infrastructure_ref=ObjectReference(
                api_version="infrastructure.cluster.x-k8s.io/v1beta1",
                kind="EvrocCluster",
                name=name,
                namespace=NAMESPACE,
            )
        ),
        status=ClusterStatus(infrastructure_ready=infrastructure_ready),
    )
    if control_plane_initialized:
        cluster.status.conditions = [Condition(type=CONTROL_PLANE_INITIALIZED, status="True")]
    return cluster


def make_evroc_cluster(name="test-cluster", owner="test-cluster", subnets=None):
    owner_references = []
    if owner:
        owner_references.append(
            OwnerReference(
                api_version="cluster.x-k8s.io/v1beta1", kind="Cluster", name=owner, uid=f"uid-{owner}"
            )
        )
    if subnets is None:
        subnets = [EvrocSubnetSpec(name="test-subnet", cidr_block="10.0.0.0/24")]
    return EvrocCluster(
        metadata=ObjectMeta(name=name, namespace=NAMESPACE, owner_references=owner_references),
        spec=EvrocClusterSpec(
            region="se-sto",
            project=PROJECT,
            identity_secret_name="evroc-credentials",
            network=EvrocNetworkSpec(subnets=subnets),
        ),
    )


def make_machine(
    name="test-machine",
    cluster_name="test-cluster",
    control_plane=False,
    data_secret_name="test-machine-bootstrap",
):
    labels = {CLUSTER_NAME_LABEL: cluster_name}
    if control_plane:
        labels[CONTROL_PLANE_LABEL] = ""
    return Machine(
        metadata=ObjectMeta(name=name, namespace=NAMESPACE, labels=labels, uid=f"uid-{name}"),
        spec=MachineSpec(
            cluster_name=cluster_name,
            bootstrap=Bootstrap(data_secret_name=data_secret_name),
            infrastructure_ref=ObjectReference(
                api_version="infrastructure.cluster.x-k8s.io/v1beta1",
                kind="EvrocMachine",
                name=name,
                namespace=NAMESPACE,
            ),
        ),
    )


def make_evroc_machine(name="test-machine", owner="test-machine", public_ip=False, **spec):
    owner_references = []
    if owner:
        owner_references.append(
            OwnerReference(
                api_version="cluster.x-k8s.io/v1beta1", kind="Machine", name=owner, uid=f"uid-{owner}"
            )
        )
    spec.setdefault("virtual_resources_ref", "c1a.s")
    spec.setdefault(
        "boot_disk", EvrocDiskSpec(image_name="ubuntu-24.04", storage_class="persistent", size_gb=20)
    )
    return EvrocMachine(
        metadata=ObjectMeta(name=name, namespace=NAMESPACE, owner_references=owner_references),
        spec=EvrocMachineSpec(public_ip=public_ip, **spec),
    )


def allocate_address(address: str):
    """on_create hook giving every new PublicIP an address."""

    def hook(body: dict) -> None:
        body["status"] = {"publicIPv4Address": address}

    return hook


@pytest.fixture
def store():
    """Management cluster store."""
    return FakeObjectStore()


@pytest.fixture
def evroc_store():
    """evroc cloud store."""
    return FakeObjectStore()


@pytest.fixture
def service(evroc_store):
    return EvrocService(evroc_store, PROJECT)


@pytest.fixture
def evroc_registry():
    return build_evroc_registry()


@pytest.fixture
def service_factory(evroc_store):
    """Service factory for reconcilers, bypassing the identity secret."""

    def factory(evroc_cluster, log):
        return EvrocService(evroc_store, evroc_cluster.spec.project, log)

    return factory
