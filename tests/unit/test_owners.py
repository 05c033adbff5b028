"""Unit tests for owner resolution and pause handling."""

import pytest
from kubernetes.client.exceptions import ApiException

from evroc_provider.models.capi import PAUSED_ANNOTATION
from evroc_provider.models.meta import OwnerReference
from evroc_provider.owners import (
    get_cluster_from_metadata,
    get_owner_cluster,
    get_owner_machine,
    is_control_plane_machine,
    is_paused,
)

from conftest import make_cluster, make_evroc_cluster, make_evroc_machine, make_machine


def test_owner_cluster_resolved(store):
    store.add(make_cluster())

    cluster = get_owner_cluster(store, make_evroc_cluster().metadata)

    assert cluster is not None
    assert cluster.name == "test-cluster"


def test_owner_cluster_missing_reference(store):
    store.add(make_cluster())

    assert get_owner_cluster(store, make_evroc_cluster(owner=None).metadata) is None


def test_owner_cluster_not_found(store):
    assert get_owner_cluster(store, make_evroc_cluster().metadata) is None


def test_owner_of_other_group_is_ignored(store):
    store.add(make_cluster())
    meta = make_evroc_cluster(owner=None).metadata
    meta.owner_references.append(
        OwnerReference(api_version="example.com/v1", kind="Cluster", name="test-cluster")
    )

    assert get_owner_cluster(store, meta) is None


def test_owner_lookup_error_propagates(store):
    store.add(make_cluster())
    store.fail("get", "Cluster", "test-cluster", 503, "Service Unavailable")

    with pytest.raises(ApiException):
        get_owner_cluster(store, make_evroc_cluster().metadata)


def test_owner_machine_resolved(store):
    store.add(make_machine())

    machine = get_owner_machine(store, make_evroc_machine().metadata)

    assert machine.name == "test-machine"


def test_cluster_from_label(store):
    store.add(make_cluster())

    cluster = get_cluster_from_metadata(store, make_machine().metadata)

    assert cluster.name == "test-cluster"


def test_cluster_from_label_missing(store):
    machine = make_machine()
    machine.metadata.labels = {}

    assert get_cluster_from_metadata(store, machine.metadata) is None
    assert get_cluster_from_metadata(store, make_machine(cluster_name="absent").metadata) is None


def test_paused_cluster_spec():
    cluster = make_cluster()
    cluster.spec.paused = True

    assert is_paused(cluster, make_evroc_cluster())


def test_paused_annotation_on_object():
    obj = make_evroc_machine()
    obj.metadata.annotations[PAUSED_ANNOTATION] = ""

    assert is_paused(make_cluster(), obj)
    assert not is_paused(make_cluster(), make_evroc_machine())


def test_control_plane_label():
    assert is_control_plane_machine(make_machine(control_plane=True))
    assert not is_control_plane_machine(make_machine())
