"""Unit tests for the work queue and the controller manager."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException

from evroc_provider.config import ManagerConfig
from evroc_provider.manager import Manager, WorkQueue
from evroc_provider.models.capi import Cluster, Machine
from evroc_provider.models.cluster import EvrocCluster
from evroc_provider.models.machine import EvrocMachine
from evroc_provider.result import Request, Result

from conftest import NAMESPACE, make_evroc_cluster, make_evroc_machine, make_machine


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return WorkQueue(backoff_base=1.0, backoff_max=8.0, clock=clock)


def test_add_deduplicates(queue):
    queue.add("a")
    queue.add("a")
    queue.add("b")

    assert len(queue) == 2
    assert queue.get(timeout=0) == "a"
    assert queue.get(timeout=0) == "b"
    assert queue.get(timeout=0) is None


def test_key_in_processing_is_not_handed_out_twice(queue):
    queue.add("a")
    assert queue.get(timeout=0) == "a"

    queue.add("a")
    assert queue.get(timeout=0) is None

    queue.done("a")
    assert queue.get(timeout=0) == "a"


def test_done_without_readd_does_not_requeue(queue):
    queue.add("a")
    queue.get(timeout=0)
    queue.done("a")

    assert queue.get(timeout=0) is None


def test_add_after_waits_for_deadline(queue, clock):
    queue.add_after("a", 5.0)
    assert queue.get(timeout=0) is None

    clock.now += 5.0
    assert queue.get(timeout=0) == "a"


def test_add_after_earliest_deadline_wins(queue, clock):
    queue.add_after("a", 30.0)
    queue.add_after("a", 5.0)
    queue.add_after("a", 10.0)

    clock.now += 5.0
    assert queue.get(timeout=0) == "a"


def test_add_after_zero_delay_adds_now(queue):
    queue.add_after("a", 0)

    assert queue.get(timeout=0) == "a"


def test_backoff_doubles_and_caps(queue):
    delays = [queue.backoff("a") for _ in range(6)]

    assert delays == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]
    assert queue.num_requeues("a") == 6


def test_forget_resets_backoff(queue):
    queue.backoff("a")
    queue.backoff("a")

    queue.forget("a")

    assert queue.num_requeues("a") == 0
    assert queue.backoff("a") == 1.0


def test_backoff_is_per_key(queue):
    queue.backoff("a")
    queue.backoff("a")

    assert queue.backoff("b") == 1.0


def test_shut_down(queue):
    queue.add("a")
    queue.shut_down()

    assert queue.get(timeout=0) is None
    queue.add("b")
    assert len(queue) == 1
    assert queue.shutting_down


class FakeReconciler:
    def __init__(self, kind, results):
        self.kind = kind
        self.results = list(results)
        self.requests = []

    def reconcile(self, request):
        self.requests.append(request)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def make_manager(store, *reconcilers, backoff_base=1.0):
    store.watch_args = MagicMock(return_value=(MagicMock(), ("group", "v1", "plural")))
    config = ManagerConfig(backoff_base=backoff_base, backoff_max=8.0)
    return Manager(config, store, list(reconcilers))


def test_process_next_requeues_after_result(store):
    reconciler = FakeReconciler(EvrocCluster, [Result(requeue_after=5.0)])
    manager = make_manager(store, reconciler)
    manager.queue.add_after = MagicMock()

    manager.enqueue(EvrocCluster, NAMESPACE, "c1")
    assert manager.process_next(timeout=0) is True

    key = (EvrocCluster, Request(NAMESPACE, "c1"))
    assert reconciler.requests == [Request(NAMESPACE, "c1")]
    manager.queue.add_after.assert_called_once_with(key, 5.0)


def test_process_next_backs_off_on_error(store):
    reconciler = FakeReconciler(EvrocCluster, [RuntimeError("boom"), RuntimeError("boom"), Result()])
    manager = make_manager(store, reconciler)
    key = (EvrocCluster, Request(NAMESPACE, "c1"))

    manager.queue.add(key)
    manager.process_next(timeout=0)
    assert manager.queue.num_requeues(key) == 1

    manager.queue.add(key)
    manager.process_next(timeout=0)
    assert manager.queue.num_requeues(key) == 2

    manager.queue.add(key)
    manager.process_next(timeout=0)
    assert manager.queue.num_requeues(key) == 0


def test_process_next_empty_queue(store):
    manager = make_manager(store, FakeReconciler(EvrocCluster, []))

    assert manager.process_next(timeout=0) is False


def test_handle_event_for_reconciled_kind(store):
    manager = make_manager(store, FakeReconciler(EvrocMachine, []))

    manager.handle_event(EvrocMachine, {"type": "ADDED", "object": make_evroc_machine(name="m1").to_dict()})

    assert manager.queue.get(timeout=0) == (EvrocMachine, Request(NAMESPACE, "m1"))


def test_handle_event_maps_machine_to_infrastructure(store):
    """A Machine change requeues the EvrocMachine it references."""
    manager = make_manager(store, FakeReconciler(EvrocMachine, []))

    manager.handle_event(Machine, {"type": "MODIFIED", "object": make_machine(name="m1").to_dict()})

    assert manager.queue.get(timeout=0) == (EvrocMachine, Request(NAMESPACE, "m1"))


def test_handle_event_ignores_foreign_infrastructure(store):
    manager = make_manager(store, FakeReconciler(EvrocMachine, []))
    machine = make_machine(name="m1")
    machine.spec.infrastructure_ref.kind = "DockerMachine"

    manager.handle_event(Machine, {"type": "MODIFIED", "object": machine.to_dict()})

    assert manager.queue.get(timeout=0) is None


def test_watched_kinds(store):
    manager = make_manager(
        store, FakeReconciler(EvrocCluster, []), FakeReconciler(EvrocMachine, [])
    )

    assert set(manager.watched_kinds()) == {EvrocCluster, EvrocMachine, Cluster, Machine}


def test_resync_enqueues_every_object(store):
    store.add(make_evroc_cluster(name="c1"))
    store.add(make_evroc_cluster(name="c2"))
    manager = make_manager(store, FakeReconciler(EvrocCluster, []))

    manager.resync()

    assert len(manager.queue) == 2


def test_resync_survives_list_failure(store):
    store.fail("list", "EvrocCluster", "", 503, "Service Unavailable")
    manager = make_manager(store, FakeReconciler(EvrocCluster, []))

    manager.resync()

    assert len(manager.queue) == 0


def test_watch_loop_enqueues_events(store):
    manager = make_manager(store, FakeReconciler(EvrocCluster, []))

    list_func, list_args = store.watch_args.return_value

    def stream(func, *args, **kwargs):
        assert func is list_func
        assert args == list_args
        yield {"type": "ADDED", "object": make_evroc_cluster(name="c1").to_dict()}
        manager._stop.set()

    with patch("evroc_provider.manager.watch.Watch") as watch_cls:
        watch_cls.return_value.stream.side_effect = stream
        manager._watch_loop(EvrocCluster)

    assert manager.queue.get(timeout=0) == (EvrocCluster, Request(NAMESPACE, "c1"))
    store.watch_args.assert_called_with(EvrocCluster, None)
    watch_cls.return_value.stop.assert_called()


def test_watch_loop_retries_failed_watch(store):
    """A failed watch is re-established and its events still arrive."""
    manager = make_manager(store, FakeReconciler(EvrocCluster, []), backoff_base=0.01)
    attempts = []

    def stream(func, *args, **kwargs):
        attempts.append(kwargs)
        if len(attempts) < 3:
            raise ApiException(status=503, reason="Service Unavailable")
        yield {"type": "ADDED", "object": make_evroc_cluster(name="c1").to_dict()}
        manager._stop.set()

    with patch("evroc_provider.manager.watch.Watch") as watch_cls:
        watch_cls.return_value.stream.side_effect = stream
        manager._watch_loop(EvrocCluster)

    assert len(attempts) == 3
    assert manager.queue.get(timeout=0) == (EvrocCluster, Request(NAMESPACE, "c1"))
    assert manager._watches == []


def test_watch_loop_stops_while_failing(store):
    manager = make_manager(store, FakeReconciler(EvrocCluster, []), backoff_base=0.01)
    attempts = []

    def stream(func, *args, **kwargs):
        attempts.append(kwargs)
        if len(attempts) == 2:
            manager._stop.set()
        raise ConnectionResetError("connection reset by peer")

    with patch("evroc_provider.manager.watch.Watch") as watch_cls:
        watch_cls.return_value.stream.side_effect = stream
        manager._watch_loop(EvrocCluster)

    assert len(attempts) == 2
    assert manager._watches == []


def test_start_and_stop(store):
    store.add(make_evroc_cluster(name="c1"))
    reconciler = FakeReconciler(EvrocCluster, [Result()])
    manager = make_manager(store, reconciler)

    with patch("evroc_provider.manager.watch.Watch") as watch_cls:
        watch_cls.return_value.stream.return_value = iter([])
        manager.start()
        manager.stop()

    assert manager.queue.shutting_down
