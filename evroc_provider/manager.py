"""Controller manager: watches, a work queue and the worker pool driving reconcilers."""

import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Hashable

from kubernetes import watch
from kubernetes.client.exceptions import ApiException
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    wait_exponential,
)

from evroc_provider.config import ManagerConfig
from evroc_provider.logging_config import get_logger
from evroc_provider.models.capi import Cluster, Machine
from evroc_provider.models.cluster import EvrocCluster
from evroc_provider.models.machine import EvrocMachine
from evroc_provider.result import Request
from evroc_provider.store import KubernetesObjectStore

logger = get_logger(__name__)

# Seconds a watch stream stays open before it is re-established
WATCH_TIMEOUT = 300

# CAPI kinds whose changes requeue the infrastructure object they reference
INFRASTRUCTURE_OWNERS = {EvrocCluster: Cluster, EvrocMachine: Machine}


class WorkQueue:
    """Queue of object keys with de-duplication, delayed adds and per-key backoff.

    A key is held by at most one worker: adding a key that is being processed marks
    it dirty and it is queued again once the worker calls ``done``.
    """

    def __init__(
        self,
        backoff_base: float = 1.0,
        backoff_max: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._clock = clock
        self._cond = threading.Condition()
        self._ready: deque = deque()
        self._queued: set = set()
        self._processing: set = set()
        self._dirty: set = set()
        self._delayed: dict[Hashable, float] = {}
        self._failures: dict[Hashable, int] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._ready)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: Hashable) -> None:
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: Hashable) -> None:
        if self._shutting_down:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._ready.append(key)
        self._cond.notify()

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue ``key`` once ``delay`` seconds have passed; the earliest deadline wins."""
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            deadline = self._clock() + delay
            current = self._delayed.get(key)
            if current is None or deadline < current:
                self._delayed[key] = deadline
            self._cond.notify()

    def backoff(self, key: Hashable) -> float:
        """Delay for the next retry of ``key``, doubling with every failure."""
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        return min(self.backoff_base * 2**failures, self.backoff_max)

    def add_rate_limited(self, key: Hashable) -> float:
        delay = self.backoff(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        """Reset the failure count of ``key``."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def _promote_due_locked(self) -> float | None:
        """Move due delayed keys to the ready queue; return seconds until the next deadline."""
        now = self._clock()
        next_deadline = None
        for key, deadline in list(self._delayed.items()):
            if deadline <= now:
                del self._delayed[key]
                self._add_locked(key)
            elif next_deadline is None or deadline < next_deadline:
                next_deadline = deadline
        return None if next_deadline is None else next_deadline - now

    def get(self, timeout: float | None = None) -> Hashable | None:
        """Take the next key, waiting up to ``timeout`` seconds.

        Returns:
            The key, or None on timeout or shutdown
        """
        end = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    return None
                wait = self._promote_due_locked()
                if self._ready:
                    key = self._ready.popleft()
                    self._queued.discard(key)
                    self._processing.add(key)
                    return key
                if end is not None:
                    remaining = end - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable) -> None:
        """Release ``key``; it is queued again if it was added while being processed."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._dirty.discard(key)
                self._add_locked(key)

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()


class Manager:
    """Runs the reconcilers against a management cluster until stopped."""

    def __init__(self, config: ManagerConfig, store: KubernetesObjectStore, reconcilers: list):
        """Initialize the manager.

        Args:
            config: Manager configuration
            store: Management cluster object store
            reconcilers: Reconcilers, each with a ``kind`` model class and ``reconcile``
        """
        self.config = config
        self.store = store
        self.reconcilers = {reconciler.kind: reconciler for reconciler in reconcilers}
        self.queue = WorkQueue(config.backoff_base, config.backoff_max)
        self._stop = threading.Event()
        self._watches: list[watch.Watch] = []
        self._threads: list[threading.Thread] = []
        self._executor: ThreadPoolExecutor | None = None

    def enqueue(self, kind: type, namespace: str, name: str) -> None:
        self.queue.add((kind, Request(namespace, name)))

    def handle_event(self, model_cls: type, event: dict) -> None:
        """Queue the reconcile key an API watch event maps to."""
        obj = event.get("object") or {}
        metadata = obj.get("metadata", {})
        namespace = metadata.get("namespace")
        name = metadata.get("name")
        if not name:
            return

        if model_cls in self.reconcilers:
            self.enqueue(model_cls, namespace, name)
            return

        # A Cluster or Machine changed: requeue the infrastructure object it references
        ref = obj.get("spec", {}).get("infrastructureRef") or {}
        for infra_cls, owner_cls in INFRASTRUCTURE_OWNERS.items():
            if owner_cls is model_cls and infra_cls in self.reconcilers:
                if ref.get("kind") == infra_cls.__name__ and ref.get("name"):
                    self.enqueue(infra_cls, ref.get("namespace") or namespace, ref["name"])

    def watched_kinds(self) -> list[type]:
        kinds = list(self.reconcilers)
        for infra_cls, owner_cls in INFRASTRUCTURE_OWNERS.items():
            if infra_cls in self.reconcilers:
                kinds.append(owner_cls)
        return kinds

    def resync(self) -> None:
        """Queue every object the reconcilers own."""
        for model_cls in self.reconcilers:
            try:
                objects = self.store.list(model_cls, self.config.namespace)
            except ApiException as e:
                logger.error(f"Failed to list {model_cls.__name__}: ({e.status}) {e.reason}")
                continue
            for obj in objects:
                self.enqueue(model_cls, obj.namespace, obj.name)
        logger.debug(f"Resync queued {len(self.queue)} objects")

    def process_next(self, timeout: float | None = 1.0) -> bool:
        """Reconcile one queued key.

        Returns:
            False if the queue was empty or shutting down
        """
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        model_cls, request = key
        try:
            result = self.reconcilers[model_cls].reconcile(request)
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(
                f"Reconciling {model_cls.__name__} {request} failed, retrying in {delay:.0f}s: {e}"
            )
        else:
            self.queue.forget(key)
            if result.requeue:
                self.queue.add_after(key, result.requeue_after)
        finally:
            self.queue.done(key)
        return True

    def _worker(self) -> None:
        while not self._stop.is_set():
            self.process_next()

    def _watch_once(self, model_cls: type) -> None:
        """Stream events for ``model_cls`` until the server closes the watch."""
        func, args = self.store.watch_args(model_cls, self.config.namespace)
        w = watch.Watch()
        self._watches.append(w)
        try:
            for event in w.stream(func, *args, timeout_seconds=WATCH_TIMEOUT):
                self.handle_event(model_cls, event)
                if self._stop.is_set():
                    break
        finally:
            w.stop()
            self._watches.remove(w)

    @staticmethod
    def _log_watch_retry(retry_state: RetryCallState) -> None:
        model_cls = retry_state.args[0]
        err = retry_state.outcome.exception()
        if isinstance(err, ApiException):
            err = f"({err.status}) {err.reason}"
        logger.warning(
            f"Watch on {model_cls.__name__} failed, retrying in "
            f"{retry_state.next_action.sleep:.0f}s: {err}"
        )

    def _watch_loop(self, model_cls: type) -> None:
        while not self._stop.is_set():
            # Backoff restarts with every watch session that ends cleanly
            retrying = Retrying(
                wait=wait_exponential(
                    multiplier=self.config.backoff_base, max=self.config.backoff_max
                ),
                retry=retry_if_exception_type(Exception),
                stop=lambda retry_state: self._stop.is_set(),
                sleep=self._stop.wait,
                before_sleep=self._log_watch_retry,
            )
            try:
                retrying(self._watch_once, model_cls)
            except RetryError:
                return

    def _resync_loop(self) -> None:
        while not self._stop.wait(self.config.resync_period):
            self.resync()

    def start(self) -> None:
        logger.info(
            f"Starting manager with {self.config.workers} workers for "
            f"{', '.join(cls.__name__ for cls in self.reconcilers)}"
        )
        self.resync()
        for model_cls in self.watched_kinds():
            thread = threading.Thread(
                target=self._watch_loop, args=(model_cls,), name=f"watch-{model_cls.__name__}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        resync = threading.Thread(target=self._resync_loop, name="resync", daemon=True)
        resync.start()
        self._threads.append(resync)

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.workers, thread_name_prefix="reconcile"
        )
        for _ in range(self.config.workers):
            self._executor.submit(self._worker)

    def wait(self) -> None:
        """Block until ``stop`` is called."""
        while not self._stop.wait(1.0):
            pass

    def stop(self) -> None:
        logger.info("Stopping manager")
        self._stop.set()
        self.queue.shut_down()
        for w in list(self._watches):
            w.stop()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        for thread in self._threads:
            thread.join(timeout=5.0)
        self._threads.clear()
