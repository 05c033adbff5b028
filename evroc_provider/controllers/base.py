"""Plumbing shared by the EvrocCluster and EvrocMachine reconcilers."""

import logging
from typing import Callable

from kubernetes.client.exceptions import ApiException

from evroc_provider.cloud.errors import ErrorClass, classify_error, describe, is_not_found_error
from evroc_provider.cloud.service import EvrocService
from evroc_provider.config import BOOTSTRAP_DATA_RETRY_DELAY
from evroc_provider.models.cluster import EvrocCluster
from evroc_provider.registry import Registry
from evroc_provider.result import Result
from evroc_provider.store import ObjectStore

ServiceFactory = Callable[[EvrocCluster, logging.LoggerAdapter], EvrocService]


class IdentityNotReady(Exception):
    """The identity secret of an EvrocCluster does not exist yet."""


class BaseReconciler:
    """Holds the management store and builds evroc services on demand."""

    def __init__(
        self,
        store: ObjectStore,
        evroc_registry: Registry,
        service_factory: ServiceFactory | None = None,
    ):
        """Initialize the reconciler.

        Args:
            store: Management cluster object store
            evroc_registry: Registry of the evroc cloud resource kinds
            service_factory: Builds an EvrocService for a cluster; defaults to one
                using the cluster's identity secret
        """
        self.store = store
        self.evroc_registry = evroc_registry
        self.service_factory = service_factory or self._default_service

    def _default_service(self, evroc_cluster: EvrocCluster, log) -> EvrocService:
        return EvrocService.from_cluster(self.store, self.evroc_registry, evroc_cluster, log)

    def get_service(self, evroc_cluster: EvrocCluster, log) -> EvrocService:
        """Build the evroc service for a cluster.

        Raises:
            IdentityNotReady: If the identity secret does not exist yet
        """
        try:
            return self.service_factory(evroc_cluster, log)
        except ApiException as e:
            if is_not_found_error(e):
                log.info(f"Identity secret {evroc_cluster.spec.identity_secret_name} not found, waiting")
                raise IdentityNotReady() from e
            raise

    @staticmethod
    def waiting_for_identity() -> Result:
        return Result(requeue_after=BOOTSTRAP_DATA_RETRY_DELAY)

    @staticmethod
    def record_failure(obj, err: BaseException, reason: str) -> None:
        """Set the failure reason and message when an error will not clear by itself."""
        if classify_error(err) is ErrorClass.TRANSIENT:
            return
        obj.status.failure_reason = reason
        obj.status.failure_message = describe(err)

    @staticmethod
    def clear_failure(obj) -> None:
        obj.status.failure_reason = None
        obj.status.failure_message = None
