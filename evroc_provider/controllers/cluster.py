"""Reconciler driving EvrocCluster objects."""

from kubernetes.client.exceptions import ApiException

from evroc_provider import conditions
from evroc_provider.cloud.errors import handle_error, is_not_found_error
from evroc_provider.cloud.service import EvrocService
from evroc_provider.config import (
    BOOTSTRAP_DATA_RETRY_DELAY,
    CONTROL_PLANE_PORT,
    EVROC_CLUSTER_FINALIZER,
)
from evroc_provider.controllers.base import BaseReconciler, IdentityNotReady
from evroc_provider.logging_config import get_logger, object_logger
from evroc_provider.models import condition as ct
from evroc_provider.models.capi import Cluster
from evroc_provider.models.cluster import APIEndpoint, EvrocCluster
from evroc_provider.owners import get_owner_cluster, is_paused
from evroc_provider.result import Request, Result
from evroc_provider.store import PatchHelper, patch_on_exit

logger = get_logger(__name__)


class EvrocClusterReconciler(BaseReconciler):
    """Provisions the network and control plane endpoint of an EvrocCluster."""

    kind = EvrocCluster

    def reconcile(self, request: Request) -> Result:
        """Run one reconciliation pass.

        Raises:
            ReconcileError: On terminal or unclassified failures
        """
        log = object_logger(logger, "EvrocCluster", request.namespace, request.name)

        try:
            evroc_cluster = self.store.get(EvrocCluster, request.namespace, request.name)
        except ApiException as e:
            if is_not_found_error(e):
                return Result()
            raise

        # The Cluster may set its owner reference later; infrastructure proceeds without it
        cluster = get_owner_cluster(self.store, evroc_cluster.metadata)
        if cluster is not None and is_paused(cluster, evroc_cluster):
            log.info("EvrocCluster or linked Cluster is marked as paused. Won't reconcile")
            return Result()

        with patch_on_exit(self.store, evroc_cluster):
            try:
                if evroc_cluster.metadata.is_being_deleted:
                    return self.reconcile_delete(evroc_cluster, log)

                if evroc_cluster.metadata.add_finalizer(EVROC_CLUSTER_FINALIZER):
                    # Commit the finalizer before any cloud resource exists
                    return Result()

                return self.reconcile_normal(evroc_cluster, log)
            except IdentityNotReady:
                return self.waiting_for_identity()
            except Exception as e:
                return handle_error(e, "failed to reconcile EvrocCluster")

    def reconcile_normal(self, evroc_cluster: EvrocCluster, log) -> Result:
        log.info("Reconciling EvrocCluster")
        service = self.get_service(evroc_cluster, log)

        try:
            service.reconcile_network(evroc_cluster)
        except Exception as e:
            conditions.mark_false(
                evroc_cluster,
                ct.NETWORK_READY,
                "NetworkReconciliationFailed",
                ct.SEVERITY_ERROR,
                "Failed to reconcile network: %s",
                e,
            )
            conditions.mark_false(
                evroc_cluster,
                ct.READY,
                "NetworkNotReady",
                ct.SEVERITY_ERROR,
                "Network reconciliation failed",
            )
            evroc_cluster.status.ready = False
            self.record_failure(evroc_cluster, e, "NetworkReconciliationFailed")
            raise

        conditions.mark_true(evroc_cluster, ct.VPC_READY)
        conditions.mark_true(evroc_cluster, ct.SUBNETS_READY)
        conditions.mark_true(evroc_cluster, ct.NETWORK_READY)

        # Must precede the endpoint: the endpoint is the address of this IP
        public_ip_name, address = service.reconcile_control_plane_public_ip(evroc_cluster)
        evroc_cluster.status.control_plane_public_ip_name = public_ip_name
        if not address:
            log.info("Control plane PublicIP not yet allocated, waiting")
            conditions.mark_false(
                evroc_cluster,
                ct.READY,
                "WaitingForControlPlaneIP",
                ct.SEVERITY_INFO,
                "Waiting for control plane public IP %s to be allocated",
                public_ip_name,
            )
            return Result(requeue_after=BOOTSTRAP_DATA_RETRY_DELAY)

        if evroc_cluster.spec.control_plane_endpoint.is_zero:
            evroc_cluster.spec.control_plane_endpoint = APIEndpoint(host=address, port=CONTROL_PLANE_PORT)

        cluster = get_owner_cluster(self.store, evroc_cluster.metadata)
        if cluster is not None:
            self.reconcile_control_plane_endpoint(cluster, address, log)
        else:
            log.info("Cluster OwnerRef not set yet, skipping control plane endpoint reconciliation")

        conditions.mark_true(evroc_cluster, ct.READY)
        evroc_cluster.status.ready = True
        self.clear_failure(evroc_cluster)
        log.info("Successfully reconciled EvrocCluster")
        return Result()

    def reconcile_control_plane_endpoint(self, cluster: Cluster, address: str, log) -> None:
        """Point the Cluster's control plane endpoint at the pre-allocated address, once."""
        endpoint = cluster.spec.control_plane_endpoint
        if endpoint.host == address and endpoint.port == CONTROL_PLANE_PORT:
            log.debug(f"ControlPlaneEndpoint already set to {address}:{CONTROL_PLANE_PORT}")
            return

        log.info(f"Setting ControlPlaneEndpoint to pre-allocated PublicIP {address}:{CONTROL_PLANE_PORT}")
        helper = PatchHelper(self.store, cluster)
        cluster.spec.control_plane_endpoint = APIEndpoint(host=address, port=CONTROL_PLANE_PORT)
        helper.patch(cluster)

    def reconcile_delete(self, evroc_cluster: EvrocCluster, log) -> Result:
        log.info("Deleting EvrocCluster")
        conditions.mark_false(
            evroc_cluster, ct.READY, "Deleting", ct.SEVERITY_INFO, "Deleting cluster infrastructure"
        )
        evroc_cluster.status.ready = False

        service: EvrocService = self.get_service(evroc_cluster, log)
        service.delete_network(evroc_cluster)

        evroc_cluster.metadata.remove_finalizer(EVROC_CLUSTER_FINALIZER)
        log.info("Successfully deleted EvrocCluster")
        return Result()
