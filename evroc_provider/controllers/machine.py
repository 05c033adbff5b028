"""Reconciler driving EvrocMachine objects."""

from kubernetes.client.exceptions import ApiException

from evroc_provider import conditions
from evroc_provider.cloud.errors import handle_error, is_not_found_error
from evroc_provider.config import BOOTSTRAP_DATA_RETRY_DELAY, EVROC_MACHINE_FINALIZER
from evroc_provider.controllers.base import BaseReconciler, IdentityNotReady
from evroc_provider.exceptions import BootstrapDataError
from evroc_provider.logging_config import get_logger, object_logger
from evroc_provider.models import condition as ct
from evroc_provider.models.capi import Cluster, Machine
from evroc_provider.models.cluster import EvrocCluster
from evroc_provider.models.machine import EXTERNAL_IP, INTERNAL_IP, EvrocMachine, MachineAddress
from evroc_provider.owners import (
    get_cluster_from_metadata,
    get_owner_machine,
    is_control_plane_machine,
    is_paused,
)
from evroc_provider.result import Request, Result
from evroc_provider.store import patch_on_exit

logger = get_logger(__name__)

# Key of the bootstrap data secret holding the cloud-init payload
BOOTSTRAP_DATA_KEY = "value"


class EvrocMachineReconciler(BaseReconciler):
    """Provisions the disk, public IP and VM behind an EvrocMachine."""

    kind = EvrocMachine

    def reconcile(self, request: Request) -> Result:
        """Run one reconciliation pass.

        Raises:
            ReconcileError: On terminal or unclassified failures
        """
        log = object_logger(logger, "EvrocMachine", request.namespace, request.name)

        try:
            evroc_machine = self.store.get(EvrocMachine, request.namespace, request.name)
        except ApiException as e:
            if is_not_found_error(e):
                return Result()
            raise

        machine = get_owner_machine(self.store, evroc_machine.metadata)
        if machine is None:
            log.info("Machine Controller has not yet set OwnerRef")
            return Result()

        cluster = get_cluster_from_metadata(self.store, machine.metadata)
        if cluster is None:
            log.info("Machine is missing cluster label or cluster does not exist")
            return Result()

        evroc_cluster = self.get_evroc_cluster(cluster, evroc_machine.namespace)
        if evroc_cluster is None:
            log.info("EvrocCluster is not available yet")
            return Result()

        if is_paused(cluster, evroc_machine):
            log.info("EvrocMachine or linked Cluster is marked as paused. Won't reconcile")
            return Result()

        with patch_on_exit(self.store, evroc_machine):
            try:
                if evroc_machine.metadata.is_being_deleted:
                    return self.reconcile_delete(evroc_cluster, evroc_machine, log)

                if evroc_machine.metadata.add_finalizer(EVROC_MACHINE_FINALIZER):
                    return Result()

                return self.reconcile_normal(cluster, machine, evroc_cluster, evroc_machine, log)
            except IdentityNotReady:
                return self.waiting_for_identity()
            except Exception as e:
                return handle_error(e, "failed to reconcile EvrocMachine")

    def get_evroc_cluster(self, cluster: Cluster, namespace: str) -> EvrocCluster | None:
        ref = cluster.spec.infrastructure_ref
        if ref is None or not ref.name:
            return None
        try:
            return self.store.get(EvrocCluster, ref.namespace or namespace, ref.name)
        except ApiException as e:
            if is_not_found_error(e):
                return None
            raise

    def get_bootstrap_data(self, machine: Machine) -> bytes:
        """Read the bootstrap payload referenced by a Machine.

        Raises:
            ApiException: If the secret cannot be read (404 when it does not exist yet)
            BootstrapDataError: If the secret has no ``value`` key
        """
        secret_name = machine.spec.bootstrap.data_secret_name
        data = self.store.get_secret(machine.namespace, secret_name)
        if BOOTSTRAP_DATA_KEY not in data:
            raise BootstrapDataError(
                f"Bootstrap data secret {machine.namespace}/{secret_name} does not contain 'value' key"
            )
        return data[BOOTSTRAP_DATA_KEY]

    def reconcile_normal(
        self,
        cluster: Cluster,
        machine: Machine,
        evroc_cluster: EvrocCluster,
        evroc_machine: EvrocMachine,
        log,
    ) -> Result:
        log.info("Reconciling EvrocMachine")

        if not cluster.status.infrastructure_ready:
            log.info("Waiting for cluster infrastructure to be ready")
            conditions.mark_false(
                evroc_machine,
                ct.READY,
                "WaitingForClusterInfrastructure",
                ct.SEVERITY_INFO,
                "Waiting for cluster infrastructure to be ready",
            )
            return Result(requeue_after=BOOTSTRAP_DATA_RETRY_DELAY)

        if machine.spec.bootstrap.data_secret_name is None:
            # Workers join an initialized control plane, so they wait for it first
            if not is_control_plane_machine(machine) and not conditions.is_true(
                cluster, ct.CONTROL_PLANE_INITIALIZED
            ):
                log.info("Waiting for the control plane to be initialized")
                conditions.mark_false(
                    evroc_machine,
                    ct.READY,
                    "WaitingForControlPlane",
                    ct.SEVERITY_INFO,
                    "Waiting for control plane to be initialized",
                )
                return Result(requeue_after=BOOTSTRAP_DATA_RETRY_DELAY)

            log.info("Waiting for the Bootstrap provider controller to set bootstrap data")
            conditions.mark_false(
                evroc_machine,
                ct.BOOTSTRAP_DATA_READY,
                "WaitingForBootstrapData",
                ct.SEVERITY_INFO,
                "Waiting for bootstrap data secret to be set",
            )
            return Result(requeue_after=BOOTSTRAP_DATA_RETRY_DELAY)

        try:
            bootstrap_data = self.get_bootstrap_data(machine)
        except Exception as e:
            if is_not_found_error(e):
                log.info("Bootstrap data secret not found yet, waiting")
                conditions.mark_false(
                    evroc_machine,
                    ct.BOOTSTRAP_DATA_READY,
                    "BootstrapDataSecretNotFound",
                    ct.SEVERITY_INFO,
                    "Bootstrap data secret not found yet",
                )
                return Result(requeue_after=BOOTSTRAP_DATA_RETRY_DELAY)
            conditions.mark_false(
                evroc_machine,
                ct.BOOTSTRAP_DATA_READY,
                "BootstrapDataUnavailable",
                ct.SEVERITY_ERROR,
                "Failed to get bootstrap data: %s",
                e,
            )
            conditions.mark_false(
                evroc_machine,
                ct.READY,
                "BootstrapDataNotReady",
                ct.SEVERITY_ERROR,
                "Bootstrap data is not available",
            )
            self.record_failure(evroc_machine, e, "BootstrapDataUnavailable")
            raise

        conditions.mark_true(evroc_machine, ct.BOOTSTRAP_DATA_READY)

        service = self.get_service(evroc_cluster, log)
        try:
            instance = service.reconcile_machine(evroc_cluster, evroc_machine, machine, bootstrap_data)
        except Exception as e:
            conditions.mark_false(
                evroc_machine,
                ct.VM_READY,
                "VMReconciliationFailed",
                ct.SEVERITY_ERROR,
                "Failed to reconcile machine: %s",
                e,
            )
            conditions.mark_false(
                evroc_machine,
                ct.READY,
                "VMNotReady",
                ct.SEVERITY_ERROR,
                "Machine reconciliation failed",
            )
            evroc_machine.status.ready = False
            self.record_failure(evroc_machine, e, "VMReconciliationFailed")
            raise

        conditions.mark_true(evroc_machine, ct.DISK_READY)
        if instance.public_ip_name:
            conditions.mark_true(evroc_machine, ct.PUBLIC_IP_READY)
        evroc_machine.status.instance_state = instance.state or None

        if not instance.running:
            conditions.mark_false(
                evroc_machine,
                ct.VM_READY,
                "VMNotRunning",
                ct.SEVERITY_INFO,
                "VM is in state %s",
                instance.state or "Unknown",
            )
            conditions.mark_false(
                evroc_machine,
                ct.READY,
                "VMNotReady",
                ct.SEVERITY_INFO,
                "Waiting for VM to be running",
            )
            evroc_machine.status.ready = False
            return Result(requeue_after=BOOTSTRAP_DATA_RETRY_DELAY)

        evroc_machine.spec.provider_id = instance.provider_id
        evroc_machine.status.addresses = [
            MachineAddress(type=address_type, address=address)
            for address_type, address in (
                (INTERNAL_IP, instance.internal_address),
                (EXTERNAL_IP, instance.external_address),
            )
            if address
        ]

        conditions.mark_true(evroc_machine, ct.VM_READY)
        conditions.mark_true(evroc_machine, ct.READY)
        evroc_machine.status.ready = True
        self.clear_failure(evroc_machine)
        log.info("Successfully reconciled EvrocMachine")
        return Result()

    def reconcile_delete(self, evroc_cluster: EvrocCluster, evroc_machine: EvrocMachine, log) -> Result:
        log.info("Deleting EvrocMachine")
        conditions.mark_false(
            evroc_machine, ct.READY, "Deleting", ct.SEVERITY_INFO, "Deleting machine resources"
        )
        evroc_machine.status.ready = False

        service = self.get_service(evroc_cluster, log)
        service.delete_machine(evroc_machine)

        evroc_machine.metadata.remove_finalizer(EVROC_MACHINE_FINALIZER)
        log.info("Successfully deleted EvrocMachine")
        return Result()
