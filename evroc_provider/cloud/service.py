"""Client for the evroc cloud's declarative API."""

import logging
from typing import Callable, TypeVar

import yaml
from kubernetes import config as kube_config
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException

from evroc_provider.cloud.errors import describe, is_forbidden_error, is_not_found_error
from evroc_provider.cloud.machine import MachineMixin
from evroc_provider.cloud.network import NetworkMixin
from evroc_provider.exceptions import CloudError, CredentialsError
from evroc_provider.logging_config import get_logger
from evroc_provider.models.cluster import EvrocCluster
from evroc_provider.models.meta import KubeObject
from evroc_provider.registry import Registry
from evroc_provider.store import KubernetesObjectStore, ObjectStore

logger = get_logger(__name__)

T = TypeVar("T", bound=KubeObject)

# Keys of the identity secret holding the kubeconfig, in order of preference
IDENTITY_SECRET_KEYS = ("config", "kubeconfig")


def load_kubeconfig(data: bytes, project: str) -> dict:
    """Parse an evroc kubeconfig and scope every server URL to a project.

    Raises:
        CredentialsError: If the data is not a kubeconfig
    """
    try:
        kubeconfig = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise CredentialsError("Identity secret does not contain a valid kubeconfig", str(e))

    if not isinstance(kubeconfig, dict) or not kubeconfig.get("clusters"):
        raise CredentialsError(
            "Identity secret does not contain a valid kubeconfig",
            "Expected a kubeconfig document with at least one cluster entry",
        )

    if project:
        for entry in kubeconfig["clusters"]:
            cluster = entry.get("cluster", {})
            server = cluster.get("server", "").rstrip("/")
            cluster["server"] = f"{server}/clusters/root:{project}"
    return kubeconfig


def new_api_client(kubeconfig: dict) -> ApiClient:
    return kube_config.new_client_from_config_dict(kubeconfig, persist_config=False)


class EvrocService(NetworkMixin, MachineMixin):
    """Idempotent get-or-create and delete operations against one evroc project.

    Every resource lives in the namespace named after the project and is addressed by
    a deterministic name, so operations can be repeated after a restart.
    """

    def __init__(self, store: ObjectStore, project: str, log: logging.Logger | None = None):
        """Initialize the service.

        Args:
            store: Object store speaking to the evroc API
            project: evroc project, used as namespace for every resource
            log: Logger to report progress to
        """
        self.store = store
        self.project = project
        self.log = log or logger

    @classmethod
    def from_cluster(
        cls,
        mgmt_store: ObjectStore,
        registry: Registry,
        evroc_cluster: EvrocCluster,
        log: logging.Logger | None = None,
        api_client_factory: Callable[[dict], ApiClient] = new_api_client,
    ) -> "EvrocService":
        """Create a service using the credentials referenced by an EvrocCluster.

        Args:
            mgmt_store: Store of the management cluster holding the identity secret
            registry: Registry with the evroc resource kinds
            evroc_cluster: Cluster whose identity secret and project to use
            log: Logger to report progress to
            api_client_factory: Builds an API client from a kubeconfig dict

        Raises:
            ApiException: If the identity secret cannot be read (404 when missing)
            CredentialsError: If the secret holds no usable kubeconfig
        """
        (log or logger).info("Creating new evroc service")
        secret_name = evroc_cluster.spec.identity_secret_name
        data = mgmt_store.get_secret(evroc_cluster.namespace, secret_name)

        kubeconfig_data = None
        for key in IDENTITY_SECRET_KEYS:
            if key in data:
                kubeconfig_data = data[key]
                break
        if kubeconfig_data is None:
            raise CredentialsError(
                f"Secret {evroc_cluster.namespace}/{secret_name} does not contain "
                "'config' or 'kubeconfig' data"
            )

        kubeconfig = load_kubeconfig(kubeconfig_data, evroc_cluster.spec.project)
        try:
            api_client = api_client_factory(kubeconfig)
        except (kube_config.ConfigException, ValueError) as e:
            raise CredentialsError("Failed to create evroc API client", str(e))

        return cls(KubernetesObjectStore(api_client, registry), evroc_cluster.spec.project, log)

    def get_or_create(self, obj: T) -> tuple[T, bool]:
        """Fetch a resource by name, creating it from ``obj`` if it does not exist.

        Returns:
            The observed resource and whether it was created by this call

        Raises:
            CloudError: If the lookup or the create fails
        """
        kind = type(obj).__name__
        try:
            return self.store.get(type(obj), obj.namespace, obj.name), False
        except ApiException as e:
            if not is_not_found_error(e):
                raise CloudError(f"failed to get {kind} {obj.name}: {describe(e)}") from e

        self.log.info(f"{kind} {obj.name} not found, creating it")
        try:
            created = self.store.create(obj)
        except ApiException as e:
            raise CloudError(f"failed to create {kind} {obj.name}: {describe(e)}") from e
        self.log.info(f"{kind} {obj.name} created successfully")
        return created, True

    def get(self, model_cls: type[T], name: str) -> T:
        try:
            return self.store.get(model_cls, self.project, name)
        except ApiException as e:
            raise CloudError(f"failed to get {model_cls.__name__} {name}: {describe(e)}") from e

    def delete_resource(self, model_cls: type[KubeObject], name: str) -> bool:
        """Delete a resource, treating absent and shared resources as already handled.

        Not found means it is already gone. Forbidden means a pre-existing or shared
        resource the project credentials may not delete.

        Returns:
            True if a delete was issued, False if it was skipped
        """
        kind = model_cls.__name__
        try:
            self.store.delete(model_cls, self.project, name)
        except ApiException as e:
            if is_not_found_error(e):
                self.log.info(f"{kind} {name} already deleted or not found")
                return False
            if is_forbidden_error(e):
                self.log.info(f"Skipping deletion of shared/pre-existing {kind} {name} (read-only)")
                return False
            raise CloudError(f"failed to delete {kind} {name}: {describe(e)}") from e
        self.log.info(f"Deleted {kind} {name}")
        return True
