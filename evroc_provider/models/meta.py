"""Object metadata shared by every resource the provider reads or writes."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KubeModel(BaseModel):
    """Base model serialised with the camelCase keys the API server uses."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_dict(self) -> dict:
        """Dump to an API body, dropping unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class OwnerReference(KubeModel):
    """Back-reference from an object to one of its owners."""

    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool | None = None

    @property
    def group(self) -> str:
        """API group of the owner, empty for the core group."""
        if "/" not in self.api_version:
            return ""
        return self.api_version.split("/", 1)[0]


class ObjectMeta(KubeModel):
    """Kubernetes object metadata."""

    name: str
    namespace: str = ""
    uid: str | None = None
    resource_version: str | None = None
    generation: int | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Add a finalizer, returning True if the list changed."""
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove a finalizer, returning True if the list changed."""
        if finalizer not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != finalizer]
        return True

    @property
    def is_being_deleted(self) -> bool:
        return self.deletion_timestamp is not None


class KubeObject(KubeModel):
    """A top-level API object: type information plus metadata."""

    api_version: str | None = None
    kind: str | None = None
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """Namespaced name, as used in log lines and work queues."""
        return f"{self.metadata.namespace}/{self.metadata.name}"
