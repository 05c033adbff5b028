"""Requests and outcomes of a reconciliation pass."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Request:
    """Identity of the object to reconcile."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class Result:
    """Outcome of a pass that did not raise.

    ``requeue_after`` asks for another pass after that many seconds; None means
    wait for the next change event.
    """

    requeue_after: float | None = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None
