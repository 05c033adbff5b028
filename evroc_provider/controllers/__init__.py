"""Reconcilers for the provider's infrastructure objects."""

from evroc_provider.controllers.cluster import EvrocClusterReconciler
from evroc_provider.controllers.machine import EvrocMachineReconciler
from evroc_provider.result import Request, Result

__all__ = ["EvrocClusterReconciler", "EvrocMachineReconciler", "Request", "Result"]
