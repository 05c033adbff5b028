"""Provisioning against the evroc cloud API."""

from evroc_provider.cloud.errors import ErrorClass, classify_error, handle_error
from evroc_provider.cloud.machine import MachineInstance, provider_id
from evroc_provider.cloud.service import EvrocService

__all__ = [
    "ErrorClass",
    "EvrocService",
    "MachineInstance",
    "classify_error",
    "handle_error",
    "provider_id",
]
