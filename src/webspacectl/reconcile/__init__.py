"""Desired-versus-actual reconciliation of hosting resources."""
from __future__ import annotations

from .engine import Reconciler
from .models import Destination, PruneResult, SetupRequest, SetupResult
from .polling import ProvisioningError, ProvisioningTimeoutError

__all__ = [
    "Destination",
    "ProvisioningError",
    "ProvisioningTimeoutError",
    "PruneResult",
    "Reconciler",
    "SetupRequest",
    "SetupResult",
]
