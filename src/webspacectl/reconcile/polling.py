"""Bounded status polling for resources that boot asynchronously."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol, TypeVar

LOGGER = logging.getLogger(__name__)


class ProvisioningError(RuntimeError):
    """Raised when a resource fails while being provisioned."""


class ProvisioningTimeoutError(ProvisioningError):
    """Raised when a resource does not become active in time."""


class _Provisioned(Protocol):
    @property
    def is_active(self) -> bool: ...


ResourceT = TypeVar("ResourceT", bound=_Provisioned)


def wait_until_active(
    fetch: Callable[[], ResourceT | None],
    *,
    label: str,
    interval: float,
    max_attempts: int,
    sleep: Callable[[float], None] = time.sleep,
) -> ResourceT:
    """Poll *fetch* every *interval* seconds until the resource is active."""
    for attempt in range(1, max_attempts + 1):
        sleep(interval)
        LOGGER.info("Waiting for %s to boot (attempt %d/%d)...", label, attempt, max_attempts)
        resource = fetch()
        if resource is None:
            raise ProvisioningError(f"{label} disappeared while booting.")
        if resource.is_active:
            return resource
    raise ProvisioningTimeoutError(
        f"{label} did not become active after {max_attempts} attempts "
        f"({max_attempts * interval:.0f}s)."
    )


__all__ = ["ProvisioningError", "ProvisioningTimeoutError", "wait_until_active"]
