"""Status polling tests."""
from __future__ import annotations

from dataclasses import dataclass

import pytest

from webspacectl.reconcile.polling import (
    ProvisioningError,
    ProvisioningTimeoutError,
    wait_until_active,
)


@dataclass
class Resource:
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == "active"


def test_returns_once_resource_is_active() -> None:
    states = iter([Resource("creating"), Resource("creating"), Resource("active")])
    sleeps: list[float] = []

    resource = wait_until_active(
        lambda: next(states), label="webspace", interval=2.0, max_attempts=5, sleep=sleeps.append
    )

    assert resource.is_active
    assert sleeps == [2.0, 2.0, 2.0]


def test_raises_when_resource_disappears() -> None:
    with pytest.raises(ProvisioningError, match="disappeared"):
        wait_until_active(
            lambda: None, label="database x", interval=1, max_attempts=3, sleep=lambda _: None
        )


def test_raises_timeout_after_max_attempts() -> None:
    calls: list[int] = []

    def fetch() -> Resource:
        calls.append(1)
        return Resource("creating")

    with pytest.raises(ProvisioningTimeoutError, match="after 4 attempts"):
        wait_until_active(
            fetch, label="webspace", interval=0.5, max_attempts=4, sleep=lambda _: None
        )

    assert len(calls) == 4
