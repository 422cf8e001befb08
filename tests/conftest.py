"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fakes import FakeHostingApi

from webspacectl.config import Settings, load_config


def make_ssh_key(comment: str = "deploy@ci") -> str:
    """Return a freshly generated OpenSSH RSA public key line."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public = key.public_key().public_bytes(
        serialization.Encoding.OpenSSH, serialization.PublicFormat.OpenSSH
    )
    return f"{public.decode()} {comment}"


def make_settings(tmp_path: Path, **overrides: object) -> Settings:
    """Load settings with instant polling and a temporary log directory."""
    merged: dict[str, object] = {
        "logs_dir": str(tmp_path / "logs"),
        "provisioning": {"poll_interval": 0.01, "max_attempts": 5},
        "vhosts": {"purge_deleted": True, "purge_delay": 0},
    }
    merged.update(overrides)
    return load_config(config_file=tmp_path / "missing.yml", env={}, overrides=merged)


@pytest.fixture(scope="session")
def ssh_key() -> str:
    return make_ssh_key()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def api() -> FakeHostingApi:
    return FakeHostingApi()


@pytest.fixture
def sleeps() -> list[float]:
    """Collect requested sleep intervals instead of sleeping."""
    return []
