"""Webspace reconciliation.

A webspace moves through ``ABSENT -> CREATING -> BOOTING -> ACTIVE`` on its
first run and ``ACTIVE -> UPDATING -> ACTIVE`` whenever its cron jobs, redis
flag or SSH accesses drift from the manifest. Accesses are only ever added;
users that are no longer declared keep their access.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from ..config import ConfigError, Settings
from ..manifest import AppConfig, Manifest, ValidationError
from ..providers.hosting_api import HostingApiClient
from ..providers.hosting_models import Webspace, WebspaceUser
from .naming import ssh_user_display_name
from .polling import ProvisioningError, wait_until_active
from .transforms import normalize_cron_job, transform_cron_job

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebspaceOutcome:
    """The reconciled webspace and the coordinates derived from it."""

    webspace: Webspace
    is_new: bool
    ssh_user: str
    ssh_host: str
    http_user: str
    env_vars: dict[str, str]


@dataclass(frozen=True)
class DeclaredUser:
    """An SSH user from the manifest, keyed by its remote display name."""

    display_name: str
    key: str


def validate_ssh_key(key: str, key_types: tuple[str, ...]) -> None:
    """Raise :class:`ValidationError` unless *key* is a supported public key."""
    parts = key.split()
    if len(parts) < 2 or len(parts) > 3:
        raise ValidationError("SSH key must read '<type> <base64> [comment]'.")
    if parts[0] not in key_types:
        allowed = ", ".join(key_types)
        raise ValidationError(f'SSH key type "{parts[0]}" is not supported. Allowed: {allowed}.')
    try:
        serialization.load_ssh_public_key(f"{parts[0]} {parts[1]}".encode())
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise ValidationError(f"SSH key could not be parsed: {exc}") from exc


def declared_users(
    manifest: Manifest,
    app: AppConfig,
    *,
    key_types: tuple[str, ...],
    access_role: str | None = None,
) -> list[DeclaredUser]:
    """Return the app's SSH users that pass the role filter and key checks."""
    users: list[DeclaredUser] = []
    for name in app.users:
        user = manifest.users.get(name)
        if user is None:
            raise ConfigError(f'User "{name}" is not declared under "users".')
        if access_role and user.role != access_role:
            LOGGER.debug('Skipping user "%s": role "%s" lacks SSH access.', name, user.role)
            continue
        try:
            validate_ssh_key(user.key, key_types)
        except ValidationError as exc:
            LOGGER.error('SSH key of user "%s" is not supported: %s', name, exc)
            continue
        users.append(DeclaredUser(ssh_user_display_name(name, user.key), user.key))
    return users


def resolve_ssh_users(
    client: HostingApiClient,
    *,
    service_user: str,
    ssh_public_key: str,
    declared: list[DeclaredUser],
    changes: list[str],
) -> tuple[WebspaceUser, list[WebspaceUser]]:
    """Find or create the service user and every declared user.

    Returns the service user and the full list (service user first).
    """
    existing = {
        user.name: user
        for user in client.find_webspace_users(
            [service_user, *(item.display_name for item in declared)]
        )
    }

    service = existing.get(service_user)
    if service is None:
        if not ssh_public_key.strip():
            raise ConfigError(
                f'Webspace user "{service_user}" does not exist and no "ssh-public-key" was given.'
            )
        LOGGER.info("Creating webspace user %s", service_user)
        service = client.create_webspace_user(service_user, ssh_public_key.strip())
        changes.append(f"webspace-user.create {service_user}")

    users = [service]
    for item in declared:
        user = existing.get(item.display_name)
        if user is None:
            LOGGER.info("Creating webspace user %s", item.display_name)
            user = client.create_webspace_user(item.display_name, item.key)
            changes.append(f"webspace-user.create {item.display_name}")
        users.append(user)
    return service, users


def reconcile_webspace(
    client: HostingApiClient,
    settings: Settings,
    manifest: Manifest,
    app: AppConfig,
    *,
    name: str,
    service_user: str,
    ssh_public_key: str,
    access_role: str | None,
    changes: list[str],
    sleep: Callable[[float], None],
) -> WebspaceOutcome:
    """Create or converge the webspace *name* and return its SSH coordinates."""
    declared = declared_users(
        manifest, app, key_types=settings.ssh.key_types, access_role=access_role
    )
    service, users = resolve_ssh_users(
        client,
        service_user=service_user,
        ssh_public_key=ssh_public_key,
        declared=declared,
        changes=changes,
    )
    desired_cron = [transform_cron_job(cron, app.php.version) for cron in app.cron]
    redis_enabled = app.redis_enabled

    webspace = client.find_webspace_by_name(name)
    is_new = webspace is None
    if webspace is None:
        LOGGER.info("Creating webspace %s", name)
        created = client.create_webspace(
            name,
            user_ids=[user.id for user in users],
            cron_jobs=desired_cron,
            redis_enabled=redis_enabled,
            product_code=settings.products.webspace,
            pool_id=app.pool,
            account_id=app.account,
        )
        changes.append(f"webspace.create {name}")
        webspace = wait_until_active(
            lambda: client.find_webspace_by_id(created.id),
            label=f"webspace {name} ({created.id})",
            interval=settings.provisioning.poll_interval,
            max_attempts=settings.provisioning.max_attempts,
            sleep=sleep,
        )
    else:
        existing_ids = [access.user_id for access in webspace.accesses]
        missing = [user for user in users if user.id not in existing_ids]
        current_cron = [normalize_cron_job(job) for job in webspace.cron_jobs]
        if current_cron == desired_cron and webspace.redis_enabled == redis_enabled and not missing:
            LOGGER.info("Using webspace %s (%s)", name, webspace.id)
        else:
            LOGGER.info("Updating webspace %s (%s)", name, webspace.id)
            accesses = [dict(access.raw) for access in webspace.accesses]
            accesses.extend({"userId": user.id, "sshAccess": True} for user in missing)
            webspace = client.update_webspace(
                webspace,
                accesses=accesses,
                cron_jobs=desired_cron,
                redis_enabled=redis_enabled,
            )
            changes.append(f"webspace.update {name}")

    access = next((item for item in webspace.accesses if item.user_id == service.id), None)
    if access is None:
        raise ProvisioningError(
            f'SSH access to webspace "{name}" was revoked for user "{service_user}".'
        )

    env_vars: dict[str, str] = {}
    for relation, target in app.relationships.items():
        if target != "redis":
            continue
        key = relation.replace("-", "_").upper()
        socket = f"/run/redis-{webspace.webspace_name}/sock"
        env_vars[f"{key}_HOST"] = socket
        env_vars[f"{key}_URL"] = f"redis://{socket}"

    return WebspaceOutcome(
        webspace=webspace,
        is_new=is_new,
        ssh_user=access.user_name,
        ssh_host=webspace.host_name,
        http_user=webspace.webspace_name,
        env_vars=env_vars,
    )


__all__ = [
    "DeclaredUser",
    "WebspaceOutcome",
    "declared_users",
    "reconcile_webspace",
    "resolve_ssh_users",
    "validate_ssh_key",
]
