"""Delete the resources of branches that no longer exist."""
from __future__ import annotations

import logging
from collections.abc import Iterable

from ..manifest import Manifest
from ..providers.hosting_api import HostingApiClient
from .models import PruneResult
from .naming import extract_branch, service_user_name

LOGGER = logging.getLogger(__name__)


def _owned_by_other_ref(name: str, prefix: str, ref: str, kept: Iterable[str]) -> bool:
    """Return ``True`` when *name* belongs to a kept ref that extends *ref*."""
    return any(
        other != ref and other.startswith(f"{ref}-") and name.startswith(f"{prefix}-{other}-")
        for other in kept
    )


def prune_branches(
    client: HostingApiClient,
    manifest: Manifest,
    *,
    prefix: str,
    branches: Iterable[str],
    current_ref: str | None,
    service_user_prefix: str,
    changes: list[str],
) -> PruneResult:
    """Delete webspaces, databases and users of refs missing from *branches*.

    The current ref is always kept. An empty branch list disables pruning
    since it usually means the branch listing was not provided.
    """
    kept = {branch for branch in branches if branch}
    if not kept:
        message = "No branch list provided; skipping branch pruning."
        LOGGER.warning(message)
        return PruneResult(skipped=True, warnings=(message,))
    if current_ref:
        kept.add(current_ref)

    app_keys = list(manifest.applications)
    deleted_webspaces: list[str] = []
    deleted_databases: list[str] = []
    deleted_database_users: list[str] = []
    deleted_webspace_users: list[str] = []
    kept_webspaces: list[str] = []
    skipped_webspaces: list[str] = []
    stale_refs: list[str] = []

    for webspace in client.find_webspaces(prefix):
        ref = extract_branch(webspace.name, prefix, app_keys)
        if ref is None:
            LOGGER.info("Skipping webspace %s: cannot tell its branch", webspace.name)
            skipped_webspaces.append(webspace.name)
            continue
        if ref in kept:
            LOGGER.info("Keeping webspace %s", webspace.name)
            kept_webspaces.append(webspace.name)
            continue

        LOGGER.info("Deleting webspace %s", webspace.name)
        client.delete_webspace(webspace.id)
        deleted_webspaces.append(webspace.name)
        changes.append(f"webspace.delete {webspace.name}")
        if ref not in stale_refs:
            stale_refs.append(ref)

        for user in client.find_webspace_users(
            [service_user_name(service_user_prefix, webspace.name)]
        ):
            LOGGER.info("Deleting webspace user %s", user.name)
            client.delete_webspace_user(user.id)
            deleted_webspace_users.append(user.name)
            changes.append(f"webspace-user.delete {user.name}")

    for ref in stale_refs:
        pattern = f"{prefix}-{ref}-*"
        for database in client.find_databases([pattern]):
            if _owned_by_other_ref(database.name, prefix, ref, kept):
                continue
            LOGGER.info("Deleting database %s", database.name)
            client.delete_database(database.id)
            deleted_databases.append(database.name)
            changes.append(f"database.delete {database.name}")
        for user in client.find_database_users([pattern]):
            if _owned_by_other_ref(user.name, prefix, ref, kept):
                continue
            LOGGER.info("Deleting database user %s", user.name)
            client.delete_database_user(user.id)
            deleted_database_users.append(user.name)
            changes.append(f"database-user.delete {user.name}")

    return PruneResult(
        deleted_webspaces=tuple(deleted_webspaces),
        deleted_databases=tuple(deleted_databases),
        deleted_database_users=tuple(deleted_database_users),
        deleted_webspace_users=tuple(deleted_webspace_users),
        kept_webspaces=tuple(kept_webspaces),
        skipped_webspaces=tuple(skipped_webspaces),
    )


__all__ = ["prune_branches"]
