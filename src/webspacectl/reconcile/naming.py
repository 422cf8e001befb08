"""Name derivation for webspaces, vhost domains, databases and users.

All remote resources are found again purely by name, so every helper here
must be deterministic for a given prefix, ref and app key.
"""
from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

from ..config import ConfigError
from ..manifest import Manifest

_PLACEHOLDER_DEFAULT = re.compile(r"\{default\}", re.IGNORECASE)
_PLACEHOLDER_APP = re.compile(r"\{app\}", re.IGNORECASE)
_PLACEHOLDER_REF = re.compile(r"\{ref\}", re.IGNORECASE)
_FALLBACK_SPLIT = re.compile(r"(.+)-(\w+)")


def derive_project_prefix(repository: str, workflow: str) -> str:
    """Return the five character prefix used when none is configured."""
    digest = hashlib.sha1(f"{repository}-{workflow}".encode()).hexdigest()  # noqa: S324
    return digest[:5]


def webspace_name(prefix: str, ref: str, app_key: str) -> str:
    return f"{prefix}-{ref}-{app_key}".strip()


def database_prefix(prefix: str, ref: str) -> str:
    return f"{prefix}-{ref}".strip()


def database_internal_name(db_prefix: str, schema: str) -> str:
    return f"{db_prefix}-{schema.lower()}"


def database_user_base(db_prefix: str, endpoint: str, app_key: str) -> str:
    """Return the user name shared by every rotation of one endpoint/app pair."""
    return f"{db_prefix}-{endpoint.lower()}--{app_key}"


def rotated_user_name(base: str, rotation: int) -> str:
    return f"{base}.v{rotation}"


def parse_rotation(name: str, base: str) -> int | None:
    """Return the rotation number of *name* within the *base* family.

    ``base`` itself counts as rotation 0; names outside the family yield
    ``None``.
    """
    if name == base:
        return 0
    match = re.fullmatch(re.escape(base) + r"\.v(\d+)", name)
    if match is None:
        return None
    return int(match.group(1))


def service_user_name(user_prefix: str, webspace: str) -> str:
    """Return the name of the CI user that owns SSH access to *webspace*."""
    return f"{user_prefix}{webspace}"


def ssh_user_display_name(name: str, key: str) -> str:
    """Return ``"<name> #<fingerprint>#"``; a new key yields a new identity."""
    fingerprint = hashlib.sha512(key.encode()).hexdigest()
    return f"{name} #{fingerprint[:6]}#"


def extract_branch(name: str, prefix: str, app_keys: Iterable[str]) -> str | None:
    """Return the ref embedded in ``{prefix}-{ref}-{app}``.

    Declared app keys decide the split. A name ending in no declared key,
    such as one of an app removed from the manifest, is split at its last
    dash. Names outside the prefix and names that declared keys split in
    more than one way return ``None``.
    """
    head = f"{prefix}-"
    if not name.startswith(head):
        return None
    rest = name[len(head) :]
    candidates = {
        rest[: -len(app_key) - 1]
        for app_key in app_keys
        if app_key and rest.endswith(f"-{app_key}") and len(rest) > len(app_key) + 1
    }
    if len(candidates) > 1:
        return None
    if candidates:
        return candidates.pop()
    match = _FALLBACK_SPLIT.fullmatch(rest)
    return match.group(1) if match else None


def translate_domain_name(
    template: str | None,
    ref: str,
    manifest: Manifest,
    app_key: str,
    default_domain: str | None = None,
) -> str:
    """Resolve a vhost domain template for *ref*.

    Outside the parent environment a configured preview domain
    (``project.domain``) replaces the template. ``{default}`` resolves to
    *default_domain* in the parent environment and to the preview domain
    elsewhere, each falling back to the other. ``{app}`` and ``{ref}`` are
    substituted case-insensitively, then every ``/`` becomes ``--``.
    """
    project = manifest.project
    in_parent = ref == project.parent
    domain = template or "{default}"
    if project.domain and not in_parent:
        domain = project.domain

    if _PLACEHOLDER_DEFAULT.search(domain):
        ordered = (default_domain, project.domain) if in_parent else (project.domain, default_domain)
        fallback = next((candidate for candidate in ordered if candidate), None)
        if fallback is None:
            raise ConfigError(
                f'No domain name configured for the app defined under "applications.{app_key}". '
                'Provide "DOMAIN_NAME" in the GitHub environment settings or set '
                f'"applications.{app_key}.web[].domainName".'
            )
        domain = _PLACEHOLDER_DEFAULT.sub(lambda _: fallback, domain)

    domain = _PLACEHOLDER_APP.sub(lambda _: app_key, domain)
    domain = _PLACEHOLDER_REF.sub(lambda _: ref, domain)
    domain = domain.replace("/", "--").strip()
    if not domain:
        raise ConfigError(f'Domain name for "applications.{app_key}" resolved to an empty string.')
    return domain


__all__ = [
    "database_internal_name",
    "database_prefix",
    "database_user_base",
    "derive_project_prefix",
    "extract_branch",
    "parse_rotation",
    "rotated_user_name",
    "service_user_name",
    "ssh_user_display_name",
    "translate_domain_name",
    "webspace_name",
]
