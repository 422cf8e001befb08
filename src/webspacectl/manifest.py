"""Loader for the ``.hosting/config.yaml`` application manifest.

The manifest describes the project (parent environment, preview domain,
pruning, resource pool), the declared database schemas and endpoints, SSH
users, and one entry per application. It is deserialised into frozen
dataclasses; every optional field receives its documented default while the
document is read, so downstream code never has to merge defaults itself.

Example::

    project:
      parent: main
      domain: "{ref}-{app}.preview.example.com"
    databases:
      schemas: [shop]
      endpoints:
        web: "shop:admin"
        reporting: "shop:ro"
    users:
      alice: {role: developer, key: "ssh-rsa AAAA... alice@laptop"}
    applications:
      web:
        php: {version: "8.2", extensions: [redis], ini: {memory_limit: 512M}}
        relationships: {database: "database:web", cache: "redis"}
        web:
          - domainName: "{default}"
            root: public
            locations:
              "/": {passthru: "/index.php"}
        cron:
          - {php: "bin/console app:cleanup", every: day, on: "2-3"}
        users: [alice]
        sync: [public/uploads]
"""
from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .config import ConfigError

MANIFEST_NAME = ".hosting/config.yaml"
ALLOWED_PRIVILEGES = ("ro", "rw", "admin")


class ValidationError(RuntimeError):
    """Raised when a manifest value is structurally valid but unsupported."""


@dataclass(frozen=True)
class ProjectConfig:
    """Project-wide settings."""

    parent: str = ""
    domain: str | None = None
    prune: bool = True
    pool: str | None = None


@dataclass(frozen=True)
class DatabasesConfig:
    """Declared database schemas and the endpoints that expose them."""

    schemas: tuple[str, ...] = ()
    endpoints: Mapping[str, str] = field(default_factory=dict)

    def resolve(self, endpoint: str) -> tuple[str, str]:
        """Return ``(schema, privilege)`` for *endpoint*.

        Raises :class:`ConfigError` for undeclared endpoints or schemas and
        :class:`ValidationError` for unknown privilege levels.
        """
        declaration = self.endpoints.get(endpoint)
        if declaration is None:
            raise ConfigError(f'Could not find "databases.endpoints.{endpoint}".')
        schema, _, privilege = declaration.partition(":")
        schema = schema.strip()
        privilege = privilege.strip() or "admin"
        if schema not in self.schemas:
            raise ConfigError(f'Could not find schema "{schema}" under "databases.schemas".')
        if privilege not in ALLOWED_PRIVILEGES:
            allowed = ", ".join(ALLOWED_PRIVILEGES)
            raise ValidationError(
                f'Unknown privilege "{privilege}" for endpoint "{endpoint}". Allowed: {allowed}.'
            )
        return schema, privilege


@dataclass(frozen=True)
class UserConfig:
    """An SSH user that may be granted access to webspaces."""

    role: str
    key: str


@dataclass(frozen=True)
class PhpConfig:
    """PHP runtime settings for an application."""

    version: str | None = None
    extensions: tuple[str, ...] = ()
    ini: Mapping[str, str | bool | int | float] = field(default_factory=dict)


@dataclass(frozen=True)
class LocationConfig:
    """A location rule inside a vhost."""

    passthru: str | bool | None = None
    expires: str | None = None
    allow: bool = True


@dataclass(frozen=True)
class WebConfig:
    """A single vhost declaration."""

    domain_name: str | None = None
    root: str = ""
    www: bool = True
    locations: Mapping[str, LocationConfig] = field(default_factory=dict)


@dataclass(frozen=True)
class CronjobConfig:
    """A cron job declaration; exactly one of ``php``/``cmd`` is set."""

    php: str | None = None
    cmd: str | None = None
    every: str = "hour"
    on: str | None = None


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration for one application key."""

    account: str | None = None
    pool: str | None = None
    php: PhpConfig = PhpConfig()
    env: Mapping[str, str | bool | int | float] = field(default_factory=dict)
    relationships: Mapping[str, str] = field(default_factory=dict)
    web: tuple[WebConfig, ...] = (WebConfig(),)
    cron: tuple[CronjobConfig, ...] = ()
    users: tuple[str, ...] = ()
    sync: tuple[str, ...] = ()

    @property
    def redis_enabled(self) -> bool:
        """Return ``True`` when any relationship points at redis."""
        return "redis" in self.relationships.values()

    def database_relationships(self, app_key: str) -> list[tuple[str, str]]:
        """Return ``(relation_name, endpoint)`` pairs for database relationships."""
        pairs: list[tuple[str, str]] = []
        for relation, target in self.relationships.items():
            kind, _, endpoint = target.partition(":")
            if kind.strip() != "database":
                continue
            pairs.append((relation, endpoint.strip() or app_key))
        return pairs


@dataclass(frozen=True)
class Manifest:
    """Parsed manifest document."""

    project: ProjectConfig = ProjectConfig()
    applications: Mapping[str, AppConfig] = field(default_factory=dict)
    databases: DatabasesConfig = DatabasesConfig()
    users: Mapping[str, UserConfig] = field(default_factory=dict)
    source: Path | None = None

    def app(self, key: str) -> AppConfig:
        """Return the application declared under *key*."""
        app = self.applications.get(key)
        if app is None:
            raise ConfigError(f'Cannot find "applications.{key}" in the "{MANIFEST_NAME}" file.')
        return app


def load_manifest(
    path: str | os.PathLike[str],
    *,
    env: Mapping[str, str] | None = None,
) -> Manifest:
    """Read and deserialise the manifest at *path*.

    ``env`` supplies fallbacks such as ``PHP_VERSION``; it defaults to the
    process environment.
    """
    manifest_path = Path(path)
    resolved_env = os.environ if env is None else env
    if not manifest_path.exists():
        raise ConfigError(f"Manifest file {manifest_path} does not exist.")
    try:
        data = yaml.safe_load(manifest_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse manifest {manifest_path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Manifest {manifest_path} must contain a mapping at the top level.")
    manifest = parse_manifest(data, php_version=resolved_env.get("PHP_VERSION") or None)
    return Manifest(
        project=manifest.project,
        applications=manifest.applications,
        databases=manifest.databases,
        users=manifest.users,
        source=manifest_path,
    )


def parse_manifest(data: Mapping[str, object], *, php_version: str | None = None) -> Manifest:
    """Build a :class:`Manifest` from an already parsed mapping."""
    project = _parse_project(_as_dict(data.get("project"), "project"))

    databases_map = _as_dict(data.get("databases"), "databases")
    databases = DatabasesConfig(
        schemas=tuple(
            str(item) for item in _as_list(databases_map.get("schemas"), "databases.schemas")
        ),
        endpoints={
            key: str(value)
            for key, value in _as_dict(
                databases_map.get("endpoints"), "databases.endpoints"
            ).items()
        },
    )

    users: dict[str, UserConfig] = {}
    for name, raw_user in _as_dict(data.get("users"), "users").items():
        user_map = _as_dict(raw_user, f"users.{name}")
        key = user_map.get("key")
        if not isinstance(key, str) or not key.strip():
            raise ConfigError(f"users.{name}.key must be a non-empty string.")
        users[name] = UserConfig(role=str(user_map.get("role", "")), key=key.strip())

    applications: dict[str, AppConfig] = {}
    for app_key, raw_app in _as_dict(data.get("applications"), "applications").items():
        applications[app_key] = _parse_app(
            app_key,
            _as_dict(raw_app, f"applications.{app_key}"),
            project=project,
            php_version=php_version,
        )

    return Manifest(
        project=project,
        applications=applications,
        databases=databases,
        users=users,
    )


def _parse_project(raw: Mapping[str, object]) -> ProjectConfig:
    domain = raw.get("domain")
    pool = raw.get("pool")
    prune = raw.get("prune", True)
    if not isinstance(prune, bool):
        raise ConfigError(f"project.prune must be a boolean. Got {prune!r}.")
    return ProjectConfig(
        parent=str(raw.get("parent") or ""),
        domain=str(domain) if domain else None,
        prune=prune,
        pool=str(pool) if pool else None,
    )


def _parse_app(
    app_key: str,
    raw: Mapping[str, object],
    *,
    project: ProjectConfig,
    php_version: str | None,
) -> AppConfig:
    label = f"applications.{app_key}"

    php_map = _as_dict(raw.get("php"), f"{label}.php")
    version = php_map.get("version")
    php = PhpConfig(
        version=str(version) if version is not None else php_version,
        extensions=tuple(
            str(ext) for ext in _as_list(php_map.get("extensions"), f"{label}.php.extensions")
        ),
        ini=dict(_as_dict(php_map.get("ini"), f"{label}.php.ini")),
    )

    relationships = {
        name: str(target)
        for name, target in _as_dict(raw.get("relationships"), f"{label}.relationships").items()
    }
    for name, target in relationships.items():
        kind = target.partition(":")[0].strip()
        if kind not in {"database", "redis"}:
            raise ValidationError(
                f'Unsupported relationship "{target}" under "{label}.relationships.{name}".'
            )

    account = raw.get("account")
    pool = raw.get("pool")
    return AppConfig(
        account=str(account) if account else None,
        pool=str(pool) if pool else project.pool,
        php=php,
        env=dict(_as_dict(raw.get("env"), f"{label}.env")),
        relationships=relationships,
        web=_parse_web(raw.get("web"), f"{label}.web"),
        cron=tuple(
            _parse_cron(_as_dict(item, f"{label}.cron[{index}]"), f"{label}.cron[{index}]")
            for index, item in enumerate(_as_list(raw.get("cron"), f"{label}.cron"))
        ),
        users=tuple(str(user) for user in _as_list(raw.get("users"), f"{label}.users")),
        sync=tuple(str(path) for path in _as_list(raw.get("sync"), f"{label}.sync")),
    )


def _parse_web(raw: object, label: str) -> tuple[WebConfig, ...]:
    if raw is None:
        return (WebConfig(),)
    entries: list[tuple[str | None, Mapping[str, object], str]] = []
    if isinstance(raw, Mapping):
        # Legacy form keyed by domain template; "_" stands for the default domain.
        for domain, value in raw.items():
            domain_name = None if domain == "_" else str(domain)
            entries.append((domain_name, _as_dict(value, f"{label}.{domain}"), f"{label}.{domain}"))
    else:
        for index, value in enumerate(_as_list(raw, label)):
            entry = _as_dict(value, f"{label}[{index}]")
            domain = entry.get("domainName")
            entries.append((str(domain) if domain else None, entry, f"{label}[{index}]"))

    webs: list[WebConfig] = []
    for domain_name, entry, entry_label in entries:
        locations = {
            match: _parse_location(_as_dict(rule, f"{entry_label}.locations.{match}"))
            for match, rule in _as_dict(entry.get("locations"), f"{entry_label}.locations").items()
        }
        www = entry.get("www", True)
        if not isinstance(www, bool):
            raise ConfigError(f"{entry_label}.www must be a boolean.")
        webs.append(
            WebConfig(
                domain_name=domain_name,
                root=str(entry.get("root") or ""),
                www=www,
                locations=locations,
            )
        )
    return tuple(webs) or (WebConfig(),)


def _parse_location(raw: Mapping[str, object]) -> LocationConfig:
    passthru = raw.get("passthru")
    if passthru is not None and not isinstance(passthru, (str, bool)):
        passthru = str(passthru)
    expires = raw.get("expires")
    allow = raw.get("allow", True)
    return LocationConfig(
        passthru=passthru,
        expires=str(expires) if expires is not None else None,
        allow=bool(allow),
    )


def _parse_cron(raw: Mapping[str, object], label: str) -> CronjobConfig:
    php = raw.get("php")
    cmd = raw.get("cmd")
    if (php is None) == (cmd is None):
        raise ConfigError(f'Please configure either "php" or "cmd" for {label}.')
    every = str(raw.get("every", "hour"))
    # YAML 1.1 reads a bare ``on:`` key as boolean true.
    on = raw.get("on", raw.get("True"))
    return CronjobConfig(
        php=str(php) if php is not None else None,
        cmd=str(cmd) if cmd is not None else None,
        every=every,
        on=str(on) if on is not None else None,
    )


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        result[str(key)] = item
    return result


def _as_list(value: object | None, label: str) -> Sequence[object]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a list. Got {type(value).__name__}.")
    return value


__all__ = [
    "AppConfig",
    "CronjobConfig",
    "DatabasesConfig",
    "LocationConfig",
    "Manifest",
    "PhpConfig",
    "ProjectConfig",
    "UserConfig",
    "ValidationError",
    "WebConfig",
    "load_manifest",
    "parse_manifest",
]
