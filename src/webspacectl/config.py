"""Settings loader for webspacectl.

This module centralises the logic for reading tool settings from multiple
sources:

1. Built-in defaults.
2. ``.hosting/webspacectl.yml`` (or an override path).
3. Environment variables prefixed with ``WEBSPACECTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export WEBSPACECTL_PROVISIONING__MAX_ATTEMPTS=300
    export WEBSPACECTL_DATABASES__ROTATE_CREDENTIALS=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting settings are exposed as immutable
``dataclasses``. The application manifest (``.hosting/config.yaml``) is a
separate document handled by :mod:`webspacectl.manifest`.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "WEBSPACECTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when settings or manifest parsing fails."""


@dataclass(frozen=True)
class ApiConfig:
    """Remote API endpoint settings."""

    base_uri: str = "https://secure.hosting.de/api"
    timeout: float = 30.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"base_uri": self.base_uri, "timeout": self.timeout}


@dataclass(frozen=True)
class ProvisioningConfig:
    """Status polling bounds used while resources boot."""

    poll_interval: float = 2.0
    max_attempts: int = 150

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"poll_interval": self.poll_interval, "max_attempts": self.max_attempts}


@dataclass(frozen=True)
class ProductsConfig:
    """Product codes ordered from the provider."""

    webspace: str = "webhosting-webspace-v1-1m"
    database: str = "database-mariadb-single-v1-1m"
    database_storage_quota: int = 512
    ssl: str = "ssl-letsencrypt-dv-3m"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "webspace": self.webspace,
            "database": self.database,
            "database_storage_quota": self.database_storage_quota,
            "ssl": self.ssl,
        }


@dataclass(frozen=True)
class SSHConfig:
    """SSH access conventions for webspaces."""

    port: int = 2244
    service_user_prefix: str = "github-action--"
    key_types: tuple[str, ...] = ("ssh-rsa",)
    tunnel_port: int = 50000

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "port": self.port,
            "service_user_prefix": self.service_user_prefix,
            "key_types": list(self.key_types),
            "tunnel_port": self.tunnel_port,
        }


@dataclass(frozen=True)
class DatabasesConfig:
    """Database credential policy."""

    rotate_credentials: bool = True
    keep_previous_users: int = 0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "rotate_credentials": self.rotate_credentials,
            "keep_previous_users": self.keep_previous_users,
        }


@dataclass(frozen=True)
class VhostsConfig:
    """Vhost clean-up behaviour."""

    purge_deleted: bool = True
    purge_delay: float = 5.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"purge_deleted": self.purge_deleted, "purge_delay": self.purge_delay}


@dataclass(frozen=True)
class Settings:
    """Resolved settings for webspacectl."""

    config_file: Path
    manifest_file: Path
    logs_dir: Path
    api: ApiConfig
    provisioning: ProvisioningConfig
    products: ProductsConfig
    ssh: SSHConfig
    databases: DatabasesConfig
    vhosts: VhostsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the settings."""
        return {
            "config_file": str(self.config_file),
            "manifest_file": str(self.manifest_file),
            "logs_dir": str(self.logs_dir),
            "api": self.api.to_dict(),
            "provisioning": self.provisioning.to_dict(),
            "products": self.products.to_dict(),
            "ssh": self.ssh.to_dict(),
            "databases": self.databases.to_dict(),
            "vhosts": self.vhosts.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": ".hosting/webspacectl.yml",
    "manifest_file": ".hosting/config.yaml",
    "logs_dir": str(Path(tempfile.gettempdir()) / "webspacectl" / "logs"),
    "api": {
        "base_uri": "https://secure.hosting.de/api",
        "timeout": 30.0,
    },
    "provisioning": {
        "poll_interval": 2.0,
        "max_attempts": 150,
    },
    "products": {
        "webspace": "webhosting-webspace-v1-1m",
        "database": "database-mariadb-single-v1-1m",
        "database_storage_quota": 512,
        "ssl": "ssl-letsencrypt-dv-3m",
    },
    "ssh": {
        "port": 2244,
        "service_user_prefix": "github-action--",
        "key_types": ["ssh-rsa"],
        "tunnel_port": 50000,
    },
    "databases": {
        "rotate_credentials": True,
        "keep_previous_users": 0,
    },
    "vhosts": {
        "purge_deleted": True,
        "purge_delay": 5.0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], value).keys())
    for section, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> Settings:
    """Load and merge settings sources into a :class:`Settings` instance."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_settings(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse settings file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Settings file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    base_uri = _as_dict(raw.get("api"), "api").get("base_uri")
    if base_uri is not None and not str(base_uri).startswith(("http://", "https://")):
        raise ConfigError(f"api.base_uri must be an http(s) URL. Got {base_uri!r}.")


def _build_settings(raw: Mapping[str, object]) -> Settings:
    api_mapping = _as_dict(raw.get("api"), "api")
    api = ApiConfig(
        base_uri=str(api_mapping.get("base_uri", ApiConfig.base_uri)).rstrip("/"),
        timeout=_expect_positive_float(api_mapping.get("timeout"), "api.timeout", default=30.0),
    )

    provisioning_mapping = _as_dict(raw.get("provisioning"), "provisioning")
    max_attempts = _expect_int(
        provisioning_mapping.get("max_attempts"), "provisioning.max_attempts", default=150
    )
    if max_attempts < 1:
        raise ConfigError("provisioning.max_attempts must be at least 1.")
    provisioning = ProvisioningConfig(
        poll_interval=_expect_positive_float(
            provisioning_mapping.get("poll_interval"),
            "provisioning.poll_interval",
            default=2.0,
        ),
        max_attempts=max_attempts,
    )

    products_mapping = _as_dict(raw.get("products"), "products")
    products = ProductsConfig(
        webspace=str(products_mapping.get("webspace", ProductsConfig.webspace)),
        database=str(products_mapping.get("database", ProductsConfig.database)),
        database_storage_quota=_expect_int(
            products_mapping.get("database_storage_quota"),
            "products.database_storage_quota",
            default=512,
        ),
        ssl=str(products_mapping.get("ssl", ProductsConfig.ssl)),
    )

    ssh_mapping = _as_dict(raw.get("ssh"), "ssh")
    key_types_raw = ssh_mapping.get("key_types")
    if key_types_raw is None:
        key_types: tuple[str, ...] = SSHConfig.key_types
    else:
        key_types = tuple(
            str(item) for item in _as_sequence(key_types_raw, "ssh.key_types")
        )
        if not key_types:
            raise ConfigError("ssh.key_types must list at least one key type.")
    ssh = SSHConfig(
        port=_expect_int(ssh_mapping.get("port"), "ssh.port", default=2244),
        service_user_prefix=str(
            ssh_mapping.get("service_user_prefix", SSHConfig.service_user_prefix)
        ),
        key_types=key_types,
        tunnel_port=_expect_int(ssh_mapping.get("tunnel_port"), "ssh.tunnel_port", default=50000),
    )

    databases_mapping = _as_dict(raw.get("databases"), "databases")
    keep_previous = _expect_int(
        databases_mapping.get("keep_previous_users"),
        "databases.keep_previous_users",
        default=0,
    )
    if keep_previous < 0:
        raise ConfigError("databases.keep_previous_users must be non-negative.")
    databases = DatabasesConfig(
        rotate_credentials=_expect_bool(
            databases_mapping.get("rotate_credentials"),
            "databases.rotate_credentials",
            default=True,
        ),
        keep_previous_users=keep_previous,
    )

    vhosts_mapping = _as_dict(raw.get("vhosts"), "vhosts")
    purge_delay_raw = vhosts_mapping.get("purge_delay")
    purge_delay = 5.0
    if purge_delay_raw is not None:
        purge_delay = _expect_float(purge_delay_raw, "vhosts.purge_delay")
        if purge_delay < 0:
            raise ConfigError("vhosts.purge_delay must be non-negative.")
    vhosts = VhostsConfig(
        purge_deleted=_expect_bool(
            vhosts_mapping.get("purge_deleted"), "vhosts.purge_deleted", default=True
        ),
        purge_delay=purge_delay,
    )

    return Settings(
        config_file=_to_path(raw.get("config_file")),
        manifest_file=_to_path(raw.get("manifest_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        api=api,
        provisioning=provisioning,
        products=products,
        ssh=ssh,
        databases=databases,
        vhosts=vhosts,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_float(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_float(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ApiConfig",
    "ConfigError",
    "DatabasesConfig",
    "ProductsConfig",
    "ProvisioningConfig",
    "SSHConfig",
    "Settings",
    "VhostsConfig",
    "load_config",
]
