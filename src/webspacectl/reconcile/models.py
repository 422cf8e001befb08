"""Request and result types exchanged between the CLI and the reconciler."""
from __future__ import annotations

from dataclasses import dataclass, field

from ..manifest import Manifest
from ..providers.hosting_models import Webspace

EnvValue = str | int | bool


@dataclass(frozen=True)
class Destination:
    """Where a vhost is deployed to and served from."""

    deploy_path: str
    public_url: str


@dataclass(frozen=True)
class SetupRequest:
    """Inputs of one ``setup`` run."""

    manifest: Manifest
    app_key: str
    ref: str
    prefix: str
    ssh_public_key: str = ""
    default_domain: str | None = None
    access_role: str | None = None
    keep_branches: tuple[str, ...] = ()


@dataclass(frozen=True)
class PruneResult:
    """What branch pruning removed and why it left the rest alone."""

    deleted_webspaces: tuple[str, ...] = ()
    deleted_databases: tuple[str, ...] = ()
    deleted_database_users: tuple[str, ...] = ()
    deleted_webspace_users: tuple[str, ...] = ()
    kept_webspaces: tuple[str, ...] = ()
    skipped_webspaces: tuple[str, ...] = ()
    skipped: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def changed(self) -> int:
        return (
            len(self.deleted_webspaces)
            + len(self.deleted_databases)
            + len(self.deleted_database_users)
            + len(self.deleted_webspace_users)
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "deleted_webspaces": list(self.deleted_webspaces),
            "deleted_databases": list(self.deleted_databases),
            "deleted_database_users": list(self.deleted_database_users),
            "deleted_webspace_users": list(self.deleted_webspace_users),
            "kept_webspaces": list(self.kept_webspaces),
            "skipped_webspaces": list(self.skipped_webspaces),
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class SetupResult:
    """Everything ``setup`` reports back to the workflow."""

    webspace: Webspace
    is_new: bool
    ssh_user: str
    ssh_host: str
    ssh_port: int
    http_user: str
    destinations: tuple[Destination, ...]
    php_version: str | None
    php_extensions: tuple[str, ...]
    env_vars: dict[str, EnvValue] = field(default_factory=dict)
    exported_env: dict[str, EnvValue] = field(default_factory=dict)
    secrets: tuple[str, ...] = ()
    new_databases: tuple[str, ...] = ()
    changes: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    prune: PruneResult | None = None

    def to_outputs(self) -> dict[str, object]:
        """Return the action outputs keyed by their public names."""
        primary = self.destinations[0]
        return {
            "sync-files": self.is_new,
            "sync-databases": " ".join(self.new_databases),
            "ssh-user": self.ssh_user,
            "ssh-host": self.ssh_host,
            "ssh-port": self.ssh_port,
            "http-user": self.http_user,
            "php-version": self.php_version or "",
            "php-extensions": ", ".join(self.php_extensions),
            "env-vars": self.env_vars,
            "deploy-path": primary.deploy_path,
            "public-url": primary.public_url,
        }


__all__ = ["Destination", "EnvValue", "PruneResult", "SetupRequest", "SetupResult"]
