"""Straight-line orchestration of one ``setup`` or ``prune`` run."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from ..config import Settings
from ..manifest import Manifest
from ..providers.hosting_api import HostingApiClient, generate_password
from .databases import DatabaseReconciler
from .models import EnvValue, PruneResult, SetupRequest, SetupResult
from .naming import database_prefix, service_user_name, webspace_name
from .pruning import prune_branches
from .vhosts import reconcile_vhosts
from .webspaces import reconcile_webspace

LOGGER = logging.getLogger(__name__)


class Reconciler:
    """Drive webspace, vhost, database and pruning reconciliation in order."""

    def __init__(
        self,
        client: HostingApiClient,
        settings: Settings,
        *,
        password_factory: Callable[[], str] = generate_password,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.settings = settings
        self.password_factory = password_factory
        self.sleep = sleep

    def setup(self, request: SetupRequest) -> SetupResult:
        """Converge every resource of ``request.app_key`` for ``request.ref``."""
        manifest = request.manifest
        app = manifest.app(request.app_key)
        name = webspace_name(request.prefix, request.ref, request.app_key)
        db_prefix = database_prefix(request.prefix, request.ref)
        changes: list[str] = []

        exported_env: dict[str, EnvValue] = {
            key: value if isinstance(value, (str, int, bool)) else str(value)
            for key, value in app.env.items()
        }

        webspace = reconcile_webspace(
            self.client,
            self.settings,
            manifest,
            app,
            name=name,
            service_user=service_user_name(self.settings.ssh.service_user_prefix, name),
            ssh_public_key=request.ssh_public_key,
            access_role=request.access_role,
            changes=changes,
            sleep=self.sleep,
        )
        vhosts = reconcile_vhosts(
            self.client,
            self.settings,
            manifest,
            app,
            request.app_key,
            webspace=webspace.webspace,
            ref=request.ref,
            default_domain=request.default_domain,
            changes=changes,
            sleep=self.sleep,
        )
        databases = DatabaseReconciler(
            self.client,
            self.settings,
            password_factory=self.password_factory,
            sleep=self.sleep,
            changes=changes,
        ).apply(manifest, app, request.app_key, db_prefix=db_prefix)

        prune_result: PruneResult | None = None
        warnings: list[str] = []
        if manifest.project.prune:
            prune_result = self.prune(
                manifest,
                prefix=request.prefix,
                branches=request.keep_branches,
                current_ref=request.ref,
                changes=changes,
            )
            warnings.extend(prune_result.warnings)

        env_vars: dict[str, EnvValue] = {**exported_env, **webspace.env_vars, **databases.env_vars}
        LOGGER.info("Reconciled %s with %d change(s)", name, len(changes))
        return SetupResult(
            webspace=webspace.webspace,
            is_new=webspace.is_new,
            ssh_user=webspace.ssh_user,
            ssh_host=webspace.ssh_host,
            ssh_port=self.settings.ssh.port,
            http_user=webspace.http_user,
            destinations=vhosts.destinations,
            php_version=vhosts.php_version,
            php_extensions=vhosts.php_extensions,
            env_vars=env_vars,
            exported_env=exported_env,
            secrets=tuple(databases.secrets),
            new_databases=tuple(databases.new_databases),
            changes=tuple(changes),
            warnings=tuple(warnings),
            prune=prune_result,
        )

    def prune(
        self,
        manifest: Manifest,
        *,
        prefix: str,
        branches: Iterable[str],
        current_ref: str | None = None,
        changes: list[str] | None = None,
    ) -> PruneResult:
        """Remove resources of branches missing from *branches*."""
        return prune_branches(
            self.client,
            manifest,
            prefix=prefix,
            branches=branches,
            current_ref=current_ref,
            service_user_prefix=self.settings.ssh.service_user_prefix,
            changes=changes if changes is not None else [],
        )


__all__ = ["Reconciler"]
