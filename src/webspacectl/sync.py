"""Copy databases and file mounts between two environments.

Database sync grants one temporary user access to every matching database,
then pipes ``mysqldump`` from the source into ``mysql`` on the target for each
schema that exists on both sides. The temporary user is always deleted, even
when a copy fails. File sync runs ``rsync`` on the source host through a
reverse SSH tunnel to the target host.
"""
from __future__ import annotations

import logging
import shlex
import tempfile
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .config import Settings
from .manifest import Manifest
from .providers.hosting_api import (
    FULL_ACCESS,
    HostingApiClient,
    generate_password,
    generate_temporary_username,
)
from .providers.hosting_models import Database, DatabaseAccess
from .providers.shell import ShellRunner
from .reconcile.naming import database_internal_name, webspace_name
from .reconcile.polling import wait_until_active

LOGGER = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """What a sync run copied and what it had to leave out."""

    copied: list[str] = field(default_factory=list)
    missing_in_source: list[str] = field(default_factory=list)
    missing_in_target: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "copied": list(self.copied),
            "missing_in_source": list(self.missing_in_source),
            "missing_in_target": list(self.missing_in_target),
            "skipped": list(self.skipped),
        }


@dataclass(frozen=True)
class _Endpoint:
    database: Database
    login: str


class SyncService:
    """Environment-to-environment copy of databases and synced directories."""

    def __init__(
        self,
        client: HostingApiClient,
        shell: ShellRunner,
        settings: Settings,
        *,
        password_factory: Callable[[], str] = generate_password,
        on_secret: Callable[[str], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.shell = shell
        self.settings = settings
        self.password_factory = password_factory
        self.on_secret = on_secret
        self.sleep = sleep

    # ------------------------------------------------------------------
    def database_queries(
        self,
        manifest: Manifest,
        *,
        prefix: str,
        from_env: str,
        to_env: str,
        app_key: str | None = None,
        only: Sequence[str] = (),
    ) -> list[str]:
        """Return the database name patterns covered by a sync run.

        Without an app every schema is synced (or the ones in *only*); with an
        app only its database relationships, filtered by endpoint name.
        """
        environments = (from_env, to_env)
        if not app_key:
            if only:
                return [
                    database_internal_name(f"{prefix}-{env}", schema)
                    for schema in only
                    for env in environments
                ]
            return [f"{prefix}-{env}-*" for env in environments]

        app = manifest.app(app_key)
        queries: list[str] = []
        for _, endpoint in app.database_relationships(app_key):
            if only and endpoint not in only:
                continue
            schema, _ = manifest.databases.resolve(endpoint)
            for env in environments:
                query = database_internal_name(f"{prefix}-{env}", schema)
                if query not in queries:
                    queries.append(query)
        return queries

    def sync_databases(
        self,
        manifest: Manifest,
        *,
        prefix: str,
        from_env: str,
        to_env: str,
        app_key: str | None = None,
        only: Sequence[str] = (),
    ) -> SyncReport:
        """Overwrite the databases of *to_env* with those of *from_env*."""
        report = SyncReport()
        if from_env == to_env:
            return report
        queries = self.database_queries(
            manifest,
            prefix=prefix,
            from_env=from_env,
            to_env=to_env,
            app_key=app_key,
            only=only,
        )
        if not queries:
            return report

        user_name = generate_temporary_username()
        password = self.password_factory()
        if self.on_secret is not None:
            self.on_secret(password)
        user = self.client.create_database_user(user_name, password)
        try:
            pairs: dict[str, dict[str, _Endpoint]] = {}
            for database in self.client.find_databases(queries):
                side, schema = self._classify(database.name, prefix, from_env, to_env)
                if side is None:
                    LOGGER.warning("Ignoring database %s outside both environments", database.name)
                    continue
                updated = self.client.update_database(
                    database,
                    [
                        *database.accesses,
                        DatabaseAccess(
                            user_id=user.id, access_level=FULL_ACCESS, database_id=database.id
                        ),
                    ],
                )
                access = updated.access_for(user.id)
                login = access.db_login if access is not None and access.db_login else user_name
                pairs.setdefault(schema, {})[side] = _Endpoint(updated, login)

            with tempfile.TemporaryDirectory(prefix="webspacectl-sync-") as workdir:
                for schema, sides in sorted(pairs.items()):
                    source = sides.get("from")
                    target = sides.get("to")
                    if source is None and target is not None:
                        LOGGER.info(
                            'Found database "%s" but it is not present in the "%s" environment',
                            target.database.name,
                            from_env,
                        )
                        report.missing_in_source.append(schema)
                        continue
                    if target is None and source is not None:
                        LOGGER.info(
                            'Database "%s" has no counterpart in the "%s" environment',
                            source.database.name,
                            to_env,
                        )
                        report.missing_in_target.append(schema)
                        continue
                    if source is None or target is None:
                        continue
                    self._copy(source, target, password, Path(workdir) / f"{schema}.sql")
                    report.copied.append(schema)
        finally:
            LOGGER.info("Deleting temporary database user %s", user_name)
            self.client.delete_database_user(user.id)
        return report

    def _classify(
        self, name: str, prefix: str, from_env: str, to_env: str
    ) -> tuple[str | None, str]:
        # Longer environment names first so "main" never claims "main-x" databases.
        sides = sorted((("from", from_env), ("to", to_env)), key=lambda item: -len(item[1]))
        for side, env in sides:
            head = f"{prefix}-{env}-"
            if name.startswith(head):
                return side, name[len(head) :]
        return None, ""

    def _copy(self, source: _Endpoint, target: _Endpoint, password: str, dump: Path) -> None:
        LOGGER.info(
            'Database "%s" will be overridden using database "%s"',
            target.database.name,
            source.database.name,
        )
        env = {"MYSQL_PWD": password}
        self.shell.run(
            [
                "mysqldump",
                "-h",
                source.database.host_name,
                "-u",
                source.login,
                source.database.db_name,
            ],
            stdout=dump,
            env=env,
        )
        self.client.wipe_database(target.database.id)
        wait_until_active(
            lambda: self.client.find_database_by_id(target.database.id),
            label=f"database {target.database.name}",
            interval=self.settings.provisioning.poll_interval,
            max_attempts=self.settings.provisioning.max_attempts,
            sleep=self.sleep,
        )
        self.shell.run(
            [
                "mysql",
                "-h",
                target.database.host_name,
                "-u",
                target.login,
                target.database.db_name,
            ],
            stdin=dump,
            env=env,
        )

    # ------------------------------------------------------------------
    def sync_files(
        self,
        manifest: Manifest,
        *,
        prefix: str,
        from_env: str,
        to_env: str,
        app_key: str | None = None,
    ) -> SyncReport:
        """Mirror every ``sync`` directory from *from_env* to *to_env*."""
        report = SyncReport()
        if from_env == to_env:
            return report
        port = self.settings.ssh.port
        tunnel = self.settings.ssh.tunnel_port
        for key, app in manifest.applications.items():
            if app_key and key != app_key:
                continue
            source = self.client.find_webspace_by_name(webspace_name(prefix, from_env, key))
            target = self.client.find_webspace_by_name(webspace_name(prefix, to_env, key))
            if source is None:
                LOGGER.info(
                    "The webspace for app %s is not present in the %s environment. Skipping.",
                    key,
                    from_env,
                )
                report.skipped.append(key)
                continue
            if target is None or source.id == target.id:
                report.skipped.append(key)
                continue

            for directory in app.sync:
                relative = directory.strip().strip("/")
                path_from = f"/home/{source.webspace_name}/html/current/{relative}"
                path_to = f"/home/{target.webspace_name}/html/current/{relative}"
                LOGGER.info("Now syncing: %s to %s", path_from, path_to)
                remote = (
                    f"rsync -e {shlex.quote(f'ssh -p {tunnel}')} -azr --delete "
                    f"{shlex.quote(path_from)} {shlex.quote(f'localhost:{path_to}')}"
                )
                self.shell.run(
                    [
                        "ssh",
                        "-p",
                        str(port),
                        "-R",
                        f"localhost:{tunnel}:{target.host_name}:{port}",
                        source.host_name,
                        remote,
                    ]
                )
                report.copied.append(f"{key}:{relative}")
        return report


__all__ = ["SyncReport", "SyncService"]
