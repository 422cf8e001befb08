"""Database and database user reconciliation.

Each ``database[:endpoint]`` relationship resolves to one schema and one
privilege level. Credentials are rotated without an access gap: the user at
rotation ``n + 1`` is created and granted before older rotations are deleted.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import quote

from ..config import Settings
from ..manifest import AppConfig, Manifest
from ..providers.hosting_api import HostingApiClient
from ..providers.hosting_models import Database, DatabaseAccess, DatabaseUser
from .models import EnvValue
from .naming import (
    database_internal_name,
    database_user_base,
    parse_rotation,
    rotated_user_name,
)
from .polling import wait_until_active
from .transforms import get_accesses, get_privileges

LOGGER = logging.getLogger(__name__)

MYSQL_PORT = 3306


@dataclass
class DatabaseOutcome:
    """Credentials and bookkeeping collected while reconciling databases."""

    new_databases: list[str] = field(default_factory=list)
    env_vars: dict[str, EnvValue] = field(default_factory=dict)
    secrets: list[str] = field(default_factory=list)


def env_bundle(
    relation: str, database: Database, user_name: str, password: str
) -> dict[str, EnvValue]:
    """Return the ``{REL}_*`` variables describing one database connection."""
    key = relation.replace("-", "_").upper()
    host = database.host_name
    encoded = quote(password, safe="-_.!~*'()")
    return {
        f"{key}_SERVER": f"mysql://{host}",
        f"{key}_DRIVER": "mysql",
        f"{key}_HOST": host,
        f"{key}_PORT": MYSQL_PORT,
        f"{key}_NAME": database.db_name,
        f"{key}_USERNAME": user_name,
        f"{key}_PASSWORD": password,
        f"{key}_URL": f"mysql://{user_name}:{encoded}@{host}:{MYSQL_PORT}/{database.db_name}",
    }


class DatabaseReconciler:
    """Converge the databases one application relies on."""

    def __init__(
        self,
        client: HostingApiClient,
        settings: Settings,
        *,
        password_factory: Callable[[], str],
        sleep: Callable[[float], None],
        changes: list[str],
    ) -> None:
        self.client = client
        self.settings = settings
        self.password_factory = password_factory
        self.sleep = sleep
        self.changes = changes

    def apply(
        self,
        manifest: Manifest,
        app: AppConfig,
        app_key: str,
        *,
        db_prefix: str,
    ) -> DatabaseOutcome:
        """Reconcile every database relationship of *app* and prune relicts.

        Endpoints may share a schema, so the database created or granted for
        one relationship is what later relationships see. Relationships to the
        same endpoint share one set of credentials per run.
        """
        outcome = DatabaseOutcome()
        found = self.client.find_databases([f"{db_prefix}-*"])
        by_name = {database.name: database for database in found}
        issued: dict[str, tuple[Database, str, str]] = {}

        for relation, endpoint in app.database_relationships(app_key):
            schema, privilege = manifest.databases.resolve(endpoint)
            internal_name = database_internal_name(db_prefix, schema)
            base = database_user_base(db_prefix, endpoint, app_key)
            LOGGER.info('Processing database "%s" for relation "%s"', schema, relation)

            if base in issued:
                database, user_name, password = issued[base]
                outcome.env_vars.update(env_bundle(relation, database, user_name, password))
                continue

            existing = by_name.get(internal_name)
            if existing is None:
                database, user_name, password = self._create(internal_name, base, app)
                outcome.new_databases.append(schema)
            elif self.settings.databases.rotate_credentials:
                database, user_name, password = self._rotate(existing, base, privilege, app)
            else:
                database, credentials = self._align(existing, base, privilege, app)
                by_name[internal_name] = database
                if credentials is None:
                    continue
                user_name, password = credentials

            by_name[internal_name] = database
            issued[base] = (database, user_name, password)
            outcome.env_vars.update(env_bundle(relation, database, user_name, password))
            outcome.secrets.extend([user_name, password])

        self._prune(manifest, db_prefix, found)
        return outcome

    # ------------------------------------------------------------------
    def _create(self, name: str, base: str, app: AppConfig) -> tuple[Database, str, str]:
        LOGGER.info("Creating database %s", name)
        password = self.password_factory()
        user = self.client.create_database_user(
            rotated_user_name(base, 1), password, account_id=app.account
        )
        self.changes.append(f"database-user.create {user.name}")
        created = self.client.create_database(
            name,
            user.id,
            product_code=self.settings.products.database,
            storage_quota=self.settings.products.database_storage_quota,
            pool_id=app.pool,
            account_id=app.account,
        )
        self.changes.append(f"database.create {name}")
        database = wait_until_active(
            lambda: self.client.find_database_by_id(created.id),
            label=f"database {name}",
            interval=self.settings.provisioning.poll_interval,
            max_attempts=self.settings.provisioning.max_attempts,
            sleep=self.sleep,
        )
        return database, _login(database, user), password

    def _family(self, base: str) -> list[tuple[int, DatabaseUser]]:
        """Return existing rotations of *base*, newest first."""
        family: list[tuple[int, DatabaseUser]] = []
        for user in self.client.find_database_users([base, f"{base}.v*"]):
            rotation = parse_rotation(user.name, base)
            if rotation is not None:
                family.append((rotation, user))
        family.sort(key=lambda item: item[0], reverse=True)
        return family

    def _grant(
        self, database: Database, user: DatabaseUser, privilege: str
    ) -> Database:
        accesses = [access for access in database.accesses if access.user_id != user.id]
        accesses.append(
            DatabaseAccess(
                user_id=user.id,
                access_level=tuple(get_accesses(privilege)),
                database_id=database.id,
            )
        )
        updated = self.client.update_database(database, accesses)
        self.changes.append(f"database.grant {database.name} {user.name}")
        return updated

    def _rotate(
        self, database: Database, base: str, privilege: str, app: AppConfig
    ) -> tuple[Database, str, str]:
        family = self._family(base)
        rotation = family[0][0] + 1 if family else 1
        LOGGER.info("Rotating credentials on database %s (v%d)", database.name, rotation)

        password = self.password_factory()
        user = self.client.create_database_user(
            rotated_user_name(base, rotation), password, account_id=app.account
        )
        self.changes.append(f"database-user.create {user.name}")
        updated = self._grant(database, user, privilege)

        # Older rotations are revoked only after the new grant succeeded.
        keep = max(self.settings.databases.keep_previous_users, 0)
        for _, previous in family[keep:]:
            LOGGER.info("Deleting database user %s", previous.name)
            self.client.delete_database_user(previous.id)
            self.changes.append(f"database-user.delete {previous.name}")
        return updated, _login(updated, user), password

    def _align(
        self, database: Database, base: str, privilege: str, app: AppConfig
    ) -> tuple[Database, tuple[str, str] | None]:
        holders = [
            user
            for user in self.client.find_database_accesses(f"{base}*", database.id)
            if parse_rotation(user.name, base) is not None
        ]
        if not holders:
            LOGGER.info("Granting access on database %s", database.name)
            updated, user_name, password = self._rotate(database, base, privilege, app)
            return updated, (user_name, password)

        holder = max(holders, key=lambda user: parse_rotation(user.name, base) or 0)
        LOGGER.info("Database already in use (%s)", database.name)
        access = database.access_for(holder.id)
        if access is None or get_privileges(access.access_level) != privilege:
            database = self._grant(database, holder, privilege)
        return database, None

    def _prune(self, manifest: Manifest, db_prefix: str, found: list[Database]) -> None:
        declared = {
            database_internal_name(db_prefix, schema) for schema in manifest.databases.schemas
        }
        head = f"{db_prefix}-"
        for database in found:
            if database.name in declared:
                continue
            # A dash in the remainder means the name belongs to a longer ref.
            if "-" in database.name[len(head) :]:
                continue
            LOGGER.info("Deleting database %s", database.name)
            self.client.delete_database(database.id)
            self.changes.append(f"database.delete {database.name}")


def _login(database: Database, user: DatabaseUser) -> str:
    access = database.access_for(user.id)
    if access is not None and access.db_login:
        return access.db_login
    return user.db_user_name or user.name


__all__ = ["DatabaseOutcome", "DatabaseReconciler", "env_bundle"]
