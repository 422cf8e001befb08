"""Client for the hosting.de JSON API.

Every call is a ``POST`` to ``{base_uri}/{service}/v1/json/{method}`` carrying
the auth token in the body. Responses share one envelope::

    {"status": "success" | "error" | "pending", "errors": [...], "response": ...}

Find endpoints answer with ``response = {"data": [...], "totalEntries": n}``.
The client turns error envelopes into :class:`ApiError` and anything that is
not an envelope at all into :class:`UnexpectedResponseError`, so callers only
ever see typed models or exceptions.
"""
from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import httpx

from .hosting_models import (
    Database,
    DatabaseAccess,
    DatabaseUser,
    Payload,
    Vhost,
    Webspace,
    WebspaceUser,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URI = "https://secure.hosting.de/api"
RESOURCE_COMMENT = "Created by github action. Please do not change name."
USER_COMMENT = "Created by github action. Please do not remove."
FULL_ACCESS = ("read", "write", "schema")


class HostingApiError(RuntimeError):
    """Base class for API client failures."""


class ApiError(HostingApiError):
    """Raised when the API answers with an error envelope."""

    def __init__(self, method: str, errors: Sequence[object]) -> None:
        self.method = method
        self.errors = list(errors)
        details = "; ".join(_describe_error(item) for item in self.errors) or "no details"
        super().__init__(f"{method} failed: {details}")


class UnexpectedResponseError(HostingApiError):
    """Raised when the API answer is not a recognisable envelope."""


class AmbiguousResourceError(HostingApiError):
    """Raised when a unique-name lookup matches more than one resource."""


def _describe_error(item: object) -> str:
    if isinstance(item, Mapping):
        text = item.get("text") or item.get("value") or item.get("code")
        if text is not None:
            return str(text)
    return str(item)


# ----------------------------------------------------------------------
# Filters


def field_filter(field: str, value: str) -> dict[str, str]:
    """Return a ``field == value`` clause (``*`` acts as wildcard)."""
    return {"field": field, "value": value}


def all_of(*filters: Mapping[str, object]) -> dict[str, object]:
    """Combine *filters* with ``AND``."""
    return {"subFilterConnective": "AND", "subFilter": [dict(item) for item in filters]}


def any_of(*filters: Mapping[str, object]) -> dict[str, object]:
    """Combine *filters* with ``OR``."""
    return {"subFilterConnective": "OR", "subFilter": [dict(item) for item in filters]}


# ----------------------------------------------------------------------
# Secrets


def generate_password() -> str:
    """Return a random password backed by the OS CSPRNG."""
    return str(uuid.uuid4())


def generate_temporary_username() -> str:
    """Return a short-lived database user name such as ``gh4821937``."""
    return f"gh{1_000_000 + secrets.randbelow(9_000_000)}"


class HostingApiClient:
    """Thin typed wrapper around the hosting.de JSON endpoints."""

    def __init__(
        self,
        base_uri: str,
        auth_token: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        trimmed = base_uri.rstrip("/")
        if not trimmed:
            raise ValueError("API base URI must not be empty")
        self.base_uri = trimmed
        self._auth_token = auth_token
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout)}
        if transport is not None:
            kwargs["transport"] = transport
        self._http = httpx.Client(**kwargs)

    def close(self) -> None:
        """Release the underlying connection pool."""
        self._http.close()

    def __enter__(self) -> HostingApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Webspaces
    def find_webspaces(self, prefix: str) -> list[Webspace]:
        """Return all active webspaces named ``{prefix}-*``."""
        data, _ = self._find(
            "webhosting/v1/json/webspacesFind",
            all_of(
                field_filter("webspaceName", f"{prefix}-*"),
                field_filter("webspaceStatus", "active"),
            ),
        )
        return [Webspace.from_payload(item) for item in data]

    def find_webspace_by_name(self, name: str) -> Webspace | None:
        """Return the active webspace named *name*, if any."""
        data, total = self._find(
            "webhosting/v1/json/webspacesFind",
            all_of(
                field_filter("webspaceName", name),
                field_filter("webspaceStatus", "active"),
            ),
            limit=1,
        )
        if total > 1:
            raise AmbiguousResourceError(
                f'Found more than one webspace named "{name}"; cannot tell where to deploy to.'
            )
        return Webspace.from_payload(data[0]) if data else None

    def find_webspace_by_id(self, webspace_id: str) -> Webspace | None:
        """Return the webspace with *webspace_id* regardless of status."""
        data, _ = self._find(
            "webhosting/v1/json/webspacesFind",
            field_filter("webspaceId", webspace_id),
            limit=1,
        )
        return Webspace.from_payload(data[0]) if data else None

    def create_webspace(
        self,
        name: str,
        *,
        user_ids: Sequence[str],
        cron_jobs: Sequence[Mapping[str, object]],
        redis_enabled: bool,
        product_code: str,
        pool_id: str | None = None,
        account_id: str | None = None,
    ) -> Webspace:
        """Order a new webspace granting SSH access to *user_ids*."""
        response = self._action(
            "webhosting/v1/json/webspaceCreate",
            {
                "poolId": pool_id,
                "webspace": {
                    "name": name,
                    "accountId": account_id,
                    "comments": RESOURCE_COMMENT,
                    "productCode": product_code,
                    "cronJobs": [dict(job) for job in cron_jobs],
                    "redisEnabled": redis_enabled,
                },
                "accesses": [{"userId": user_id, "sshAccess": True} for user_id in user_ids],
            },
        )
        return Webspace.from_payload(response)

    def update_webspace(
        self,
        webspace: Webspace,
        *,
        accesses: Sequence[Mapping[str, object]],
        cron_jobs: Sequence[Mapping[str, object]],
        redis_enabled: bool,
    ) -> Webspace:
        """Send *webspace* back with new cron jobs, redis flag and accesses."""
        payload = dict(webspace.raw)
        payload["cronJobs"] = [dict(job) for job in cron_jobs]
        payload["redisEnabled"] = redis_enabled
        response = self._action(
            "webhosting/v1/json/webspaceUpdate",
            {"webspace": payload, "accesses": [dict(item) for item in accesses]},
        )
        return Webspace.from_payload(response)

    def delete_webspace(self, webspace_id: str) -> None:
        self._call("webhosting/v1/json/webspaceDelete", {"webspaceId": webspace_id})

    # ------------------------------------------------------------------
    # Vhosts
    def find_vhosts(self, webspace_id: str) -> list[Vhost]:
        """Return the active vhosts of *webspace_id*."""
        data, _ = self._find(
            "webhosting/v1/json/vhostsFind",
            all_of(
                field_filter("webspaceId", webspace_id),
                field_filter("vHostStatus", "active"),
            ),
        )
        return [Vhost.from_payload(item) for item in data]

    def create_vhost(
        self, vhost: Mapping[str, object], php_ini: Sequence[Mapping[str, str]]
    ) -> Vhost:
        response = self._action(
            "webhosting/v1/json/vhostCreate",
            {"vhost": dict(vhost), "phpIni": {"values": [dict(item) for item in php_ini]}},
        )
        return Vhost.from_payload(response)

    def update_vhost(
        self, vhost: Mapping[str, object], php_ini: Sequence[Mapping[str, str]]
    ) -> Vhost:
        response = self._action(
            "webhosting/v1/json/vhostUpdate",
            {"vhost": dict(vhost), "phpIni": {"values": [dict(item) for item in php_ini]}},
        )
        return Vhost.from_payload(response)

    def delete_vhost(self, vhost_id: str) -> None:
        self._call("webhosting/v1/json/vhostDelete", {"vhostId": vhost_id})

    def purge_restorable_vhost(self, vhost_id: str) -> None:
        """Remove a deleted vhost from the restorable state for good."""
        self._call("webhosting/v1/json/vhostPurgeRestorable", {"vhostId": vhost_id})

    # ------------------------------------------------------------------
    # Webspace users
    def find_webspace_users(self, names: Iterable[str]) -> list[WebspaceUser]:
        """Return webspace users matching any of *names* (wildcards allowed)."""
        clauses = [field_filter("userName", name) for name in names]
        if not clauses:
            return []
        data, _ = self._find("webhosting/v1/json/usersFind", any_of(*clauses))
        return [WebspaceUser.from_payload(item) for item in data]

    def create_webspace_user(self, name: str, ssh_key: str) -> WebspaceUser:
        response = self._action(
            "webhosting/v1/json/userCreate",
            {
                "user": {"sshKey": ssh_key, "name": name, "comment": USER_COMMENT},
                "password": generate_password(),
            },
        )
        return WebspaceUser.from_payload(response)

    def delete_webspace_user(self, user_id: str) -> None:
        self._call("webhosting/v1/json/userDelete", {"userId": user_id})

    # ------------------------------------------------------------------
    # Databases
    def find_databases(self, names: Iterable[str]) -> list[Database]:
        """Return active databases matching any of *names* (wildcards allowed)."""
        clauses = [field_filter("databaseName", name) for name in names]
        if not clauses:
            return []
        data, _ = self._find(
            "database/v1/json/databasesFind",
            all_of(any_of(*clauses), field_filter("databaseStatus", "active")),
        )
        return [Database.from_payload(item) for item in data]

    def find_database_by_id(self, database_id: str) -> Database | None:
        data, _ = self._find(
            "database/v1/json/databasesFind",
            field_filter("databaseId", database_id),
            limit=1,
        )
        return Database.from_payload(data[0]) if data else None

    def create_database(
        self,
        name: str,
        user_id: str,
        *,
        product_code: str,
        storage_quota: int,
        pool_id: str | None = None,
        account_id: str | None = None,
    ) -> Database:
        """Order a database granting *user_id* full access."""
        response = self._action(
            "database/v1/json/databaseCreate",
            {
                "poolId": pool_id,
                "database": {
                    "name": name,
                    "comments": RESOURCE_COMMENT,
                    "productCode": product_code,
                    "storageQuota": storage_quota,
                    "accountId": account_id,
                },
                "accesses": [{"userId": user_id, "accessLevel": list(FULL_ACCESS)}],
            },
        )
        return Database.from_payload(response)

    def update_database(
        self, database: Database, accesses: Sequence[DatabaseAccess]
    ) -> Database:
        """Replace the access list of *database*."""
        response = self._action(
            "database/v1/json/databaseUpdate",
            {
                "database": {
                    "id": database.id,
                    "name": database.name,
                    "productCode": database.product_code,
                    "forceSsl": database.force_ssl,
                    "storageQuota": database.storage_quota,
                    "comments": database.comments,
                },
                "accesses": [access.to_payload() for access in accesses],
            },
        )
        return Database.from_payload(response)

    def delete_database(self, database_id: str) -> None:
        self._call("database/v1/json/databaseDelete", {"databaseId": database_id})

    def wipe_database(self, database_id: str) -> None:
        """Drop every table of the database while keeping it and its users."""
        self._call("database/v1/json/databaseWipe", {"databaseId": database_id})

    # ------------------------------------------------------------------
    # Database users
    def find_database_users(self, names: Iterable[str]) -> list[DatabaseUser]:
        clauses = [field_filter("userName", name) for name in names]
        if not clauses:
            return []
        data, _ = self._find("database/v1/json/usersFind", any_of(*clauses))
        return [DatabaseUser.from_payload(item) for item in data]

    def find_database_accesses(self, user_name: str, database_id: str) -> list[DatabaseUser]:
        """Return users named *user_name* that have access to *database_id*."""
        data, _ = self._find(
            "database/v1/json/usersFind",
            all_of(
                field_filter("userName", user_name),
                field_filter("userAccessesDatabaseId", database_id),
            ),
        )
        return [DatabaseUser.from_payload(item) for item in data]

    def create_database_user(
        self, name: str, password: str, *, account_id: str | None = None
    ) -> DatabaseUser:
        response = self._action(
            "database/v1/json/userCreate",
            {
                "user": {"name": name, "comment": USER_COMMENT, "accountId": account_id},
                "password": password,
            },
        )
        return DatabaseUser.from_payload(response)

    def delete_database_user(self, user_id: str) -> None:
        self._call("database/v1/json/userDelete", {"userId": user_id})

    # ------------------------------------------------------------------
    def _find(
        self,
        method: str,
        filter_: Mapping[str, object],
        *,
        limit: int | None = None,
    ) -> tuple[list[Payload], int]:
        body: dict[str, object] = {"filter": dict(filter_)}
        if limit is not None:
            body["limit"] = limit
        response = self._call(method, body).get("response")
        if not isinstance(response, Mapping) or not isinstance(response.get("data"), list):
            raise UnexpectedResponseError(f"{method} returned no result list.")
        data = [item for item in response["data"] if isinstance(item, Mapping)]
        total = response.get("totalEntries")
        return data, int(total) if isinstance(total, int) else len(data)

    def _action(self, method: str, body: Mapping[str, object]) -> Payload:
        response = self._call(method, body).get("response")
        if not isinstance(response, Mapping):
            raise UnexpectedResponseError(f"{method} returned no resource.")
        return response

    def _call(self, method: str, body: Mapping[str, object]) -> Payload:
        url = f"{self.base_uri}/{method}"
        LOGGER.debug("POST %s", url)
        try:
            http_response = self._http.post(url, json={"authToken": self._auth_token, **body})
        except httpx.HTTPError as exc:
            raise UnexpectedResponseError(f"{method} request failed: {exc}") from exc
        try:
            envelope = http_response.json()
        except ValueError as exc:
            raise UnexpectedResponseError(
                f"{method} returned a non-JSON body (HTTP {http_response.status_code})."
            ) from exc
        if not isinstance(envelope, Mapping) or "status" not in envelope:
            raise UnexpectedResponseError(
                f"{method} returned no response envelope (HTTP {http_response.status_code})."
            )
        if envelope.get("status") == "error":
            errors = envelope.get("errors")
            raise ApiError(method, errors if isinstance(errors, list) else [])
        if http_response.is_error:
            raise UnexpectedResponseError(f"{method} failed with HTTP {http_response.status_code}.")
        for warning in envelope.get("warnings") or ():
            LOGGER.warning("%s: %s", method, _describe_error(warning))
        return envelope


__all__ = [
    "AmbiguousResourceError",
    "ApiError",
    "DEFAULT_BASE_URI",
    "FULL_ACCESS",
    "HostingApiClient",
    "HostingApiError",
    "UnexpectedResponseError",
    "all_of",
    "any_of",
    "field_filter",
    "generate_password",
    "generate_temporary_username",
]
