"""Typed views over hosting.de API payloads.

Each model keeps the payload it was built from in ``raw`` so update calls can
send back every field the API returned, including those we do not model.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

Payload = Mapping[str, Any]


def _str(payload: Payload, key: str) -> str:
    value = payload.get(key)
    return "" if value is None else str(value)


@dataclass(frozen=True)
class WebspaceAccess:
    """A user's access entry on a webspace."""

    user_id: str
    user_name: str = ""
    ssh_access: bool = False
    raw: Payload = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Payload) -> WebspaceAccess:
        return cls(
            user_id=_str(payload, "userId"),
            user_name=_str(payload, "userName"),
            ssh_access=bool(payload.get("sshAccess", False)),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class Webspace:
    """A webspace (hosting container) as reported by the API."""

    id: str
    name: str
    webspace_name: str
    host_name: str
    status: str
    redis_enabled: bool = False
    cron_jobs: tuple[Payload, ...] = ()
    accesses: tuple[WebspaceAccess, ...] = ()
    raw: Payload = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_payload(cls, payload: Payload) -> Webspace:
        return cls(
            id=_str(payload, "id"),
            name=_str(payload, "name"),
            webspace_name=_str(payload, "webspaceName"),
            host_name=_str(payload, "hostName"),
            status=_str(payload, "status"),
            redis_enabled=bool(payload.get("redisEnabled") or False),
            cron_jobs=tuple(dict(job) for job in payload.get("cronJobs") or ()),
            accesses=tuple(
                WebspaceAccess.from_payload(item) for item in payload.get("accesses") or ()
            ),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class Vhost:
    """A virtual host bound to a webspace."""

    id: str
    domain_name: str
    web_root: str = ""
    php_version: str | None = None
    enable_alias: bool = True
    redirect_to_primary_name: bool = True
    redirect_http_to_https: bool = True
    locations: tuple[Payload, ...] = ()
    raw: Payload = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Payload) -> Vhost:
        php_version = payload.get("phpVersion")
        return cls(
            id=_str(payload, "id"),
            domain_name=_str(payload, "domainName"),
            web_root=_str(payload, "webRoot"),
            php_version=str(php_version) if php_version else None,
            enable_alias=bool(payload.get("enableAlias", True)),
            redirect_to_primary_name=bool(payload.get("redirectToPrimaryName", True)),
            redirect_http_to_https=bool(payload.get("redirectHttpToHttps", True)),
            locations=tuple(dict(item) for item in payload.get("locations") or ()),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class DatabaseAccess:
    """A user's access entry on a database."""

    user_id: str
    access_level: tuple[str, ...] = ()
    db_login: str = ""
    database_id: str = ""
    raw: Payload = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Payload) -> DatabaseAccess:
        return cls(
            user_id=_str(payload, "userId"),
            access_level=tuple(str(level) for level in payload.get("accessLevel") or ()),
            db_login=_str(payload, "dbLogin"),
            database_id=_str(payload, "databaseId"),
            raw=dict(payload),
        )

    def to_payload(self) -> dict[str, Any]:
        """Return the access entry in the shape ``databaseUpdate`` expects."""
        payload: dict[str, Any] = {"userId": self.user_id, "accessLevel": list(self.access_level)}
        if self.database_id:
            payload["databaseId"] = self.database_id
        return payload


@dataclass(frozen=True)
class Database:
    """A MariaDB database as reported by the API."""

    id: str
    name: str
    db_name: str
    host_name: str
    status: str
    product_code: str = ""
    force_ssl: bool = False
    storage_quota: int = 0
    comments: str = ""
    accesses: tuple[DatabaseAccess, ...] = ()
    raw: Payload = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def access_for(self, user_id: str) -> DatabaseAccess | None:
        """Return the access entry of *user_id*, if any."""
        for access in self.accesses:
            if access.user_id == user_id:
                return access
        return None

    @classmethod
    def from_payload(cls, payload: Payload) -> Database:
        quota = payload.get("storageQuota") or 0
        return cls(
            id=_str(payload, "id"),
            name=_str(payload, "name"),
            db_name=_str(payload, "dbName"),
            host_name=_str(payload, "hostName"),
            status=_str(payload, "status"),
            product_code=_str(payload, "productCode"),
            force_ssl=bool(payload.get("forceSsl") or False),
            storage_quota=int(quota),
            comments=_str(payload, "comments"),
            accesses=tuple(
                DatabaseAccess.from_payload(item) for item in payload.get("accesses") or ()
            ),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class WebspaceUser:
    """An SSH/FTP user that can be granted access to webspaces."""

    id: str
    name: str
    user_name: str = ""
    raw: Payload = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Payload) -> WebspaceUser:
        return cls(
            id=_str(payload, "id"),
            name=_str(payload, "name"),
            user_name=_str(payload, "userName"),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class DatabaseUser:
    """A database login account."""

    id: str
    name: str
    db_user_name: str = ""
    raw: Payload = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Payload) -> DatabaseUser:
        return cls(
            id=_str(payload, "id"),
            name=_str(payload, "name"),
            db_user_name=_str(payload, "dbUserName"),
            raw=dict(payload),
        )


__all__ = [
    "Database",
    "DatabaseAccess",
    "DatabaseUser",
    "Payload",
    "Vhost",
    "Webspace",
    "WebspaceAccess",
    "WebspaceUser",
]
