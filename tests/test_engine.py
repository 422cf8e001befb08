"""End-to-end reconciliation against the in-memory API."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import make_settings
from fakes import FakeHostingApi

from webspacectl.config import ConfigError, Settings
from webspacectl.manifest import Manifest, parse_manifest
from webspacectl.reconcile import Reconciler, SetupRequest


def _manifest(*, prune: bool = True) -> Manifest:
    return parse_manifest(
        {
            "project": {"parent": "main", "prune": prune},
            "databases": {"schemas": ["shop"], "endpoints": {"web": "shop:admin"}},
            "applications": {
                "web": {
                    "php": {"version": "8.2", "extensions": ["redis", "intl"]},
                    "env": {"APP_ENV": "prod", "FEATURE_FLAG": True},
                    "relationships": {"database": "database:web", "cache": "redis"},
                    "web": [{"domainName": "{default}", "root": "public"}],
                    "cron": [{"cmd": "./bin/cleanup", "every": "day"}],
                }
            },
        }
    )


def _request(manifest: Manifest, ssh_key: str, **overrides: object) -> SetupRequest:
    values: dict[str, object] = {
        "manifest": manifest,
        "app_key": "web",
        "ref": "main",
        "prefix": "acme",
        "ssh_public_key": ssh_key,
        "default_domain": "example.com",
        "keep_branches": ("main",),
    }
    values.update(overrides)
    return SetupRequest(**values)  # type: ignore[arg-type]


def _reconciler(api: FakeHostingApi, settings: Settings) -> Reconciler:
    return Reconciler(api, settings, sleep=lambda _: None)  # type: ignore[arg-type]


def test_first_run_provisions_everything(
    api: FakeHostingApi, settings: Settings, ssh_key: str
) -> None:
    result = _reconciler(api, settings).setup(_request(_manifest(), ssh_key))

    assert result.is_new is True
    assert result.webspace.name == "acme-main-web"
    assert result.new_databases == ("shop",)
    assert api.webspace_names() == {"acme-main-web"}
    assert api.database_names() == {"acme-main-shop"}

    outputs = result.to_outputs()
    assert outputs["sync-files"] is True
    assert outputs["sync-databases"] == "shop"
    assert outputs["ssh-host"] == result.webspace.host_name
    assert outputs["ssh-port"] == 2244
    assert outputs["http-user"] == result.webspace.webspace_name
    assert outputs["deploy-path"] == f"/home/{result.webspace.webspace_name}/html"
    assert outputs["public-url"] == "https://example.com"
    assert outputs["php-version"] == "8.2"
    assert outputs["php-extensions"] == "redis, intl"

    env_vars = outputs["env-vars"]
    assert isinstance(env_vars, dict)
    assert env_vars["APP_ENV"] == "prod"
    assert env_vars["FEATURE_FLAG"] is True
    assert env_vars["CACHE_HOST"].startswith("/run/redis-")
    assert env_vars["DATABASE_PORT"] == 3306
    assert result.exported_env == {"APP_ENV": "prod", "FEATURE_FLAG": True}
    assert env_vars["DATABASE_PASSWORD"] in result.secrets
    assert result.prune is not None and result.prune.deleted_webspaces == ()


def test_second_run_without_rotation_is_idempotent(
    api: FakeHostingApi, tmp_path: Path, ssh_key: str
) -> None:
    settings = make_settings(tmp_path, databases={"rotate_credentials": False})
    manifest = _manifest()
    _reconciler(api, settings).setup(_request(manifest, ssh_key))
    api.calls.clear()

    result = _reconciler(api, settings).setup(_request(manifest, ""))

    assert api.mutations() == []
    assert result.changes == ()
    assert result.is_new is False
    assert result.new_databases == ()


def test_second_run_rotates_credentials(
    api: FakeHostingApi, settings: Settings, ssh_key: str
) -> None:
    manifest = _manifest()
    first = _reconciler(api, settings).setup(_request(manifest, ssh_key))
    api.calls.clear()

    second = _reconciler(api, settings).setup(_request(manifest, ""))

    assert [name for name, _ in api.mutations()] == [
        "create_database_user",
        "update_database",
        "delete_database_user",
    ]
    assert api.database_user_names() == {"acme-main-web--web.v2"}
    assert second.env_vars["DATABASE_PASSWORD"] != first.env_vars["DATABASE_PASSWORD"]


def test_setup_prunes_stale_branches(
    api: FakeHostingApi, settings: Settings, ssh_key: str
) -> None:
    api.add_webspace("acme-gone-web")
    api.add_database("acme-gone-shop")

    result = _reconciler(api, settings).setup(_request(_manifest(), ssh_key))

    assert result.prune is not None
    assert result.prune.deleted_webspaces == ("acme-gone-web",)
    assert "webspace.delete acme-gone-web" in result.changes
    assert api.webspace_names() == {"acme-main-web"}
    assert api.database_names() == {"acme-main-shop"}


def test_pruning_can_be_disabled_in_manifest(
    api: FakeHostingApi, settings: Settings, ssh_key: str
) -> None:
    api.add_webspace("acme-gone-web")

    result = _reconciler(api, settings).setup(_request(_manifest(prune=False), ssh_key))

    assert result.prune is None
    assert "acme-gone-web" in api.webspace_names()


def test_missing_branch_list_turns_into_warning(
    api: FakeHostingApi, settings: Settings, ssh_key: str
) -> None:
    result = _reconciler(api, settings).setup(
        _request(_manifest(), ssh_key, keep_branches=())
    )

    assert result.prune is not None and result.prune.skipped
    assert result.warnings == result.prune.warnings


def test_unknown_app_fails_before_any_call(
    api: FakeHostingApi, settings: Settings, ssh_key: str
) -> None:
    with pytest.raises(ConfigError, match="applications.api"):
        _reconciler(api, settings).setup(_request(_manifest(), ssh_key, app_key="api"))

    assert api.calls == []
