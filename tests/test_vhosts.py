"""Vhost reconciliation tests."""
from __future__ import annotations

from pathlib import Path

from conftest import make_settings
from fakes import FakeHostingApi

from webspacectl.config import Settings
from webspacectl.manifest import Manifest, parse_manifest
from webspacectl.providers.hosting_models import Vhost, Webspace
from webspacectl.reconcile.transforms import translate_locations
from webspacectl.reconcile.vhosts import desired_vhost, reconcile_vhosts, vhost_drift

MANIFEST = {
    "project": {"parent": "main"},
    "applications": {
        "web": {
            "php": {"version": "8.2", "extensions": ["redis"], "ini": {"memory_limit": "1G"}},
            "web": [
                {
                    "domainName": "{default}",
                    "root": "public",
                    "locations": {"/": {"passthru": "/index.php"}},
                },
                {"domainName": "admin.{default}", "www": False},
            ],
        }
    },
}


def _webspace(api: FakeHostingApi) -> Webspace:
    return Webspace.from_payload(api.add_webspace("acme-main-web"))


def _run(
    api: FakeHostingApi,
    settings: Settings,
    webspace: Webspace,
    *,
    manifest: Manifest | None = None,
    sleeps: list[float] | None = None,
    changes: list[str] | None = None,
):
    manifest = manifest or parse_manifest(MANIFEST)
    return reconcile_vhosts(
        api,  # type: ignore[arg-type]
        settings,
        manifest,
        manifest.app("web"),
        "web",
        webspace=webspace,
        ref="main",
        default_domain="example.com",
        changes=changes if changes is not None else [],
        sleep=(sleeps if sleeps is not None else []).append,
    )


def test_missing_vhosts_are_created(api: FakeHostingApi, settings: Settings) -> None:
    webspace = _webspace(api)
    changes: list[str] = []

    outcome = _run(api, settings, webspace, changes=changes)

    assert changes == ["vhost.create example.com", "vhost.create admin.example.com"]
    home = f"/home/{webspace.webspace_name}/html"
    assert [d.public_url for d in outcome.destinations] == [
        "https://example.com",
        "https://admin.example.com",
    ]
    assert {d.deploy_path for d in outcome.destinations} == {home}
    assert outcome.php_version == "8.2"
    assert outcome.php_extensions == ("redis",)

    created = {vhost["domainName"]: vhost for vhost in api.vhosts.values()}
    assert created["example.com"]["webRoot"] == "current/public"
    assert created["example.com"]["enableAlias"] is True
    assert created["admin.example.com"]["enableAlias"] is False
    assert created["example.com"]["sslSettings"]["managedSslProductCode"] == (
        "ssl-letsencrypt-dv-3m"
    )
    (_, (_, php_ini)) = next(call for call in api.calls if call[0] == "create_vhost")
    assert php_ini == [
        {"key": "memory_limit", "value": "1G"},
        {"key": "extension=redis.so", "value": "true"},
    ]


def test_second_run_changes_nothing(api: FakeHostingApi, settings: Settings) -> None:
    webspace = _webspace(api)
    _run(api, settings, webspace)
    api.calls.clear()
    changes: list[str] = []

    _run(api, settings, webspace, changes=changes)

    assert changes == []
    assert api.mutations() == []


def test_drifted_vhost_is_updated_in_place(api: FakeHostingApi, settings: Settings) -> None:
    webspace = _webspace(api)
    stale = api.add_vhost(
        webspace.id, "example.com", phpVersion="8.1", webRoot="current", customField="keep"
    )
    changes: list[str] = []

    _run(api, settings, webspace, changes=changes)

    assert "vhost.update example.com" in changes
    updated = api.vhosts[stale["id"]]
    assert updated["phpVersion"] == "8.2"
    assert updated["webRoot"] == "current/public"
    assert updated["customField"] == "keep"


def test_relict_vhosts_are_deleted_then_purged(api: FakeHostingApi, tmp_path: Path) -> None:
    settings = make_settings(tmp_path, vhosts={"purge_deleted": True, "purge_delay": 7})
    webspace = _webspace(api)
    relict = api.add_vhost(webspace.id, "old.example.com")
    sleeps: list[float] = []
    changes: list[str] = []

    _run(api, settings, webspace, sleeps=sleeps, changes=changes)

    assert "vhost.delete old.example.com" in changes
    assert relict["id"] not in api.vhosts
    assert relict["id"] not in api.restorable_vhosts
    assert sleeps == [7.0]
    names = api.call_names()
    assert names.index("delete_vhost") < names.index("purge_restorable_vhost")


def test_purge_can_be_disabled(api: FakeHostingApi, tmp_path: Path) -> None:
    settings = make_settings(tmp_path, vhosts={"purge_deleted": False})
    webspace = _webspace(api)
    relict = api.add_vhost(webspace.id, "old.example.com")
    sleeps: list[float] = []

    _run(api, settings, webspace, sleeps=sleeps)

    assert relict["id"] in api.restorable_vhosts
    assert sleeps == []


def test_unset_php_version_keeps_remote_version(api: FakeHostingApi, settings: Settings) -> None:
    manifest = parse_manifest(
        {"applications": {"web": {"web": [{"domainName": "shop.example.com"}]}}}
    )
    webspace = _webspace(api)
    vhost = api.add_vhost(webspace.id, "shop.example.com", phpVersion="7.4", enableAlias=False)

    _run(api, settings, webspace, manifest=manifest)

    assert api.vhosts[vhost["id"]]["phpVersion"] == "7.4"
    assert api.vhosts[vhost["id"]]["enableAlias"] is True


def test_vhost_drift_reports_fields() -> None:
    manifest = parse_manifest(MANIFEST)
    web = manifest.app("web").web[0]
    desired = desired_vhost(
        web,
        domain_name="example.com",
        webspace_id="ws-1",
        php_version="8.2",
        ssl_product="ssl",
    )
    vhost = Vhost.from_payload(
        {
            "id": "vh-1",
            "domainName": "example.com",
            "webRoot": "current/public",
            "phpVersion": "8.2",
            "enableAlias": True,
            "redirectToPrimaryName": True,
            "redirectHttpToHttps": False,
            "locations": translate_locations(web.locations),
        }
    )

    assert vhost_drift(vhost, desired) == ["redirectHttpToHttps"]


def test_preview_domain_shared_by_all_entries_is_created_once(
    api: FakeHostingApi, settings: Settings
) -> None:
    preview = {
        **MANIFEST,
        "project": {"parent": "production", "domain": "{ref}.preview.example.com"},
    }
    webspace = _webspace(api)
    changes: list[str] = []

    outcome = _run(api, settings, webspace, manifest=parse_manifest(preview), changes=changes)

    assert changes == ["vhost.create main.preview.example.com"]
    assert [d.public_url for d in outcome.destinations] == ["https://main.preview.example.com"]
    assert [vhost["domainName"] for vhost in api.vhosts.values()] == [
        "main.preview.example.com"
    ]
    assert "delete_vhost" not in api.call_names()
