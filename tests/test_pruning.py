"""Branch pruning tests."""
from __future__ import annotations

from fakes import FakeHostingApi

from webspacectl.manifest import parse_manifest
from webspacectl.reconcile.pruning import prune_branches

MANIFEST = parse_manifest({"applications": {"web": {}, "worker": {}}})
USER_PREFIX = "github-action--"


def _seed(api: FakeHostingApi, ref: str) -> None:
    for app in ("web", "worker"):
        name = f"acme-{ref}-{app}"
        user = api.add_webspace_user(f"{USER_PREFIX}{name}")
        api.add_webspace(name, user_ids=[user["id"]])
    api.add_database(f"acme-{ref}-shop")
    api.add_database_user(f"acme-{ref}-web--web.v1")


def _prune(api: FakeHostingApi, branches: list[str], current_ref: str | None = None):
    changes: list[str] = []
    result = prune_branches(
        api,  # type: ignore[arg-type]
        MANIFEST,
        prefix="acme",
        branches=branches,
        current_ref=current_ref,
        service_user_prefix=USER_PREFIX,
        changes=changes,
    )
    return result, changes


def test_stale_branch_resources_are_deleted(api: FakeHostingApi) -> None:
    for ref in ("main", "featureX", "stale"):
        _seed(api, ref)

    result, changes = _prune(api, ["main", "featureX"])

    assert set(result.deleted_webspaces) == {"acme-stale-web", "acme-stale-worker"}
    assert set(result.deleted_webspace_users) == {
        "github-action--acme-stale-web",
        "github-action--acme-stale-worker",
    }
    assert result.deleted_databases == ("acme-stale-shop",)
    assert result.deleted_database_users == ("acme-stale-web--web.v1",)
    assert result.changed == 6
    assert len(changes) == 6
    assert api.webspace_names() == {
        "acme-main-web",
        "acme-main-worker",
        "acme-featureX-web",
        "acme-featureX-worker",
    }
    assert api.database_names() == {"acme-main-shop", "acme-featureX-shop"}
    assert set(result.kept_webspaces) == api.webspace_names()


def test_current_ref_is_never_pruned(api: FakeHostingApi) -> None:
    _seed(api, "main")
    _seed(api, "hotfix")

    result, _ = _prune(api, ["main"], current_ref="hotfix")

    assert result.deleted_webspaces == ()
    assert "acme-hotfix-web" in api.webspace_names()


def test_empty_branch_list_skips_pruning(api: FakeHostingApi) -> None:
    _seed(api, "stale")

    result, changes = _prune(api, [])

    assert result.skipped is True
    assert result.warnings
    assert changes == []
    assert api.mutations() == []


def test_resources_of_longer_kept_ref_survive(api: FakeHostingApi) -> None:
    _seed(api, "release")
    _seed(api, "release-2")

    result, _ = _prune(api, ["release-2"])

    assert set(result.deleted_webspaces) == {"acme-release-web", "acme-release-worker"}
    assert api.database_names() == {"acme-release-2-shop"}
    assert api.database_user_names() == {"acme-release-2-web--web.v1"}


def test_unparseable_webspaces_are_skipped(api: FakeHostingApi) -> None:
    api.add_webspace("acme-manual")
    _seed(api, "main")

    result, _ = _prune(api, ["main"])

    assert result.skipped_webspaces == ("acme-manual",)
    assert "acme-manual" in api.webspace_names()


def test_webspaces_of_removed_apps_are_pruned(api: FakeHostingApi) -> None:
    _seed(api, "main")
    api.add_webspace("acme-main-api")
    api.add_webspace("acme-stale-api")
    api.add_database("acme-stale-shop")

    result, changes = _prune(api, ["main"])

    assert result.deleted_webspaces == ("acme-stale-api",)
    assert result.skipped_webspaces == ()
    assert "acme-main-api" in result.kept_webspaces
    assert result.deleted_databases == ("acme-stale-shop",)
    assert "webspace.delete acme-stale-api" in changes
    assert api.webspace_names() == {"acme-main-web", "acme-main-worker", "acme-main-api"}
