"""Tests for manifest-to-payload transforms."""
from __future__ import annotations

import pytest

from webspacectl.manifest import CronjobConfig, LocationConfig, ValidationError
from webspacectl.reconcile.transforms import (
    get_accesses,
    get_privileges,
    normalize_cron_job,
    normalize_locations,
    transform_cron_job,
    transform_php_ini,
    translate_locations,
    web_root,
)


def test_php_cron_job_splits_script_and_parameters() -> None:
    job = transform_cron_job(
        CronjobConfig(php="bin/console app:cleanup --force", every="day", on="2-3"), "8.2"
    )

    assert job["type"] == "php"
    assert job["script"] == "bin/console"
    assert job["parameters"] == ["app:cleanup", "--force"]
    assert job["interpreterVersion"] == "8.2"
    assert job["schedule"] == "daily"
    assert job["daypart"] == "2-3"
    assert job["weekday"] == ""
    assert job["dayOfMonth"] == 0


def test_bash_cron_job_defaults_to_hourly() -> None:
    job = transform_cron_job(CronjobConfig(cmd="./sync.sh"), "8.2")

    assert job["type"] == "bash"
    assert job["script"] == "./sync.sh"
    assert job["parameters"] == []
    assert job["interpreterVersion"] == ""
    assert job["schedule"] == "hourly"


@pytest.mark.parametrize(
    ("every", "on", "field", "expected"),
    [
        ("week", None, "weekday", "mon"),
        ("week", "FRI", "weekday", "fri"),
        ("month", None, "dayOfMonth", 1),
        ("month", "15", "dayOfMonth", 15),
        ("day", None, "daypart", "1-5"),
    ],
)
def test_schedule_arguments(every: str, on: str | None, field: str, expected: object) -> None:
    job = transform_cron_job(CronjobConfig(cmd="true", every=every, on=on), None)

    assert job[field] == expected


def test_monthly_cron_requires_a_day_number() -> None:
    with pytest.raises(ValidationError, match="day of month"):
        transform_cron_job(CronjobConfig(cmd="true", every="month", on="first"), None)


def test_cron_without_command_is_rejected() -> None:
    with pytest.raises(ValidationError):
        transform_cron_job(CronjobConfig(), None)


def test_normalized_remote_cron_matches_rendering() -> None:
    desired = transform_cron_job(CronjobConfig(cmd="./run.sh a", every="week"), None)
    remote = {**desired, "id": "cron-1", "hour": None, "parameters": ["a"]}

    assert normalize_cron_job(remote) == desired


def test_php_ini_includes_extension_switches() -> None:
    values = transform_php_ini(
        {"memory_limit": "512M", "display_errors": False, "opcache.enable": True},
        ["redis", "intl", "apcu"],
    )

    assert values == [
        {"key": "memory_limit", "value": "512M"},
        {"key": "display_errors", "value": "false"},
        {"key": "opcache.enable", "value": "true"},
        {"key": "extension=redis.so", "value": "true"},
        {"key": "extension=apcu.so", "value": "true"},
    ]


def test_translate_locations() -> None:
    rules = translate_locations(
        {
            "/": LocationConfig(passthru="/index.php"),
            "^/private": LocationConfig(allow=False),
            "favicon.ico": LocationConfig(passthru=True),
        }
    )

    assert rules == [
        {
            "matchString": "/",
            "matchType": "directory",
            "locationType": "generic",
            "mapScript": "/index.php",
            "phpEnabled": True,
        },
        {
            "matchString": "^/private",
            "matchType": "regex",
            "locationType": "blockAccess",
            "mapScript": "",
            "phpEnabled": False,
        },
        {
            "matchString": "favicon.ico",
            "matchType": "default",
            "locationType": "generic",
            "mapScript": "",
            "phpEnabled": True,
        },
    ]
    assert normalize_locations([{**rules[0], "id": "loc-1"}, rules[1], rules[2]]) == rules


def test_locations_without_passthru_serve_static_files() -> None:
    assert LocationConfig().passthru is None

    rules = translate_locations(
        {"/assets": LocationConfig(), "/media": LocationConfig(passthru=False)}
    )

    assert [rule["phpEnabled"] for rule in rules] == [False, False]
    assert [rule["mapScript"] for rule in rules] == ["", ""]


@pytest.mark.parametrize(
    ("privilege", "levels"),
    [
        ("ro", ["read"]),
        ("rw", ["read", "write"]),
        ("admin", ["read", "write", "schema"]),
        ("unknown", ["read", "write", "schema"]),
    ],
)
def test_get_accesses(privilege: str, levels: list[str]) -> None:
    assert get_accesses(privilege) == levels


def test_get_privileges_ignores_order() -> None:
    assert get_privileges(["write", "read"]) == "rw"
    assert get_privileges(("schema", "read", "write")) == "admin"
    assert get_privileges(["read"]) == "ro"
    with pytest.raises(ValidationError, match="unknown"):
        get_privileges(["write"])


def test_web_root() -> None:
    assert web_root("") == "current"
    assert web_root("public") == "current/public"
    assert web_root("public/") == "current/public"
