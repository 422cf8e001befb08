"""Translate manifest declarations into API payload fragments."""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from ..manifest import ALLOWED_PRIVILEGES, CronjobConfig, LocationConfig, ValidationError

CRON_COMMENT = "Created by github action. Please do not change."
CRON_SCHEDULES = {"hour": "hourly", "day": "daily", "week": "weekly", "month": "monthly"}
INI_EXTENSIONS = ("apcu", "imagick", "memcached", "oauth", "redis")

ACCESS_LEVELS: dict[str, tuple[str, ...]] = {
    "ro": ("read",),
    "rw": ("read", "write"),
    "admin": ("read", "write", "schema"),
}

_CRON_DEFAULTS: dict[str, object] = {
    "comments": "",
    "dayOfMonth": 0,
    "daypart": "",
    "hour": 0,
    "interpreterVersion": "",
    "minute": 0,
    "parameters": [],
    "schedule": "",
    "script": "",
    "type": "",
    "url": "",
    "weekday": "",
}


def transform_cron_job(cron: CronjobConfig, php_version: str | None) -> dict[str, object]:
    """Return the API representation of *cron* with every field populated.

    Unused fields keep their neutral defaults so two renderings of the same
    declaration compare equal.
    """
    job = dict(_CRON_DEFAULTS)
    job["parameters"] = []
    if cron.php is not None:
        script, *parameters = cron.php.split() or [""]
        job.update(type="php", script=script, parameters=parameters)
        job["interpreterVersion"] = php_version or ""
    elif cron.cmd is not None:
        script, *parameters = cron.cmd.split() or [""]
        job.update(type="bash", script=script, parameters=parameters)
    else:
        raise ValidationError('Please configure either "php" or "cmd" for the cron jobs.')
    job["comments"] = CRON_COMMENT

    schedule = CRON_SCHEDULES.get(cron.every, cron.every)
    job["schedule"] = schedule
    if schedule == "weekly":
        job["weekday"] = (cron.on or "mon").lower()
    elif schedule == "monthly":
        try:
            job["dayOfMonth"] = int(cron.on or 1)
        except ValueError as exc:
            raise ValidationError(
                f'Monthly cron "on" must be a day of month. Got {cron.on!r}.'
            ) from exc
    elif schedule == "daily":
        job["daypart"] = cron.on or "1-5"
    return job


def normalize_cron_job(payload: Mapping[str, object]) -> dict[str, object]:
    """Project a remote cron job onto the fields :func:`transform_cron_job` sets."""
    job: dict[str, object] = {}
    for key, default in _CRON_DEFAULTS.items():
        value = payload.get(key)
        if key == "parameters":
            job[key] = [str(item) for item in value] if isinstance(value, list) else []
        else:
            job[key] = default if value is None else value
    return job


def transform_php_ini(
    ini: Mapping[str, object], extensions: Iterable[str]
) -> list[dict[str, str]]:
    """Return ``[{"key", "value"}]`` pairs including extension switches."""
    values = dict(ini)
    for extension in extensions:
        if extension in INI_EXTENSIONS:
            values[f"extension={extension}.so"] = "true"
    return [{"key": key, "value": _ini_value(value)} for key, value in values.items()]


def _ini_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def translate_locations(locations: Mapping[str, LocationConfig]) -> list[dict[str, object]]:
    rules: list[dict[str, object]] = []
    for match_string, location in locations.items():
        if match_string.startswith("^"):
            match_type = "regex"
        elif match_string.startswith("/"):
            match_type = "directory"
        else:
            match_type = "default"
        passthru = location.passthru
        rules.append(
            {
                "matchString": match_string,
                "matchType": match_type,
                "locationType": "generic" if location.allow else "blockAccess",
                "mapScript": passthru if isinstance(passthru, str) else "",
                "phpEnabled": passthru is not None and passthru is not False,
            }
        )
    return rules


def normalize_locations(locations: Sequence[Mapping[str, object]]) -> list[dict[str, object]]:
    """Project remote location rules onto the fields :func:`translate_locations` sets."""
    normalized: list[dict[str, object]] = []
    for location in locations:
        normalized.append(
            {
                "matchString": str(location.get("matchString") or ""),
                "matchType": str(location.get("matchType") or ""),
                "locationType": str(location.get("locationType") or ""),
                "mapScript": str(location.get("mapScript") or ""),
                "phpEnabled": bool(location.get("phpEnabled")),
            }
        )
    return normalized


def get_accesses(privilege: str) -> list[str]:
    """Map ``ro``/``rw``/``admin`` to API access levels; anything else is admin."""
    return list(ACCESS_LEVELS.get(privilege, ACCESS_LEVELS["admin"]))


def get_privileges(access_level: Iterable[str]) -> str:
    """Return the privilege name for a remote access level list."""
    levels = set(access_level)
    for privilege in reversed(ALLOWED_PRIVILEGES):
        if levels == set(ACCESS_LEVELS[privilege]):
            return privilege
    raise ValidationError(f"Access level {sorted(levels)!r} unknown.")


def web_root(root: str) -> str:
    return f"current/{root}".rstrip("/")


__all__ = [
    "ACCESS_LEVELS",
    "get_accesses",
    "get_privileges",
    "normalize_cron_job",
    "normalize_locations",
    "transform_cron_job",
    "transform_php_ini",
    "translate_locations",
    "web_root",
]
