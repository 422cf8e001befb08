"""Manifest loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from webspacectl.config import ConfigError
from webspacectl.manifest import (
    AppConfig,
    ValidationError,
    WebConfig,
    load_manifest,
    parse_manifest,
)

MANIFEST = """\
project:
  parent: main
  domain: "{ref}-{app}.preview.example.com"
  pool: pool-1
databases:
  schemas: [shop, reports]
  endpoints:
    web: "shop:admin"
    reporting: "reports:ro"
    bare: "shop"
users:
  alice:
    role: developer
    key: "ssh-rsa AAAA alice@laptop"
applications:
  web:
    php:
      version: "8.2"
      extensions: [redis, intl]
      ini:
        memory_limit: 512M
        display_errors: false
    env:
      APP_ENV: prod
      DEBUG: false
    relationships:
      database: "database:web"
      reports: "database:reporting"
      cache: "redis"
    web:
      - domainName: "{default}"
        root: public
        www: false
        locations:
          "/":
            passthru: "/index.php"
          "^/secret":
            allow: false
    cron:
      - php: "bin/console app:cleanup --force"
        every: day
        on: "2-3"
    users: [alice]
    sync: [public/uploads]
  worker:
    account: acct-7
"""


def _write(tmp_path: Path, text: str = MANIFEST) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_manifest_parses_every_section(tmp_path: Path) -> None:
    manifest = load_manifest(_write(tmp_path), env={})

    assert manifest.source == tmp_path / "config.yaml"
    assert manifest.project.parent == "main"
    assert manifest.project.domain == "{ref}-{app}.preview.example.com"
    assert manifest.project.prune is True
    assert manifest.databases.schemas == ("shop", "reports")
    assert manifest.users["alice"].role == "developer"

    web = manifest.app("web")
    assert web.php.version == "8.2"
    assert web.php.extensions == ("redis", "intl")
    assert web.php.ini == {"memory_limit": "512M", "display_errors": False}
    assert web.env == {"APP_ENV": "prod", "DEBUG": False}
    assert web.pool == "pool-1"
    assert web.redis_enabled is True
    assert web.database_relationships("web") == [("database", "web"), ("reports", "reporting")]
    assert web.users == ("alice",)
    assert web.sync == ("public/uploads",)

    (vhost,) = web.web
    assert vhost.domain_name == "{default}"
    assert vhost.root == "public"
    assert vhost.www is False
    assert vhost.locations["/"].passthru == "/index.php"
    assert vhost.locations["^/secret"].allow is False

    (cron,) = web.cron
    assert cron.php == "bin/console app:cleanup --force"
    assert cron.every == "day"
    assert cron.on == "2-3"


def test_defaults_are_applied_while_reading(tmp_path: Path) -> None:
    manifest = load_manifest(_write(tmp_path), env={})
    worker = manifest.app("worker")

    assert worker.account == "acct-7"
    assert worker.pool == "pool-1"
    assert worker.php.version is None
    assert worker.web == (WebConfig(),)
    assert worker.cron == ()
    assert worker.redis_enabled is False
    assert worker.database_relationships("worker") == []


def test_php_version_falls_back_to_environment(tmp_path: Path) -> None:
    manifest = load_manifest(_write(tmp_path), env={"PHP_VERSION": "8.1"})

    assert manifest.app("worker").php.version == "8.1"
    assert manifest.app("web").php.version == "8.2"


def test_unknown_application_raises(tmp_path: Path) -> None:
    manifest = load_manifest(_write(tmp_path), env={})

    with pytest.raises(ConfigError, match='Cannot find "applications.api"'):
        manifest.app("api")


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="does not exist"):
        load_manifest(tmp_path / "nope.yaml", env={})


def test_non_mapping_document_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="mapping"):
        load_manifest(_write(tmp_path, "- a\n- b\n"), env={})


def test_bare_on_key_is_read_as_schedule_argument() -> None:
    manifest = parse_manifest(
        {"applications": {"web": {"cron": [{"cmd": "echo hi", "every": "week", True: "fri"}]}}}
    )

    assert manifest.app("web").cron[0].on == "fri"


def test_cron_requires_exactly_one_command() -> None:
    with pytest.raises(ConfigError, match='either "php" or "cmd"'):
        parse_manifest({"applications": {"web": {"cron": [{"php": "a", "cmd": "b"}]}}})
    with pytest.raises(ConfigError, match='either "php" or "cmd"'):
        parse_manifest({"applications": {"web": {"cron": [{"every": "day"}]}}})


def test_legacy_web_mapping_form() -> None:
    manifest = parse_manifest(
        {
            "applications": {
                "web": {"web": {"_": {"root": "public"}, "{app}.example.com": {"www": False}}}
            }
        }
    )

    first, second = manifest.app("web").web
    assert first.domain_name is None
    assert first.root == "public"
    assert second.domain_name == "{app}.example.com"
    assert second.www is False


def test_unsupported_relationship_raises() -> None:
    with pytest.raises(ValidationError, match="Unsupported relationship"):
        parse_manifest({"applications": {"web": {"relationships": {"search": "elastic"}}}})


def test_user_without_key_raises() -> None:
    with pytest.raises(ConfigError, match="users.bob.key"):
        parse_manifest({"users": {"bob": {"role": "developer"}}})


def test_resolve_endpoint_defaults_to_admin(tmp_path: Path) -> None:
    databases = load_manifest(_write(tmp_path), env={}).databases

    assert databases.resolve("web") == ("shop", "admin")
    assert databases.resolve("reporting") == ("reports", "ro")
    assert databases.resolve("bare") == ("shop", "admin")


def test_resolve_rejects_unknown_declarations() -> None:
    manifest = parse_manifest(
        {
            "databases": {
                "schemas": ["shop"],
                "endpoints": {"odd": "shop:superuser", "ghost": "missing:rw"},
            }
        }
    )

    with pytest.raises(ValidationError, match="Unknown privilege"):
        manifest.databases.resolve("odd")
    with pytest.raises(ConfigError, match='schema "missing"'):
        manifest.databases.resolve("ghost")
    with pytest.raises(ConfigError, match="databases.endpoints.none"):
        manifest.databases.resolve("none")


def test_database_relationship_without_endpoint_uses_app_key() -> None:
    app = AppConfig(relationships={"database": "database"})

    assert app.database_relationships("web") == [("database", "web")]
