"""Vhost reconciliation for one webspace."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..config import Settings
from ..manifest import AppConfig, Manifest, WebConfig
from ..providers.hosting_api import HostingApiClient
from ..providers.hosting_models import Vhost, Webspace
from .models import Destination
from .naming import translate_domain_name
from .transforms import normalize_locations, transform_php_ini, translate_locations, web_root

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class VhostOutcome:
    destinations: tuple[Destination, ...]
    php_version: str | None
    php_extensions: tuple[str, ...]


def desired_vhost(
    web: WebConfig,
    *,
    domain_name: str,
    webspace_id: str,
    php_version: str | None,
    ssl_product: str,
) -> dict[str, object]:
    """Return the ``vhost`` payload for one web declaration."""
    return {
        "domainName": domain_name,
        "serverType": "nginx",
        "webspaceId": webspace_id,
        "enableAlias": web.www,
        "redirectToPrimaryName": True,
        "redirectHttpToHttps": True,
        "phpVersion": php_version,
        "webRoot": web_root(web.root),
        "locations": translate_locations(web.locations),
        "sslSettings": {"profile": "modern", "managedSslProductCode": ssl_product},
    }


def vhost_drift(vhost: Vhost, desired: dict[str, object]) -> list[str]:
    """Return the names of fields where *vhost* differs from *desired*.

    An unset PHP version in the manifest leaves the remote version alone.
    """
    drift: list[str] = []
    php_version = desired.get("phpVersion")
    if php_version and php_version != vhost.php_version:
        drift.append("phpVersion")
    if desired["enableAlias"] != vhost.enable_alias:
        drift.append("enableAlias")
    if desired["webRoot"] != vhost.web_root:
        drift.append("webRoot")
    if desired["redirectToPrimaryName"] != vhost.redirect_to_primary_name:
        drift.append("redirectToPrimaryName")
    if desired["redirectHttpToHttps"] != vhost.redirect_http_to_https:
        drift.append("redirectHttpToHttps")
    locations = desired["locations"]
    if isinstance(locations, list) and normalize_locations(locations) != normalize_locations(
        vhost.locations
    ):
        drift.append("locations")
    return drift


def reconcile_vhosts(
    client: HostingApiClient,
    settings: Settings,
    manifest: Manifest,
    app: AppConfig,
    app_key: str,
    *,
    webspace: Webspace,
    ref: str,
    default_domain: str | None,
    changes: list[str],
    sleep: Callable[[float], None],
) -> VhostOutcome:
    """Create, update and delete vhosts so *webspace* serves exactly ``app.web``."""
    found = client.find_vhosts(webspace.id)
    by_domain = {vhost.domain_name: vhost for vhost in found}
    php_ini = transform_php_ini(app.php.ini, app.php.extensions)
    http_user = webspace.webspace_name

    destinations: list[Destination] = []
    wanted: set[str] = set()
    for web in app.web:
        domain_name = translate_domain_name(
            web.domain_name, ref, manifest, app_key, default_domain
        )
        if domain_name in wanted:
            LOGGER.info("Skipping %s: already configured by an earlier web entry", domain_name)
            continue
        wanted.add(domain_name)
        desired = desired_vhost(
            web,
            domain_name=domain_name,
            webspace_id=webspace.id,
            php_version=app.php.version,
            ssl_product=settings.products.ssl,
        )
        vhost = by_domain.get(domain_name)
        if vhost is None:
            LOGGER.info("Configuring %s...", domain_name)
            by_domain[domain_name] = client.create_vhost(desired, php_ini)
            changes.append(f"vhost.create {domain_name}")
        else:
            drift = vhost_drift(vhost, desired)
            if drift:
                LOGGER.info("Updating %s (%s)", domain_name, ", ".join(drift))
                merged = {**vhost.raw, **desired, "id": vhost.id}
                if not desired.get("phpVersion"):
                    merged["phpVersion"] = vhost.php_version
                client.update_vhost(merged, php_ini)
                changes.append(f"vhost.update {domain_name}")
        destinations.append(
            Destination(deploy_path=f"/home/{http_user}/html", public_url=f"https://{domain_name}")
        )

    relicts = [vhost for vhost in found if vhost.domain_name not in wanted]
    for relict in relicts:
        LOGGER.info("Deleting %s...", relict.domain_name)
        client.delete_vhost(relict.id)
        changes.append(f"vhost.delete {relict.domain_name}")
    if relicts and settings.vhosts.purge_deleted:
        sleep(settings.vhosts.purge_delay)
        for relict in relicts:
            LOGGER.info("Purging %s from the restorable state", relict.domain_name)
            client.purge_restorable_vhost(relict.id)

    return VhostOutcome(
        destinations=tuple(destinations),
        php_version=app.php.version,
        php_extensions=app.php.extensions,
    )


__all__ = ["VhostOutcome", "desired_vhost", "reconcile_vhosts", "vhost_drift"]
