"""Site registry — loads sites.yaml and seeds the store.

Format::

    users:
      - id: ops
        email: ops@example.com
        discord_webhook_url: https://discord.com/api/webhooks/...
        sites:
          - id: homepage
            name: Homepage
            url: https://example.com
            check_ssl: true
            check_content: Welcome
            enabled: true
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from isitup.config import settings
from isitup.health.models import Site, User, validate_url
from isitup.health.store import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class RegistryEntry:
    """A user with the sites they own."""

    user: User
    sites: list[Site] = field(default_factory=list)


class SiteRegistry:
    """Loads and caches users/sites from a YAML file."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path or settings.sites_file)
        self._entries: list[RegistryEntry] = []
        self._loaded = False

    def load(self, force: bool = False) -> list[RegistryEntry]:
        """Parse the registry file. Malformed entries are skipped."""
        if self._loaded and not force:
            return self._entries

        self._entries = []
        if not self._path.exists():
            logger.warning("Registry file not found: %s", self._path)
            self._loaded = True
            return self._entries

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse %s: %s", self._path, e)
            self._loaded = True
            return self._entries

        users = (raw.get("users") or []) if isinstance(raw, dict) else None
        if not isinstance(users, list):
            logger.error("Invalid registry %s: expected a mapping with a 'users' list", self._path)
            self._loaded = True
            return self._entries

        for entry in users:
            try:
                self._entries.append(_parse_entry(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed user entry: %s", e)

        self._loaded = True
        logger.info(
            "Loaded %d users / %d sites from registry",
            len(self._entries), sum(len(e.sites) for e in self._entries),
        )
        return self._entries

    @property
    def sites(self) -> list[Site]:
        return [s for e in self.load() for s in e.sites]

    def get(self, site_id: str) -> Site | None:
        return next((s for s in self.sites if s.id == site_id), None)

    def seed(self, store: SQLiteStore) -> int:
        """Upsert every user and site into *store*. Returns the number of sites."""
        count = 0
        for entry in self.load():
            store.add_user(entry.user)
            for site in entry.sites:
                store.add_site(site)
                count += 1
        logger.info("Seeded %d sites into store", count)
        return count


# ── Parsers ──────────────────────────────────────────────────────────────────


def _parse_entry(raw: dict[str, Any]) -> RegistryEntry:
    user = User(
        id=str(raw["id"]),
        email=raw.get("email", ""),
        discord_webhook_url=raw.get("discord_webhook_url") or None,
    )

    sites = []
    for s in raw.get("sites") or []:
        try:
            sites.append(_parse_site(s, user.id))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping site for user %s: %s", user.id, e)

    return RegistryEntry(user=user, sites=sites)


def _parse_site(raw: dict[str, Any], user_id: str) -> Site:
    return Site(
        id=str(raw["id"]),
        user_id=user_id,
        name=raw.get("name", ""),
        url=validate_url(raw["url"]),
        check_ssl=bool(raw.get("check_ssl", True)),
        check_content=raw.get("check_content") or None,
        enabled=bool(raw.get("enabled", True)),
    )
