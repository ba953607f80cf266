"""Shared models for the monitoring engine: sites, probe findings, checks."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlsplit


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Status ───────────────────────────────────────────────────────────────────


class Status(str, Enum):
    UP = "up"
    DEGRADED = "degraded"
    DOWN = "down"


# ── Collaborator records ─────────────────────────────────────────────────────


@dataclass
class User:
    """Site owner. Only the webhook is relevant to the engine."""

    id: str
    email: str = ""
    discord_webhook_url: str | None = None


@dataclass
class Site:
    """A monitored endpoint. The engine reads sites but never mutates them."""

    id: str
    url: str
    name: str = ""
    user_id: str = ""
    check_ssl: bool = True
    check_content: str | None = None
    enabled: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.hostname or self.url

    @property
    def hostname(self) -> str:
        return urlsplit(self.url).hostname or ""

    @property
    def is_https(self) -> bool:
        return urlsplit(self.url).scheme.lower() == "https"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat()
        return d


def validate_url(url: str) -> str:
    """Return *url* unchanged if it is an absolute http(s) URL, else raise ValueError."""
    parts = urlsplit(url)
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ValueError(f"Not an absolute http(s) URL: {url!r}")
    return url


# ── Engine output ────────────────────────────────────────────────────────────


@dataclass
class ProbeFindings:
    """Raw output of the four probe stages, before classification."""

    dns_resolved: bool
    http_status: int | None = None
    response_time_ms: int | None = None
    ssl_valid: bool | None = None
    ssl_expires_at: datetime | None = None
    content_found: bool | None = None
    transport_error: str | None = None


@dataclass
class CheckResult:
    """Classified result of one probe, not yet persisted."""

    status: Status
    dns_resolved: bool
    http_status: int | None = None
    response_time_ms: int | None = None
    ssl_valid: bool | None = None
    ssl_expires_at: datetime | None = None
    content_found: bool | None = None
    error_message: str | None = None


@dataclass
class Check(CheckResult):
    """A persisted check. Created once per probe and never mutated."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    site_id: str = ""
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_result(
        cls, site_id: str, result: CheckResult, timestamp: datetime | None = None,
    ) -> Check:
        return cls(
            site_id=site_id,
            timestamp=timestamp or utcnow(),
            **{f.name: getattr(result, f.name) for f in fields(CheckResult)},
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        d["timestamp"] = self.timestamp.isoformat()
        d["ssl_expires_at"] = self.ssl_expires_at.isoformat() if self.ssl_expires_at else None
        return d
