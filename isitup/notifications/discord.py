"""Discord webhook notifications for site status transitions.

One embed per transition (incident / warning / resolved), POSTed as
``{"embeds": [embed]}``. Delivery failures are logged and reported as
``False``; they never raise, since the check is already persisted.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from isitup.config import settings
from isitup.health.models import Check, Site, Status, utcnow

logger = logging.getLogger(__name__)

COLORS = {
    Status.UP: 0x06D6A0,
    Status.DOWN: 0xFF5757,
    Status.DEGRADED: 0xFFBE0B,
}

_EMOJI = {
    Status.UP: "🟢",
    Status.DOWN: "🔴",
    Status.DEGRADED: "🟡",
}

FOOTER = "Uptime Monitor"


def resolve_webhook_url(user_webhook: str | None, default: str | None = None) -> str | None:
    """Prefer the site owner's webhook, fall back to the process-wide one."""
    fallback = settings.discord_webhook_url if default is None else default
    return user_webhook or fallback or None


def format_duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    return f"{ms / 60_000:.1f}min"


def _days_until(expires_at: datetime, now: datetime) -> int:
    return (expires_at - now).days


# -- Message building ----------------------------------------------------------


def build_diagnostics(check: Check, now: datetime) -> list[str]:
    """Likely causes for operator triage. Informational only."""
    lines: list[str] = []

    if not check.dns_resolved:
        lines.append("❌ DNS resolution failed - domain may be unreachable or misconfigured")

    if check.http_status:
        if check.http_status >= 500:
            lines.append(f"❌ Server error (HTTP {check.http_status}) - internal server issue")
        elif check.http_status >= 400:
            lines.append(
                f"⚠️ Client error (HTTP {check.http_status}) - resource not found or forbidden"
            )
        elif check.http_status >= 300:
            lines.append(f"ℹ️ Redirect (HTTP {check.http_status})")
    elif check.dns_resolved:
        lines.append("❌ Connection failed - server may be down or blocking requests")

    if check.response_time_ms:
        elapsed = format_duration(check.response_time_ms)
        if check.response_time_ms > 10_000:
            lines.append(f"🐌 Very slow response ({elapsed}) - severe performance issue")
        elif check.response_time_ms > 5000:
            lines.append(f"🐢 Slow response ({elapsed}) - performance degradation")
        elif check.response_time_ms > 3000:
            lines.append(f"⚠️ Response time above threshold ({elapsed})")

    if check.ssl_valid is False:
        lines.append("🔓 SSL certificate is invalid or expired")
    elif check.ssl_expires_at:
        days = _days_until(check.ssl_expires_at, now)
        if days <= 0:
            lines.append("🔓 SSL certificate has expired")
        elif days <= 7:
            lines.append(f"⚠️ SSL certificate expires in {days} days")
        elif days <= 14:
            lines.append(f"ℹ️ SSL certificate expires in {days} days")

    if check.content_found is False:
        lines.append("📝 Expected content not found on page")

    return lines


def _headline(site: Site, status: Status, previous: Status | None) -> tuple[str, str] | None:
    emoji = _EMOJI[status]
    if status == Status.DOWN:
        return (
            f"{emoji} INCIDENT: {site.name} is DOWN",
            "The site is no longer responding and requires attention.",
        )
    if status == Status.DEGRADED:
        return (
            f"{emoji} WARNING: {site.name} is DEGRADED",
            "The site is experiencing performance issues or partial failures.",
        )
    if previous == Status.DOWN:
        return (
            f"{emoji} RESOLVED: {site.name} is back UP",
            "The incident has been resolved. The site is now fully operational.",
        )
    if previous == Status.DEGRADED:
        return (
            f"{emoji} RESOLVED: {site.name} is fully operational",
            "Performance issues have been resolved.",
        )
    return None


def build_embed(
    site: Site,
    check: Check,
    previous_status: Status | None,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Build the Discord embed for a transition, or None if nothing to report."""
    if previous_status == check.status:
        return None
    headline = _headline(site, check.status, previous_status)
    if headline is None:
        return None

    now = now or utcnow()
    title, description = headline
    fields: list[dict[str, Any]] = [
        {"name": "🌐 Site", "value": f"[{site.name}]({site.url})", "inline": True},
        {"name": "📊 Status", "value": f"**{check.status.value.upper()}**", "inline": True},
        {
            "name": "🔄 Previous",
            "value": previous_status.value.upper() if previous_status else "N/A",
            "inline": True,
        },
    ]

    if check.http_status:
        fields.append({"name": "🔢 HTTP Status", "value": str(check.http_status), "inline": True})

    if check.response_time_ms:
        fields.append({
            "name": "⏱️ Response Time",
            "value": format_duration(check.response_time_ms),
            "inline": True,
        })

    if check.ssl_valid is not None:
        ssl_value = "✅ Valid" if check.ssl_valid else "❌ Invalid"
        if check.ssl_expires_at:
            ssl_value += f" (expires in {_days_until(check.ssl_expires_at, now)}d)"
        fields.append({"name": "🔒 SSL", "value": ssl_value, "inline": True})

    if check.error_message:
        fields.append({
            "name": "❌ Error",
            "value": f"```{check.error_message}```",
            "inline": False,
        })

    if check.status != Status.UP or previous_status is not None:
        diagnostics = build_diagnostics(check, now)
        if diagnostics:
            fields.append({
                "name": "🔍 Diagnostics",
                "value": "\n".join(diagnostics),
                "inline": False,
            })

    return {
        "title": title,
        "description": description,
        "color": COLORS[check.status],
        "fields": fields,
        "footer": {"text": FOOTER},
        "timestamp": now.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    }


# -- Dispatch ------------------------------------------------------------------


class DiscordNotifier:
    """Sends status-transition embeds to Discord webhooks via httpx."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=10)
        self.clock = clock

    async def notify(
        self,
        webhook_url: str | None,
        site: Site,
        check: Check,
        previous_status: Status | None,
    ) -> bool:
        """Send a transition notification. True iff Discord accepted it."""
        if not webhook_url:
            logger.debug("Discord: skipping %s (no webhook configured)", site.name)
            return False
        if previous_status == check.status:
            return False

        embed = build_embed(site, check, previous_status, now=self.clock())
        if embed is None:
            return False

        try:
            resp = await self._client.post(webhook_url, json={"embeds": [embed]})
        except httpx.HTTPError as e:
            logger.warning("Discord notification for %s failed: %s", site.name, e)
            return False

        if not resp.is_success:
            logger.warning(
                "Discord webhook returned %d for %s: %s",
                resp.status_code, site.name, resp.text[:200],
            )
            return False

        logger.info(
            "Discord: notified %s -> %s for %s",
            previous_status.value if previous_status else "none", check.status.value, site.name,
        )
        return True

    async def close(self) -> None:
        await self._client.aclose()
