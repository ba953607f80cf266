"""Status classification — maps raw probe findings to up / degraded / down.

Pure and deterministic: the only external input is the clock used for the
certificate expiry window, and that is passed in.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from .models import CheckResult, ProbeFindings, Site, Status, utcnow

SLOW_THRESHOLD_MS = 3000
SSL_WARNING_DAYS = 14

DNS_FAILED = "DNS resolution failed"
SSL_INVALID = "SSL certificate invalid"
SLOW_RESPONSE = "Response time > 3s"
SSL_EXPIRING = "SSL certificate expiring soon"
CONTENT_MISSING = "Expected content not found"


def classify(
    findings: ProbeFindings,
    site: Site,
    clock: Callable[[], datetime] = utcnow,
) -> tuple[Status, str | None]:
    """Return ``(status, reason)`` for a probe. The first matching rule wins."""
    if not findings.dns_resolved:
        return Status.DOWN, DNS_FAILED

    if findings.http_status is None:
        return Status.DOWN, findings.transport_error or "Unknown error"

    if not 200 <= findings.http_status < 400:
        return Status.DOWN, f"HTTP {findings.http_status}"

    if site.check_ssl and site.is_https and findings.ssl_valid is False:
        return Status.DOWN, SSL_INVALID

    # Soft findings, highest priority first
    if findings.response_time_ms is not None and findings.response_time_ms > SLOW_THRESHOLD_MS:
        return Status.DEGRADED, SLOW_RESPONSE

    if findings.ssl_expires_at is not None:
        remaining = findings.ssl_expires_at - clock()
        if remaining <= timedelta(days=SSL_WARNING_DAYS):
            return Status.DEGRADED, SSL_EXPIRING

    if site.check_content and findings.content_found is False:
        return Status.DEGRADED, CONTENT_MISSING

    return Status.UP, None


def to_result(
    findings: ProbeFindings,
    site: Site,
    clock: Callable[[], datetime] = utcnow,
) -> CheckResult:
    """Classify *findings* and fold them into a CheckResult."""
    status, reason = classify(findings, site, clock)

    if not findings.dns_resolved:
        return CheckResult(status=status, dns_resolved=False, error_message=reason)

    if findings.http_status is None:
        # Transport failure: only the elapsed time survives
        return CheckResult(
            status=status,
            dns_resolved=True,
            response_time_ms=findings.response_time_ms,
            error_message=reason,
        )

    return CheckResult(
        status=status,
        dns_resolved=True,
        http_status=findings.http_status,
        response_time_ms=findings.response_time_ms,
        ssl_valid=findings.ssl_valid,
        ssl_expires_at=findings.ssl_expires_at,
        content_found=findings.content_found,
        error_message=reason,
    )
