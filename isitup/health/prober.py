"""Site prober — runs the DNS → HTTP → TLS → content stages for one site.

The prober only collects findings; deciding up / degraded / down is the
classifier's job (see ``classifier.py``). Fatal stages (DNS, HTTP transport)
short-circuit: nothing after them runs.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import ssl
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone

import httpx

from isitup.config import settings

from .classifier import to_result
from .models import CheckResult, ProbeFindings, Site, utcnow

logger = logging.getLogger(__name__)

TLS_PORT = 443

# getaddrinfo has no timeout of its own; lookups run here so they can be abandoned
_dns_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="isitup-dns")


# ── Stage helpers ────────────────────────────────────────────────────────────


def resolve_hostname(hostname: str, timeout_s: float = 10.0) -> bool:
    """True if the system resolver returns at least one address within *timeout_s*."""
    future = _dns_pool.submit(socket.getaddrinfo, hostname, None)
    try:
        return bool(future.result(timeout=timeout_s))
    except FutureTimeoutError:
        logger.debug("DNS lookup for %s timed out after %gs", hostname, timeout_s)
        return False
    except (OSError, UnicodeError):
        return False


def fetch_certificate_expiry(
    hostname: str,
    port: int = TLS_PORT,
    timeout_s: float = 10.0,
) -> datetime:
    """Open a verified TLS connection and return the peer certificate's notAfter.

    Raises OSError (incl. ssl.SSLError, timeouts) or ValueError on any failure.
    """
    ctx = ssl.create_default_context()
    with socket.create_connection((hostname, port), timeout=timeout_s) as sock:
        with ctx.wrap_socket(sock, server_hostname=hostname) as ssock:
            cert = ssock.getpeercert()

    not_after = (cert or {}).get("notAfter")
    if not not_after:
        raise ValueError("No certificate returned")
    return datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)


def _error_text(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


# ── Prober ───────────────────────────────────────────────────────────────────


class Prober:
    """Executes the four-stage check against a site.

    ``clock`` and ``timer`` are injectable so certificate expiry and response
    time can be simulated in tests; ``transport`` lets tests swap in
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        http_timeout_s: float | None = None,
        tls_timeout_s: float | None = None,
        user_agent: str | None = None,
        clock: Callable[[], datetime] = utcnow,
        timer: Callable[[], float] = time.perf_counter,
        transport: httpx.AsyncBaseTransport | None = None,
        resolver: Callable[[str], bool] | None = None,
        cert_fetcher: Callable[..., datetime] = fetch_certificate_expiry,
        dns_timeout_s: float | None = None,
    ) -> None:
        self.http_timeout_s = http_timeout_s or settings.http_timeout_s
        self.tls_timeout_s = tls_timeout_s or settings.tls_timeout_s
        self.dns_timeout_s = dns_timeout_s or settings.dns_timeout_s
        self.user_agent = user_agent or settings.user_agent
        self.clock = clock
        self.timer = timer
        self._transport = transport
        self._resolve = resolver or (lambda host: resolve_hostname(host, self.dns_timeout_s))
        self._fetch_cert = cert_fetcher

    def probe(self, site: Site) -> ProbeFindings:
        """Run every applicable stage and return the raw findings."""
        hostname = site.hostname

        # 1. DNS
        if not self._resolve(hostname):
            logger.debug("%s: DNS resolution failed for %s", site.name, hostname)
            return ProbeFindings(dns_resolved=False)

        # 2. HTTP
        status_code, elapsed_ms, body, error = self._fetch(site.url)
        if error is not None:
            logger.debug("%s: HTTP transport error: %s", site.name, error)
            return ProbeFindings(
                dns_resolved=True, response_time_ms=elapsed_ms, transport_error=error,
            )

        findings = ProbeFindings(
            dns_resolved=True, http_status=status_code, response_time_ms=elapsed_ms,
        )

        # 3. TLS
        if site.is_https and site.check_ssl:
            findings.ssl_valid, findings.ssl_expires_at = self._check_tls(hostname)

        # 4. Content
        if site.check_content:
            findings.content_found = site.check_content in (body or "")

        return findings

    def perform_check(self, site: Site) -> CheckResult:
        """Probe *site* and classify the findings."""
        return to_result(self.probe(site), site, self.clock)

    # -- stages ---------------------------------------------------------------

    def _fetch(self, url: str) -> tuple[int | None, int, str | None, str | None]:
        """GET *url*; returns (status, elapsed_ms, body, error).

        Runs on its own event loop (probes execute in worker threads) so the
        whole exchange, redirects and body included, sits under one deadline.
        """
        t0 = self.timer()
        try:
            status_code, body = asyncio.run(self._fetch_within_budget(url, t0))
            return status_code, self._elapsed_ms(t0), body, None
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return None, self._elapsed_ms(t0), None, self._timeout_text
        except httpx.HTTPError as e:
            return None, self._elapsed_ms(t0), None, _error_text(e)
        except Exception as e:
            logger.debug("Unexpected HTTP error for %s", url, exc_info=True)
            return None, self._elapsed_ms(t0), None, _error_text(e)

    @property
    def _timeout_text(self) -> str:
        return f"Request timed out after {self.http_timeout_s:g}s"

    async def _fetch_within_budget(self, url: str, t0: float) -> tuple[int, str]:
        def _check_deadline(request: httpx.Request) -> None:
            if self.timer() - t0 > self.http_timeout_s:
                raise httpx.ReadTimeout(self._timeout_text, request=request)

        async def _before_hop(request: httpx.Request) -> None:
            # Runs for the first request and every redirect
            _check_deadline(request)

        async with httpx.AsyncClient(
            timeout=self.http_timeout_s,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
            event_hooks={"request": [_before_hop]},
        ) as client:

            async def _get() -> tuple[int, str]:
                async with client.stream("GET", url) as resp:
                    chunks = []
                    async for chunk in resp.aiter_bytes():
                        chunks.append(chunk)
                        _check_deadline(resp.request)
                    _check_deadline(resp.request)
                    body = b"".join(chunks).decode(resp.encoding or "utf-8", errors="replace")
                    return resp.status_code, body

            return await asyncio.wait_for(_get(), timeout=self.http_timeout_s)

    def _check_tls(self, hostname: str) -> tuple[bool, datetime | None]:
        try:
            expires_at = self._fetch_cert(hostname, TLS_PORT, self.tls_timeout_s)
        except (OSError, ValueError) as e:
            logger.debug("TLS check failed for %s: %s", hostname, e)
            return False, None
        return expires_at > self.clock(), expires_at

    def _elapsed_ms(self, t0: float) -> int:
        return max(0, round((self.timer() - t0) * 1000))


_default_prober: Prober | None = None


def perform_check(site: Site) -> CheckResult:
    """On-demand probe + classification with the default prober."""
    global _default_prober
    if _default_prober is None:
        _default_prober = Prober()
    return _default_prober.perform_check(site)
