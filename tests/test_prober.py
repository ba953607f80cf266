"""Tests for the four-stage prober (DNS → HTTP → TLS → content)."""

from __future__ import annotations

import asyncio
import socket
import ssl
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock, patch

import httpx
import pytest

from isitup.health.models import Site, Status
from isitup.health.prober import Prober, fetch_certificate_expiry, resolve_hostname

from fakes import NOW, FakeClock, FakeTimer


def make_prober(
    handler,
    timer: FakeTimer | None = None,
    resolves: bool = True,
    cert_fetcher=None,
    clock: FakeClock | None = None,
) -> Prober:
    return Prober(
        clock=clock or FakeClock(NOW),
        timer=timer or FakeTimer(),
        transport=httpx.MockTransport(handler),
        resolver=lambda host: resolves,
        cert_fetcher=cert_fetcher or MagicMock(return_value=NOW + timedelta(days=400)),
    )


def ok_handler(body: str = "<html>Welcome home</html>", status: int = 200, timer=None, delay_s=0.0):
    def handler(request: httpx.Request) -> httpx.Response:
        if timer is not None:
            timer.t += delay_s
        return httpx.Response(status, text=body)
    return handler


# ── Stage helpers ────────────────────────────────────────────────────────────


class TestResolveHostname:
    def test_localhost_resolves(self) -> None:
        assert resolve_hostname("localhost") is True

    @patch("isitup.health.prober.socket.getaddrinfo", side_effect=socket.gaierror(-2, "Name or service not known"))
    def test_gaierror_is_false(self, _mock) -> None:
        assert resolve_hostname("nope.invalid") is False

    def test_empty_hostname_is_false(self) -> None:
        with patch("isitup.health.prober.socket.getaddrinfo", return_value=[]):
            assert resolve_hostname("") is False

    def test_slow_lookup_is_abandoned(self) -> None:
        release = threading.Event()

        def hang(*args, **kwargs):
            release.wait(timeout=5)
            return [("addr",)]

        with patch("isitup.health.prober.socket.getaddrinfo", side_effect=hang):
            try:
                t0 = time.perf_counter()
                assert resolve_hostname("slow.example.com", timeout_s=0.05) is False
                assert time.perf_counter() - t0 < 1.0
            finally:
                release.set()


class TestFetchCertificateExpiry:
    @patch("isitup.health.prober.socket.create_connection", side_effect=ConnectionRefusedError(111, "Connection refused"))
    def test_connection_error_raises(self, _mock) -> None:
        with pytest.raises(OSError):
            fetch_certificate_expiry("example.com", timeout_s=1)

    @patch("isitup.health.prober.socket.create_connection")
    @patch("isitup.health.prober.ssl.create_default_context")
    def test_parses_not_after(self, mock_ctx, _mock_conn) -> None:
        ssock = mock_ctx.return_value.wrap_socket.return_value.__enter__.return_value
        ssock.getpeercert.return_value = {"notAfter": "Jun  1 12:00:00 2026 GMT"}

        expiry = fetch_certificate_expiry("example.com")
        assert expiry.year == 2026
        assert expiry.month == 6
        assert expiry.tzinfo is not None

    @patch("isitup.health.prober.socket.create_connection")
    @patch("isitup.health.prober.ssl.create_default_context")
    def test_missing_certificate_raises(self, mock_ctx, _mock_conn) -> None:
        ssock = mock_ctx.return_value.wrap_socket.return_value.__enter__.return_value
        ssock.getpeercert.return_value = {}
        with pytest.raises(ValueError):
            fetch_certificate_expiry("example.com")


# ── Prober stages ────────────────────────────────────────────────────────────


class TestDNSStage:
    def test_dns_failure_short_circuits(self, https_site) -> None:
        handler = MagicMock()
        cert = MagicMock()
        prober = make_prober(handler, resolves=False, cert_fetcher=cert)

        findings = prober.probe(https_site)

        assert findings.dns_resolved is False
        assert findings.http_status is None
        assert findings.response_time_ms is None
        handler.assert_not_called()
        cert.assert_not_called()


class TestHTTPStage:
    def test_success_records_status_and_time(self, https_site) -> None:
        timer = FakeTimer()
        prober = make_prober(ok_handler(timer=timer, delay_s=0.5), timer=timer)

        findings = prober.probe(https_site)

        assert findings.dns_resolved is True
        assert findings.http_status == 200
        assert findings.response_time_ms == 500
        assert findings.transport_error is None

    def test_sends_user_agent(self, http_site) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["ua"] = request.headers["user-agent"]
            return httpx.Response(200)

        make_prober(handler).probe(http_site)
        assert seen["ua"] == "IsItUp/1.0 (Uptime Monitor)"

    def test_follows_redirects(self, http_site) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/status":
                return httpx.Response(301, headers={"Location": "http://plain.example.com/final"})
            return httpx.Response(200, text="final")

        findings = make_prober(handler).probe(http_site)
        assert findings.http_status == 200

    def test_connection_reset_is_transport_error(self, https_site) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection reset by peer", request=request)

        cert = MagicMock()
        site = Site(id="s", url="https://example.com", check_content="Welcome")
        findings = make_prober(handler, cert_fetcher=cert).probe(site)

        assert findings.dns_resolved is True
        assert findings.http_status is None
        assert findings.transport_error == "Connection reset by peer"
        assert findings.response_time_ms == 0
        assert findings.ssl_valid is None
        assert findings.content_found is None
        cert.assert_not_called()

    def test_overall_timeout_enforced_while_reading_body(self, http_site) -> None:
        timer = FakeTimer()
        findings = make_prober(ok_handler(timer=timer, delay_s=31), timer=timer).probe(http_site)

        assert findings.http_status is None
        assert findings.transport_error == "Request timed out after 30s"
        assert findings.response_time_ms == 31_000

    def test_budget_spans_redirect_hops(self, http_site) -> None:
        timer = FakeTimer()
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            timer.t += 12
            hop = len(seen)
            if hop <= 4:
                return httpx.Response(301, headers={"Location": f"http://plain.example.com/r{hop}"})
            return httpx.Response(200, text="finally")

        findings = make_prober(handler, timer=timer).probe(http_site)

        # Hops start at 0s, 12s and 24s; the fourth would start at 36s
        assert seen == ["/status", "/r1", "/r2"]
        assert findings.http_status is None
        assert findings.transport_error == "Request timed out after 30s"
        assert findings.response_time_ms == 36_000

    def test_slow_redirects_bounded_by_wall_clock(self, http_site) -> None:
        hops = []

        async def handler(request: httpx.Request) -> httpx.Response:
            hops.append(request.url.path)
            await asyncio.sleep(0.3)
            if len(hops) <= 4:
                return httpx.Response(301, headers={"Location": f"http://plain.example.com/r{len(hops)}"})
            return httpx.Response(200)

        prober = Prober(
            http_timeout_s=0.5,
            transport=httpx.MockTransport(handler),
            resolver=lambda host: True,
        )

        t0 = time.perf_counter()
        findings = prober.probe(http_site)
        wall = time.perf_counter() - t0

        assert wall < 1.5
        assert len(hops) == 2
        assert findings.transport_error == "Request timed out after 0.5s"
        assert findings.http_status is None

    def test_error_status_is_not_transport_error(self, http_site) -> None:
        findings = make_prober(ok_handler(status=503)).probe(http_site)
        assert findings.http_status == 503
        assert findings.transport_error is None


class TestTLSStage:
    def test_valid_certificate(self, https_site) -> None:
        expiry = NOW + timedelta(days=400)
        cert = MagicMock(return_value=expiry)
        findings = make_prober(ok_handler(), cert_fetcher=cert).probe(https_site)

        assert findings.ssl_valid is True
        assert findings.ssl_expires_at == expiry
        cert.assert_called_once_with("example.com", 443, 10.0)

    def test_expired_certificate_is_invalid(self, https_site) -> None:
        cert = MagicMock(return_value=NOW - timedelta(days=1))
        findings = make_prober(ok_handler(), cert_fetcher=cert).probe(https_site)
        assert findings.ssl_valid is False

    def test_handshake_error_does_not_abort(self) -> None:
        cert = MagicMock(side_effect=ssl.SSLCertVerificationError("certificate verify failed"))
        site = Site(id="s", url="https://example.com", check_content="Welcome")

        findings = make_prober(ok_handler(), cert_fetcher=cert).probe(site)

        assert findings.ssl_valid is False
        assert findings.ssl_expires_at is None
        assert findings.content_found is True

    def test_skipped_for_plain_http(self, http_site) -> None:
        cert = MagicMock()
        findings = make_prober(ok_handler(), cert_fetcher=cert).probe(http_site)
        assert findings.ssl_valid is None
        cert.assert_not_called()

    def test_skipped_when_disabled(self) -> None:
        cert = MagicMock()
        site = Site(id="s", url="https://example.com", check_ssl=False)
        findings = make_prober(ok_handler(), cert_fetcher=cert).probe(site)
        assert findings.ssl_valid is None
        cert.assert_not_called()


class TestContentStage:
    def test_found(self) -> None:
        site = Site(id="s", url="http://example.com", check_content="Welcome")
        assert make_prober(ok_handler()).probe(site).content_found is True

    def test_case_sensitive(self) -> None:
        site = Site(id="s", url="http://example.com", check_content="welcome")
        assert make_prober(ok_handler()).probe(site).content_found is False

    def test_literal_not_regex(self) -> None:
        site = Site(id="s", url="http://example.com", check_content="W.lcome")
        assert make_prober(ok_handler()).probe(site).content_found is False

    def test_not_configured(self, http_site) -> None:
        assert make_prober(ok_handler()).probe(http_site).content_found is None


# ── End to end ───────────────────────────────────────────────────────────────


class TestPerformCheck:
    def test_healthy_https_site_is_up(self, https_site) -> None:
        timer = FakeTimer()
        prober = make_prober(ok_handler(timer=timer, delay_s=0.5), timer=timer)

        result = prober.perform_check(https_site)

        assert result.status == Status.UP
        assert result.error_message is None
        assert result.ssl_valid is True
        assert result.response_time_ms == 500

    def test_slow_site_is_degraded(self, https_site) -> None:
        timer = FakeTimer()
        prober = make_prober(ok_handler(timer=timer, delay_s=4.2), timer=timer)

        result = prober.perform_check(https_site)

        assert result.status == Status.DEGRADED
        assert result.error_message == "Response time > 3s"

    def test_connection_reset_is_down(self, https_site) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadError("Connection reset by peer", request=request)

        result = make_prober(handler).perform_check(https_site)

        assert result.status == Status.DOWN
        assert result.dns_resolved is True
        assert result.error_message == "Connection reset by peer"
        assert result.http_status is None
        assert result.ssl_valid is None
        assert result.content_found is None
