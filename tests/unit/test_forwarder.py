"""Tests for the action forwarder."""

from __future__ import annotations

import json
import threading

import pytest

from probe_monitor.dashboard.models import ProxyRequest
from probe_monitor.errors import (
    RateLimitedError,
    RelayError,
    RequestError,
    TargetNotAllowedError,
)
from probe_monitor.forwarder import ActionForwarder
from probe_monitor.probe_client import ProbeClient
from tests.conftest import PodNetwork

TOGGLE_URL = "http://10.0.0.5:8080/api/probes/readiness/fail"


def body(url: str = TOGGLE_URL, method: str = "POST") -> bytes:
    return json.dumps({"url": url, "method": method}).encode()


class TestParseRequest:
    def test_valid_body(self) -> None:
        request = ActionForwarder.parse_request(body(method="post"))

        assert request == ProxyRequest(url=TOGGLE_URL, method="POST")
        assert request.target_host == "10.0.0.5"

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            b"[]",
            b'{"url": "http://10.0.0.5:8080/"}',
            b'{"method": "POST"}',
            json.dumps({"url": "ftp://10.0.0.5/file", "method": "GET"}).encode(),
            json.dumps({"url": "/api/probes/startup/fail", "method": "POST"}).encode(),
            json.dumps({"url": TOGGLE_URL, "method": "PO ST"}).encode(),
            json.dumps({"url": TOGGLE_URL, "method": ""}).encode(),
        ],
    )
    def test_malformed_body_is_request_error(self, raw: bytes) -> None:
        with pytest.raises(RequestError, match="Invalid request body") as exc_info:
            ActionForwarder.parse_request(raw)

        assert exc_info.value.status_code == 400

    def test_ipv6_target_host(self) -> None:
        request = ActionForwarder.parse_request(body(url="http://[fd00::5]:8080/api/info"))
        assert request.target_host == "fd00::5"


class TestHandle:
    @pytest.mark.asyncio
    async def test_relays_and_returns_remote_response(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.serve_raw("10.0.0.5", b'{"ok":true}', status_code=200)
        forwarder = ActionForwarder(probe_client, cooldown_seconds=0)

        response = await forwarder.handle(ProxyRequest(url=TOGGLE_URL, method="POST"))

        assert response.status_code == 200
        assert response.body == b'{"ok":true}'
        assert str(pod_network.requests[0].url) == TOGGLE_URL
        assert pod_network.requests[0].method == "POST"

    @pytest.mark.asyncio
    async def test_remote_error_status_is_passed_through(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.serve_raw("10.0.0.5", b"not found", status_code=404)
        forwarder = ActionForwarder(probe_client, cooldown_seconds=0)

        response = await forwarder.handle(ProxyRequest(url=TOGGLE_URL, method="POST"))

        assert response.status_code == 404
        assert response.body == b"not found"

    @pytest.mark.asyncio
    async def test_unreachable_target_raises_relay_error(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.fail("10.0.0.5")
        forwarder = ActionForwarder(probe_client, cooldown_seconds=0)

        with pytest.raises(RelayError, match="Failed to call pod API"):
            await forwarder.handle(ProxyRequest(url=TOGGLE_URL, method="POST"))

    @pytest.mark.asyncio
    async def test_unrestricted_by_default(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.serve_raw("192.168.1.1", b"ok")
        forwarder = ActionForwarder(probe_client, known_addresses=lambda: [], cooldown_seconds=0)

        response = await forwarder.handle(
            ProxyRequest(url="http://192.168.1.1/anything", method="GET")
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_restriction_rejects_unknown_target(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        forwarder = ActionForwarder(
            probe_client,
            known_addresses=lambda: ["10.0.0.5"],
            restrict_targets=True,
            cooldown_seconds=0,
        )

        with pytest.raises(TargetNotAllowedError) as exc_info:
            await forwarder.handle(ProxyRequest(url="http://169.254.169.254/", method="GET"))

        assert exc_info.value.status_code == 403
        assert pod_network.requests == []

    @pytest.mark.asyncio
    async def test_restriction_allows_known_target(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.serve_raw("10.0.0.5", b"ok")
        forwarder = ActionForwarder(
            probe_client,
            known_addresses=lambda: ["10.0.0.5"],
            restrict_targets=True,
            cooldown_seconds=0,
        )

        response = await forwarder.handle(ProxyRequest(url=TOGGLE_URL, method="POST"))

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_known_addresses_are_read_off_the_event_loop_thread(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.serve_raw("10.0.0.5", b"ok")
        lookup_threads: list[threading.Thread] = []

        def known_addresses() -> list[str]:
            lookup_threads.append(threading.current_thread())
            return ["10.0.0.5"]

        forwarder = ActionForwarder(
            probe_client, known_addresses=known_addresses, restrict_targets=True
        )

        await forwarder.handle(ProxyRequest(url=TOGGLE_URL, method="POST"))

        assert len(lookup_threads) == 1
        assert lookup_threads[0] is not threading.current_thread()

    def test_restriction_requires_known_addresses(self, probe_client: ProbeClient) -> None:
        with pytest.raises(ValueError, match="known_addresses"):
            ActionForwarder(probe_client, restrict_targets=True)

    def test_rejects_negative_cooldown(self, probe_client: ProbeClient) -> None:
        with pytest.raises(ValueError, match="cooldown_seconds"):
            ActionForwarder(probe_client, cooldown_seconds=-1)


class TestCooldown:
    @pytest.mark.asyncio
    async def test_disabled_by_default(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.serve_raw("10.0.0.5", b"ok")
        forwarder = ActionForwarder(probe_client)
        request = ProxyRequest(url=TOGGLE_URL, method="POST")

        await forwarder.handle(request)
        response = await forwarder.handle(request)

        assert forwarder.cooldown_seconds == 0
        assert response.status_code == 200
        assert len(pod_network.requests) == 2

    @pytest.mark.asyncio
    async def test_repeated_toggle_is_rate_limited(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.serve_raw("10.0.0.5", b"ok")
        forwarder = ActionForwarder(probe_client, cooldown_seconds=60)
        request = ProxyRequest(url=TOGGLE_URL, method="POST")

        await forwarder.handle(request)
        with pytest.raises(RateLimitedError) as exc_info:
            await forwarder.handle(request)

        assert exc_info.value.status_code == 429
        assert len(pod_network.requests) == 1

    @pytest.mark.asyncio
    async def test_other_urls_are_not_limited(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        pod_network.serve_raw("10.0.0.5", b"ok")
        forwarder = ActionForwarder(probe_client, cooldown_seconds=60)

        await forwarder.handle(ProxyRequest(url=TOGGLE_URL, method="POST"))
        await forwarder.handle(
            ProxyRequest(url="http://10.0.0.5:8080/api/probes/liveness/fail", method="POST")
        )

        assert len(pod_network.requests) == 2

    @pytest.mark.asyncio
    async def test_failed_relay_does_not_start_cooldown(
        self, probe_client: ProbeClient, pod_network: PodNetwork
    ) -> None:
        forwarder = ActionForwarder(probe_client, cooldown_seconds=60)
        request = ProxyRequest(url=TOGGLE_URL, method="POST")
        pod_network.fail("10.0.0.5")

        with pytest.raises(RelayError):
            await forwarder.handle(request)

        pod_network.serve_raw("10.0.0.5", b"ok")
        response = await forwarder.handle(request)
        assert response.status_code == 200
