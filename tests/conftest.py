"""Shared pytest fixtures for Probe Monitor tests.

Provides a fake discovery client, a scripted HTTP transport standing in for
the pods' ``/api/info`` endpoints, and helpers to build models.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from probe_monitor.config import Config
from probe_monitor.discovery import DiscoveryClient
from probe_monitor.errors import DiscoveryError
from probe_monitor.models import InstanceDescriptor, RemoteStatus, StatusRecord
from probe_monitor.probe_client import ProbeClient
from probe_monitor.state_store import StateStore

FIXED_TIME = datetime(2024, 5, 1, 12, 30, 0, tzinfo=UTC)


def info_payload(
    pod_name: str = "web-7f8c9d-abcde",
    pod_ip: str = "10.0.0.5",
    started: bool = True,
    live: bool = True,
    ready: bool = True,
    **overrides: Any,
) -> dict[str, Any]:
    """Build an ``/api/info`` response body."""
    payload: dict[str, Any] = {
        "podName": pod_name,
        "podIP": pod_ip,
        "nodeHostname": "node-1",
        "containerAge": 125_000_000_000,
        "startTime": "2024-05-01T12:28:00Z",
        "probeStatus": {"started": started, "live": live, "ready": ready},
        "startupDelay": 10,
        "startupReady": "true",
    }
    payload.update(overrides)
    return payload


def make_descriptor(
    name: str = "web-7f8c9d-abcde",
    address: str = "10.0.0.5",
    host: str = "node-1",
    phase: str = "Running",
    namespace: str = "default",
) -> InstanceDescriptor:
    return InstanceDescriptor(
        name=name, address=address, host=host, phase=phase, namespace=namespace
    )


def make_record(
    name: str = "web-7f8c9d-abcde",
    address: str = "10.0.0.5",
    group_tag: str = "7f8c9d",
    last_checked: datetime = FIXED_TIME,
    info: RemoteStatus | None = None,
    error: str | None = None,
    phase: str = "Running",
) -> StatusRecord:
    return StatusRecord(
        name=name,
        address=address,
        host="node-1",
        phase=phase,
        group_tag=group_tag,
        last_checked=last_checked,
        info=info,
        error=error,
        namespace="default",
    )


class FakeDiscovery(DiscoveryClient):
    """Discovery client returning a scripted list of pods.

    Set ``error`` to make the next calls raise DiscoveryError.
    """

    def __init__(self, descriptors: list[InstanceDescriptor] | None = None) -> None:
        self.descriptors = list(descriptors or [])
        self.error: str | None = None
        self.calls: list[tuple[str, str]] = []

    def list_instances(self, selector: str, namespace: str = "") -> list[InstanceDescriptor]:
        self.calls.append((selector, namespace))
        if self.error is not None:
            raise DiscoveryError(self.error)
        return list(self.descriptors)


class PodNetwork:
    """Scripted responses for pod HTTP endpoints, keyed by host.

    Each host maps to either a (status_code, body) pair or an exception
    instance raised by the transport.
    """

    def __init__(self) -> None:
        self.responses: dict[str, tuple[int, bytes] | Exception] = {}
        self.requests: list[httpx.Request] = []
        self._lock = threading.Lock()

    def serve_json(self, host: str, payload: Any, status_code: int = 200) -> None:
        self.responses[host] = (status_code, json.dumps(payload).encode())

    def serve_raw(self, host: str, body: bytes, status_code: int = 200) -> None:
        self.responses[host] = (status_code, body)

    def fail(self, host: str, error: Exception | None = None) -> None:
        self.responses[host] = error or httpx.ConnectError("connection refused")

    def _respond(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        outcome = self.responses.get(request.url.host)
        if outcome is None:
            raise httpx.ConnectError("no route to host", request=request)
        if isinstance(outcome, Exception):
            raise outcome
        status_code, body = outcome
        return httpx.Response(
            status_code, content=body, headers={"content-type": "application/json"}
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        return self._respond(request)

    async def async_handler(self, request: httpx.Request) -> httpx.Response:
        return self._respond(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def async_transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.async_handler)


@pytest.fixture
def pod_network() -> PodNetwork:
    return PodNetwork()


@pytest.fixture
def probe_client(pod_network: PodNetwork) -> Generator[ProbeClient, None, None]:
    """ProbeClient whose sync and async requests go to ``pod_network``."""
    client = ProbeClient(
        transport=pod_network.transport(),
        async_transport=pod_network.async_transport(),
    )
    yield client
    client.close()


@pytest.fixture
def fake_discovery() -> FakeDiscovery:
    return FakeDiscovery()


@pytest.fixture
def store() -> StateStore:
    return StateStore()


@pytest.fixture
def test_config() -> Config:
    """Config with short timings suitable for tests."""
    return Config(
        port=18090,
        poll_interval=0.05,
        initial_delay=0.0,
    )


class TickingClock:
    """Clock returning FIXED_TIME plus one second per call."""

    def __init__(self, start: datetime = FIXED_TIME, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


@pytest.fixture
def ticking_clock() -> Callable[[], datetime]:
    return TickingClock()
