"""HTTP client for the probe endpoints exposed by each monitored pod.

Every pod serves two endpoints on a fixed port:

- ``GET /api/info``: self-reported status (probe flags, age, startup delay).
- ``POST /api/probes/<startup|liveness|readiness>/<fail|recover>``: toggles
  one of its probes.

``ProbeClient.fetch_status`` reads the first and is used by the reconciler
from its own thread, through a pooled ``httpx.Client``. ``ProbeClient.forward``
relays an arbitrary request for the dashboard proxy and runs on the web
server's event loop through ``httpx.AsyncClient``.

Both calls are bounded by the same short timeout and are never retried:
a failed fetch is naturally retried by the next reconciliation cycle, and a
failed relay is reported to the caller.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Self

import httpx

from probe_monitor.errors import (
    FetchConnectionError,
    FetchDecodeError,
    FetchStatusError,
    RelayError,
)
from probe_monitor.logging import get_logger
from probe_monitor.models import RemoteStatus

logger = get_logger(__name__)

STATUS_PATH = "/api/info"
DEFAULT_INSTANCE_PORT = 8080
DEFAULT_TIMEOUT_SECONDS = 3.0

PROBE_TYPES = frozenset({"startup", "liveness", "readiness"})
PROBE_ACTIONS = frozenset({"fail", "recover"})


def format_host(address: str) -> str:
    """Return ``address`` in a form usable as a URL host (IPv6 gets brackets)."""
    if ":" in address and not address.startswith("["):
        return f"[{address}]"
    return address


def pod_url(address: str, port: int = DEFAULT_INSTANCE_PORT) -> str:
    """Base URL of a pod's API, e.g. ``http://[fd00::5]:8080``."""
    return f"http://{format_host(address)}:{port}"


def status_url(address: str, port: int = DEFAULT_INSTANCE_PORT) -> str:
    """Build the status endpoint URL for a pod address."""
    return f"{pod_url(address, port)}{STATUS_PATH}"


def probe_action_url(
    address: str,
    probe_type: str,
    action: str,
    port: int = DEFAULT_INSTANCE_PORT,
) -> str:
    """Build the probe toggle URL for a pod address.

    Args:
        address: Pod IP.
        probe_type: One of "startup", "liveness", "readiness".
        action: One of "fail", "recover".
        port: Port the pod serves its API on.

    Returns:
        The toggle endpoint URL.

    Raises:
        ValueError: If probe_type or action is not recognised.
    """
    if probe_type not in PROBE_TYPES:
        raise ValueError(f"Unknown probe type: {probe_type}")
    if action not in PROBE_ACTIONS:
        raise ValueError(f"Unknown probe action: {action}")
    return f"{pod_url(address, port)}/api/probes/{probe_type}/{action}"


@dataclass(frozen=True)
class RelayResponse:
    """Response of a relayed request, passed back to the caller unmodified.

    Attributes:
        status_code: HTTP status code returned by the remote pod.
        body: Raw response body.
        content_type: Content-Type header of the remote response, if any.
    """

    status_code: int
    body: bytes
    content_type: str | None = None


class ProbeClient:
    """Client for the pod status and probe toggle endpoints.

    Uses connection pooling via a lazily created ``httpx.Client`` for status
    fetches. The pooled client is shared by all reconciler threads; relays
    use a short-lived ``httpx.AsyncClient`` per call because they run on the
    web server's event loop.

    Args:
        instance_port: Port the pods serve their API on.
        timeout: Timeout in seconds for each request (connect, read, write, pool).
        transport: Optional transport for the sync client (used by tests).
        async_transport: Optional transport for the async client (used by tests).
    """

    def __init__(
        self,
        instance_port: int = DEFAULT_INSTANCE_PORT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.instance_port = instance_port
        self.timeout = httpx.Timeout(timeout)
        self._transport = transport
        self._async_transport = async_transport
        self._client: httpx.Client | None = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        """Get or create the reusable HTTP client."""
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(timeout=self.timeout, transport=self._transport)
            return self._client

    def fetch_status(self, address: str) -> RemoteStatus:
        """Fetch and decode a pod's self-reported status.

        Args:
            address: Pod IP.

        Returns:
            The decoded RemoteStatus.

        Raises:
            FetchConnectionError: If the request could not be sent or completed.
            FetchStatusError: If the endpoint returned a non-200 status.
            FetchDecodeError: If the body is not the expected JSON document.
        """
        url = status_url(address, self.instance_port)
        try:
            response = self._get_client().get(url)
        except httpx.RequestError as e:
            raise FetchConnectionError(f"failed to connect: {str(e) or type(e).__name__}") from e

        if response.status_code != httpx.codes.OK:
            raise FetchStatusError(response.status_code)

        try:
            payload: Any = response.json()
            status = RemoteStatus.from_api_response(payload)
        except ValueError as e:
            raise FetchDecodeError(f"failed to parse JSON: {e}") from e

        logger.debug("Fetched status from %s", url, extra={"diagnostic_tag": "fetch"})
        return status

    async def forward(self, target_url: str, method: str) -> RelayResponse:
        """Relay a request to an arbitrary URL and return the raw response.

        The response body is not interpreted in any way.

        Args:
            target_url: Absolute URL to call.
            method: HTTP method to use.

        Returns:
            RelayResponse with the remote status code, body and content type.

        Raises:
            RelayError: If the request could not be built, sent or completed.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._async_transport,
            ) as client:
                response = await client.request(method, target_url)
        except httpx.InvalidURL as e:
            raise RelayError(f"Failed to create request: {e}") from e
        except httpx.RequestError as e:
            raise RelayError(f"Failed to call pod API: {str(e) or type(e).__name__}") from e

        logger.info("Relayed %s %s -> %s", method, target_url, response.status_code)
        return RelayResponse(
            status_code=response.status_code,
            body=response.content,
            content_type=response.headers.get("content-type"),
        )

    def close(self) -> None:
        """Close the pooled HTTP client and release its connections."""
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


__all__ = [
    "PROBE_ACTIONS",
    "PROBE_TYPES",
    "ProbeClient",
    "RelayResponse",
    "format_host",
    "pod_url",
    "probe_action_url",
    "status_url",
]
