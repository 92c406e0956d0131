"""Relay of dashboard actions to individual pods.

The dashboard cannot reach pod IPs from the browser, so probe toggles are
posted to ``/api/proxy`` and relayed from here. The remote status code and
body are returned to the caller unchanged.

By default any http(s) URL is relayed. Setting ``restrict_targets`` limits
relays to the addresses of pods currently in the state store, looked up in a
worker thread. A positive ``cooldown_seconds`` rejects repeated toggles of
the same URL.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable, Iterable

from cachetools import TTLCache
from pydantic import ValidationError

from probe_monitor.dashboard.models import ProxyRequest
from probe_monitor.errors import RateLimitedError, RelayError, RequestError, TargetNotAllowedError
from probe_monitor.logging import get_logger
from probe_monitor.probe_client import ProbeClient, RelayResponse

logger = get_logger(__name__)

DEFAULT_COOLDOWN_SECONDS = 0.0

# Upper bound on distinct targets tracked for the cooldown
COOLDOWN_CACHE_MAXSIZE = 1024


class ActionForwarder:
    """Validates proxy requests and relays them through the ProbeClient.

    Args:
        probe_client: Client that performs the relayed request.
        known_addresses: Returns the addresses of the currently known pods.
            Required when ``restrict_targets`` is enabled.
        restrict_targets: Only relay to hosts returned by ``known_addresses``.
        cooldown_seconds: Minimum time between two relays to the same URL.
            0 (the default) disables the cooldown.
    """

    def __init__(
        self,
        probe_client: ProbeClient,
        known_addresses: Callable[[], Iterable[str]] | None = None,
        restrict_targets: bool = False,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        if restrict_targets and known_addresses is None:
            raise ValueError("known_addresses is required when restrict_targets is enabled")
        if cooldown_seconds < 0:
            raise ValueError(f"cooldown_seconds must not be negative, got {cooldown_seconds}")
        self.probe_client = probe_client
        self.known_addresses = known_addresses
        self.restrict_targets = restrict_targets
        self.cooldown_seconds = cooldown_seconds
        self._last_relay_times: TTLCache[str, float] | None = (
            TTLCache(maxsize=COOLDOWN_CACHE_MAXSIZE, ttl=cooldown_seconds)
            if cooldown_seconds > 0
            else None
        )
        self._cooldown_lock = threading.Lock()

    @staticmethod
    def parse_request(body: bytes | str) -> ProxyRequest:
        """Decode and validate a raw proxy request body.

        Raises:
            RequestError: If the body is not valid JSON or fails validation.
        """
        try:
            return ProxyRequest.model_validate_json(body)
        except ValidationError as e:
            logger.debug(
                "Rejected proxy request: %s",
                e.errors(include_url=False),
                extra={"diagnostic_tag": "proxy"},
            )
            raise RequestError("Invalid request body") from e

    def check_target(self, request: ProxyRequest) -> None:
        """Reject targets that are not known pods when restriction is enabled.

        Raises:
            TargetNotAllowedError: If the target host is not a known pod address.
        """
        if not self.restrict_targets or self.known_addresses is None:
            return
        host = request.target_host
        if host not in set(self.known_addresses()):
            logger.warning("Refusing to relay to unknown target %s", host)
            raise TargetNotAllowedError(f"Target {host} is not a known pod address")

    def _reserve(self, url: str) -> None:
        """Claim the cooldown slot for ``url``.

        Raises:
            RateLimitedError: If the URL was relayed within the cooldown window.
        """
        if self._last_relay_times is None:
            return
        now = time.monotonic()
        with self._cooldown_lock:
            last = self._last_relay_times.get(url)
            if last is not None:
                remaining = self.cooldown_seconds - (now - last)
                logger.warning(
                    "Rate limit exceeded for %s, %.1fs remaining in cooldown", url, remaining
                )
                raise RateLimitedError(
                    f"Rate limit exceeded. Please wait {max(remaining, 0.0):.1f} "
                    "seconds before toggling again."
                )
            self._last_relay_times[url] = now

    def _release(self, url: str) -> None:
        if self._last_relay_times is None:
            return
        with self._cooldown_lock:
            self._last_relay_times.pop(url, None)

    async def handle(self, request: ProxyRequest) -> RelayResponse:
        """Relay a validated proxy request.

        Args:
            request: The validated request.

        Returns:
            The remote response, unmodified.

        Raises:
            TargetNotAllowedError: If target restriction rejects the URL.
            RateLimitedError: If the URL is still in its cooldown window.
            RelayError: If the relayed request failed in transit.
        """
        await asyncio.to_thread(self.check_target, request)
        self._reserve(request.url)
        try:
            return await self.probe_client.forward(request.url, request.method)
        except RelayError as e:
            logger.error(
                "Proxy request to %s failed: %s",
                request.url,
                e,
                extra={"error_type": type(e).__name__},
            )
            self._release(request.url)
            raise


__all__ = ["ActionForwarder", "ProxyRequest"]
