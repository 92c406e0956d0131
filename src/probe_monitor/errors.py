"""Exception hierarchy for Probe Monitor.

The exceptions are grouped by how far they are allowed to travel:

- DiscoveryError and FetchError are absorbed by the reconciler. A discovery
  failure aborts the current cycle; a fetch failure is recorded on the
  affected pod's StatusRecord. Neither ever reaches a read surface.
- RelayError and RequestError belong to the proxy path and are turned into
  HTTP responses for the caller (500 and 4xx respectively).
"""

from __future__ import annotations


class ProbeMonitorError(Exception):
    """Base class for all Probe Monitor errors."""

    pass


class DiscoveryError(ProbeMonitorError):
    """Raised when listing pods from the cluster fails."""

    pass


class FetchError(ProbeMonitorError):
    """Raised when a pod's status endpoint could not be read.

    The string form of the exception is what ends up in the pod's
    ``StatusRecord.error`` field, so subclasses keep their messages short.
    """

    pass


class FetchConnectionError(FetchError):
    """The status request could not be sent or did not complete in time."""

    pass


class FetchStatusError(FetchError):
    """The status endpoint answered with a non-200 status code."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"unexpected status code: {status_code}")
        self.status_code = status_code


class FetchDecodeError(FetchError):
    """The status endpoint answered with a body that is not the expected JSON."""

    pass


class RelayError(ProbeMonitorError):
    """Raised when a proxied action request fails in transit."""

    pass


class RequestError(ProbeMonitorError):
    """Raised for a malformed inbound proxy request.

    Attributes:
        status_code: HTTP status code the caller should receive.
    """

    status_code = 400


class TargetNotAllowedError(RequestError):
    """Raised when target restriction is enabled and the URL is not a known pod."""

    status_code = 403


class RateLimitedError(RequestError):
    """Raised when the same target is toggled again inside the cooldown window."""

    status_code = 429


__all__ = [
    "DiscoveryError",
    "FetchConnectionError",
    "FetchDecodeError",
    "FetchError",
    "FetchStatusError",
    "ProbeMonitorError",
    "RateLimitedError",
    "RelayError",
    "RequestError",
    "TargetNotAllowedError",
]
