"""Pydantic request/response models for dashboard API endpoints.

- Proxy models: ProxyRequest
- Health models: LivenessResponse, ReadinessResponse
"""

from __future__ import annotations

import re
from datetime import datetime
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, field_validator

# NOTE: Update this list when adding new models to this module.
__all__: list[str] = [
    # Proxy models
    "ProxyRequest",
    # Health models
    "LivenessResponse",
    "ReadinessResponse",
]

# RFC 9110 token characters
_HTTP_METHOD_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

_ALLOWED_SCHEMES = frozenset({"http", "https"})


class ProxyRequest(BaseModel):
    """Request model for relaying an action to a pod.

    Sent by the dashboard's probe toggles, e.g.
    ``{"url": "http://10.0.0.5:8080/api/probes/readiness/fail", "method": "POST"}``.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    url: str
    method: str

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme.lower() not in _ALLOWED_SCHEMES:
            raise ValueError("url must be an absolute http or https URL")
        if not parts.hostname:
            raise ValueError("url must include a host")
        return value

    @field_validator("method")
    @classmethod
    def check_method(cls, value: str) -> str:
        if not _HTTP_METHOD_PATTERN.match(value):
            raise ValueError("method must be an HTTP method token")
        return value.upper()

    @property
    def target_host(self) -> str:
        """Host part of the target URL, without brackets or port."""
        return urlsplit(self.url).hostname or ""


class LivenessResponse(BaseModel):
    """Response model for the liveness probe."""

    status: str = "healthy"


class ReadinessResponse(BaseModel):
    """Response model for the readiness probe.

    ``ready`` turns true once the reconciler has committed a first cycle.
    """

    ready: bool
    state: str
    cycle_count: int
    last_cycle_at: datetime | None = None
    last_cycle_duration_seconds: float | None = None
    last_error: str | None = None
    pod_count: int = 0
