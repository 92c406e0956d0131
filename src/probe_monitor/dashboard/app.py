"""FastAPI application factory for the dashboard.

This module provides a factory function for creating the FastAPI application
that serves the pod dashboard, the JSON snapshot and the action proxy. The
application is configured with Jinja2 templates rendered from the current
snapshot.

Custom Jinja2 filters:
    format_age: Formats a container age in nanoseconds as a compact duration.
        Example: 90_000_000_000 -> "1m 30s", 90_000 * 10**9 -> "1d 1h"
    format_time: Formats an ISO-8601 timestamp (string or datetime) for display.
        Example: "2024-05-01T12:30:00Z" -> "2024-05-01 12:30:00 UTC"
    clock_time: Formats a datetime as "HH:MM:SS".

Custom Jinja2 globals:
    probe_action_url: Builds the probe toggle URL relayed through /api/proxy.
    pod_url: Builds the link to a pod's own API (IPv6 addresses bracketed).
"""

from __future__ import annotations

from datetime import UTC, datetime
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape

from probe_monitor.dashboard.routes import create_routes
from probe_monitor.probe_client import DEFAULT_INSTANCE_PORT, pod_url, probe_action_url

if TYPE_CHECKING:
    from probe_monitor.config import BuildInfo
    from probe_monitor.forwarder import ActionForwarder
    from probe_monitor.reconciler import Reconciler
    from probe_monitor.snapshot import SnapshotReader

NANOSECONDS_PER_SECOND = 1_000_000_000


def format_age(nanoseconds: int | None) -> str:
    """Format a duration in nanoseconds as a compact human-readable string.

    Only the two most significant units are shown.

    Args:
        nanoseconds: Duration in nanoseconds, or None.

    Returns:
        Formatted duration string, or "0s" if None or negative.

    Examples:
        >>> format_age(45 * 10**9)
        '45s'
        >>> format_age(125 * 10**9)
        '2m 5s'
        >>> format_age(3 * 3600 * 10**9 + 60 * 10**9)
        '3h 1m'
        >>> format_age(26 * 3600 * 10**9)
        '1d 2h'
        >>> format_age(None)
        '0s'
    """
    if nanoseconds is None or nanoseconds < 0:
        return "0s"

    seconds = nanoseconds // NANOSECONDS_PER_SECOND
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_time(value: str | datetime | None) -> str:
    """Format a timestamp for display in UTC.

    Strings that are not valid ISO-8601 are returned unchanged, since the
    start time is reported by the pod and passed through as-is.

    Examples:
        >>> format_time("2024-05-01T12:30:00Z")
        '2024-05-01 12:30:00 UTC'
        >>> format_time("not a date")
        'not a date'
        >>> format_time(None)
        ''
    """
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return value
    else:
        parsed = value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def clock_time(value: datetime | None) -> str:
    """Format a datetime as wall clock time ("15:04:05")."""
    if value is None:
        return ""
    return value.strftime("%H:%M:%S")


class TemplateEnvironmentWrapper:
    """Wrapper to make Jinja2 Environment work with FastAPI's TemplateResponse.

    FastAPI's Jinja2Templates expects a specific interface. This wrapper
    provides that interface while using our configured Environment.
    """

    def __init__(self, env: Environment) -> None:
        self._env = env

    async def template_response(
        self,
        *,
        request: object,
        name: str,
        context: dict[str, Any] | None = None,
    ) -> HTMLResponse:
        """Asynchronously render a template and return an HTML response.

        Must be awaited: the Environment is created with ``enable_async=True``.

        Args:
            request: The incoming HTTP request.
            name: The template name to render.
            context: Template context variables.

        Returns:
            An HTMLResponse with the rendered template.
        """
        template = self._env.get_template(name)
        context = context or {}
        context["request"] = request
        content = await template.render_async(**context)
        return HTMLResponse(content=content)

    TemplateResponse = template_response


def create_template_environment(
    templates_dir: Path,
    instance_port: int = DEFAULT_INSTANCE_PORT,
) -> Environment:
    """Create the Jinja2 environment used by the dashboard.

    Autoescaping is enabled for .html templates, so pod names, errors and
    other values reported by the cluster or by pods are always escaped.
    """
    template_env = Environment(
        loader=FileSystemLoader(str(templates_dir)),
        autoescape=select_autoescape(["html", "xml"]),
        enable_async=True,
    )
    template_env.filters["format_age"] = format_age
    template_env.filters["format_time"] = format_time
    template_env.filters["clock_time"] = clock_time
    template_env.globals["probe_action_url"] = partial(probe_action_url, port=instance_port)
    template_env.globals["pod_url"] = partial(pod_url, port=instance_port)
    return template_env


def create_app(
    reader: SnapshotReader,
    forwarder: ActionForwarder,
    *,
    reconciler: Reconciler | None = None,
    build: BuildInfo | None = None,
    label_selector: str = "",
    instance_port: int = DEFAULT_INSTANCE_PORT,
    templates_dir: Path | None = None,
) -> FastAPI:
    """Create and configure the FastAPI dashboard application.

    Args:
        reader: Read-only view of the state store.
        forwarder: Relays probe toggles to pods.
        reconciler: Reconciler whose progress drives /health/ready. When
            omitted, readiness is reported as soon as the app is up.
        build: Build metadata shown in the banner.
        label_selector: Selector named in the empty-state message.
        instance_port: Port the pods serve their API on.
        templates_dir: Optional custom templates directory. Defaults to
            the templates/ directory within this module.

    Returns:
        A configured FastAPI application ready to serve the dashboard.
    """
    from probe_monitor import __version__

    app = FastAPI(
        title="Probe Monitor Dashboard",
        description="Live view of pod probe state with probe toggles",
        version=__version__,
    )

    if templates_dir is None:
        templates_dir = Path(__file__).parent / "templates"

    template_env = create_template_environment(templates_dir, instance_port)
    app.state.templates = TemplateEnvironmentWrapper(template_env)

    dashboard_routes = create_routes(
        reader,
        forwarder,
        reconciler=reconciler,
        build=build,
        label_selector=label_selector,
    )
    app.include_router(dashboard_routes)

    return app


__all__ = [
    "TemplateEnvironmentWrapper",
    "clock_time",
    "create_app",
    "create_template_environment",
    "format_age",
    "format_time",
]
