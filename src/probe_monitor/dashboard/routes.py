"""Route handlers for the dashboard.

Endpoints:

- ``GET /``: HTML dashboard rendered from the current snapshot.
- ``GET /api/pods``: JSON snapshot keyed by pod name.
- ``POST /api/proxy``: relays a probe toggle to a pod and returns the pod's
  response unchanged. Other methods get 405 from the router.
- ``GET /health/live`` and ``GET /health/ready``: liveness and readiness of
  the monitor itself.

Snapshot reads take the state store's reader lock and run in a worker thread
through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, cast

from fastapi import APIRouter, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from probe_monitor.dashboard.models import LivenessResponse, ReadinessResponse
from probe_monitor.errors import RelayError, RequestError

if TYPE_CHECKING:
    from probe_monitor.config import BuildInfo
    from probe_monitor.forwarder import ActionForwarder
    from probe_monitor.reconciler import Reconciler
    from probe_monitor.snapshot import SnapshotReader

logger = logging.getLogger(__name__)


def create_routes(
    reader: SnapshotReader,
    forwarder: ActionForwarder,
    *,
    reconciler: Reconciler | None = None,
    build: BuildInfo | None = None,
    label_selector: str = "",
) -> APIRouter:
    """Create dashboard routes bound to the given collaborators.

    Args:
        reader: Read-only view of the state store.
        forwarder: Relays proxy requests to pods.
        reconciler: Optional reconciler consulted by the readiness probe.
        build: Optional build metadata for the banner.
        label_selector: Selector shown when no pods are found.

    Returns:
        An APIRouter with all dashboard routes configured.
    """
    from probe_monitor.config import BuildInfo as BuildInfoClass

    effective_build = build if build is not None else BuildInfoClass()

    dashboard_router = APIRouter()

    @dashboard_router.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        """Render the main dashboard page."""
        pods = await asyncio.to_thread(reader.for_display)
        logger.debug(
            "Rendering dashboard with %s pods (version %s, commit %s)",
            len(pods),
            effective_build.version,
            effective_build.git_commit,
        )
        templates = request.app.state.templates
        return cast(
            HTMLResponse,
            await templates.TemplateResponse(
                request=request,
                name="index.html",
                context={
                    "pods": pods,
                    "build": effective_build,
                    "label_selector": label_selector,
                },
            ),
        )

    @dashboard_router.get("/api/pods")
    async def api_pods() -> dict[str, dict[str, Any]]:
        """Return the current snapshot as JSON, keyed by pod name."""
        return await asyncio.to_thread(reader.as_mapping)

    @dashboard_router.post("/api/proxy")
    async def api_proxy(request: Request) -> Response:
        """Relay an action to a pod.

        The body must be ``{"url": ..., "method": ...}``. The pod's status code
        and body are returned unchanged.

        Returns:
            The relayed response, or a plain-text error:
            400 for a malformed body, 403 for a disallowed target (when target
            restriction is enabled), 429 while the target is cooling down,
            500 when the pod could not be reached.
        """
        body = await request.body()
        try:
            proxy_request = forwarder.parse_request(body)
            relayed = await forwarder.handle(proxy_request)
        except RequestError as e:
            return PlainTextResponse(str(e), status_code=e.status_code)
        except RelayError as e:
            return PlainTextResponse(str(e), status_code=500)

        return Response(
            content=relayed.body,
            status_code=relayed.status_code,
            media_type=relayed.content_type,
        )

    @dashboard_router.get("/health/live")
    async def health_live() -> LivenessResponse:
        """Liveness probe endpoint.

        Does not check the cluster or the pods.
        """
        return LivenessResponse()

    @dashboard_router.get("/health/ready")
    async def health_ready() -> JSONResponse:
        """Readiness probe endpoint.

        Ready once the reconciler has committed at least one cycle; until then
        the dashboard would show an empty pod list, so 503 is returned.

        Example response:
            {
                "ready": true,
                "state": "idle",
                "cycle_count": 12,
                "last_cycle_at": "2024-05-01T12:30:00Z",
                "last_cycle_duration_seconds": 0.042,
                "last_error": null,
                "pod_count": 3
            }
        """
        pod_count = len(await asyncio.to_thread(reader.current_snapshot))
        if reconciler is None:
            result = ReadinessResponse(
                ready=True, state="unmanaged", cycle_count=0, pod_count=pod_count
            )
        else:
            result = ReadinessResponse(
                ready=reconciler.has_completed_cycle,
                state=reconciler.state.value,
                cycle_count=reconciler.cycle_count,
                last_cycle_at=reconciler.last_cycle_at,
                last_cycle_duration_seconds=reconciler.last_cycle_duration,
                last_error=reconciler.last_error,
                pod_count=pod_count,
            )
        return JSONResponse(
            content=result.model_dump(mode="json"),
            status_code=200 if result.ready else 503,
        )

    return dashboard_router


__all__ = ["create_routes"]
