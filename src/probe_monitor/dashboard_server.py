"""Serving the dashboard with uvicorn from a background thread.

The listening socket is bound in the calling thread before uvicorn starts,
so a port that is already taken surfaces as an ``OSError`` from ``start``
(uvicorn itself would only log the error and ``sys.exit`` inside the server
thread). The server watches the shared shutdown event and stops on its own
once it is set.
"""

from __future__ import annotations

import socket
import threading
import time
from typing import TYPE_CHECKING

import uvicorn

from probe_monitor.logging import get_logger
from probe_monitor.probe_client import format_host

if TYPE_CHECKING:
    from starlette.types import ASGIApp

logger = get_logger(__name__)

STARTUP_TIMEOUT_SECONDS = 5.0
SHUTDOWN_TIMEOUT_SECONDS = 5.0


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a TCP socket for the dashboard.

    Args:
        host: Address to bind; IPv6 addresses are accepted without brackets.
        port: Port to bind; 0 picks a free port.

    Returns:
        The bound (not yet listening) socket.

    Raises:
        OSError: If the address cannot be bound, e.g. the port is in use.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    return sock


class _EventStoppedServer(uvicorn.Server):
    """uvicorn server that also exits once ``stop_event`` is set."""

    def __init__(self, config: uvicorn.Config, stop_event: threading.Event) -> None:
        super().__init__(config)
        self.stop_event = stop_event

    async def on_tick(self, counter: int) -> bool:
        if self.stop_event.is_set():
            return True
        return await super().on_tick(counter)


class DashboardServer:
    """Runs the dashboard app until the shutdown event is set.

    Args:
        host: Address to listen on.
        port: Port to listen on; 0 picks a free port (see ``bound_port``).
        stop_event: Shutdown signal shared with the rest of the application.
            A private event is used when omitted.
    """

    def __init__(
        self,
        host: str,
        port: int,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self._server: _EventStoppedServer | None = None
        self._socket: socket.socket | None = None
        self._bound_port: int | None = None
        self._thread: threading.Thread | None = None
        self._exit_reason: str | None = None

    @property
    def bound_port(self) -> int | None:
        """Port actually bound, or None before ``start``."""
        return self._bound_port

    @property
    def is_running(self) -> bool:
        return (
            self._server is not None
            and self._server.started
            and self._thread is not None
            and self._thread.is_alive()
        )

    def start(self, app: ASGIApp) -> None:
        """Bind the socket and serve ``app`` from a background thread.

        Returns once uvicorn reports it is accepting connections.

        Raises:
            OSError: If the socket could not be bound.
            RuntimeError: If uvicorn exited or did not come up in time.
        """
        sock = bind_socket(self.host, self.port)
        config = uvicorn.Config(
            app=app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        server = _EventStoppedServer(config, self.stop_event)
        self._socket = sock
        self._bound_port = int(sock.getsockname()[1])
        self._server = server
        self._thread = threading.Thread(
            target=self._serve,
            args=(server, sock),
            name="dashboard-server",
            daemon=True,
        )
        self._thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT_SECONDS
        while not server.started:
            if not self._thread.is_alive():
                self._close_socket()
                raise RuntimeError(f"Dashboard server exited during startup: {self._exit_reason}")
            if time.monotonic() > deadline:
                self.stop()
                raise RuntimeError(
                    f"Dashboard server did not start within {STARTUP_TIMEOUT_SECONDS}s"
                )
            time.sleep(0.05)

        logger.info(
            "Serving dashboard on http://%s:%s", format_host(self.host), self.bound_port
        )

    def _serve(self, server: uvicorn.Server, sock: socket.socket) -> None:
        try:
            server.run(sockets=[sock])
        except SystemExit as e:
            # uvicorn exits on startup failures after logging them
            self._exit_reason = f"uvicorn exited with status {e.code}"
        except Exception as e:
            logger.exception(
                "Dashboard server crashed: %s", e, extra={"error_type": type(e).__name__}
            )
            self._exit_reason = str(e) or type(e).__name__
        else:
            self._exit_reason = "server stopped"

    def stop(self, timeout: float = SHUTDOWN_TIMEOUT_SECONDS) -> None:
        """Stop serving and wait for the server thread.

        Safe to call when the server never started or has already stopped.
        """
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Dashboard server thread did not stop within %ss", timeout)
        self._close_socket()

    def _close_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None


__all__ = ["DashboardServer", "bind_socket"]
