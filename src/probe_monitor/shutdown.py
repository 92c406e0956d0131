"""Graceful shutdown handling for Probe Monitor.

SIGINT and SIGTERM set a ``threading.Event`` that the main thread waits on.
The reconciler and the dashboard server are then stopped in order by the
application runner.
"""

from __future__ import annotations

import signal
import threading
from types import FrameType

from probe_monitor.logging import get_logger

logger = get_logger(__name__)


class ShutdownHandler:
    """Coordinates shutdown requests from signals and from code."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._event.is_set()

    @property
    def event(self) -> threading.Event:
        """The cancellation signal set on shutdown."""
        return self._event

    def request_shutdown(self) -> None:
        """Request graceful shutdown.

        Repeated requests are ignored after the first one.
        """
        if self._event.is_set():
            return
        logger.info("Shutdown requested")
        self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown is requested or the timeout expires.

        Returns:
            True if shutdown was requested.
        """
        return self._event.wait(timeout)

    def handle_signal(self, signum: int, frame: FrameType | None) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM).

        Args:
            signum: The signal number received.
            frame: The current stack frame (unused).
        """
        signal_name = signal.Signals(signum).name
        logger.info("Received %s, initiating graceful shutdown...", signal_name)
        self.request_shutdown()

    def install_signal_handlers(self) -> None:
        """Install signal handlers for SIGINT and SIGTERM.

        Must be called from the main thread.
        """
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)
        logger.debug("Signal handlers installed for SIGINT and SIGTERM")


def create_shutdown_handler() -> ShutdownHandler:
    """Create a ShutdownHandler with SIGINT and SIGTERM handlers installed."""
    handler = ShutdownHandler()
    handler.install_signal_handlers()
    return handler


__all__ = [
    "ShutdownHandler",
    "create_shutdown_handler",
]
