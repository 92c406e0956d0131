"""Core application runner for Probe Monitor.

This module provides the main application runner that coordinates:
- Reconciler lifecycle
- Dashboard server lifecycle
- Single-cycle mode execution

It acts as the orchestration layer between bootstrap, the reconciler, the
dashboard server and shutdown handling. Unlike the reconciler, the dashboard
is the monitor's only output in continuous mode, so failing to start it is
fatal.
"""

from __future__ import annotations

import json
import sys
import threading
from typing import TYPE_CHECKING, TextIO

from probe_monitor.bootstrap import BootstrapContext, bootstrap
from probe_monitor.cli import parse_args
from probe_monitor.dashboard_server import DashboardServer
from probe_monitor.logging import get_logger
from probe_monitor.shutdown import create_shutdown_handler

if TYPE_CHECKING:
    import argparse

logger = get_logger(__name__)


def start_dashboard(
    context: BootstrapContext,
    stop_event: threading.Event | None = None,
) -> DashboardServer | None:
    """Create the dashboard application and start serving it.

    Args:
        context: Bootstrap context with configuration and container.
        stop_event: Shutdown signal; the server stops by itself once it is set.

    Returns:
        DashboardServer if started successfully, None otherwise.
    """
    config = context.config
    container = context.container
    try:
        from probe_monitor.dashboard import create_app

        dashboard_app = create_app(
            container.reader(),
            container.forwarder(),
            reconciler=container.reconciler(),
            build=config.build,
            label_selector=config.label_selector,
            instance_port=config.instance_port,
        )
        dashboard_server = DashboardServer(
            host=config.host, port=config.port, stop_event=stop_event
        )
        dashboard_server.start(dashboard_app)
        return dashboard_server
    except (OSError, RuntimeError) as e:
        logger.error(
            "Failed to start server: %s",
            e,
            extra={"error_type": type(e).__name__},
        )
        return None


def run_once_mode(context: BootstrapContext, out: TextIO | None = None) -> int:
    """Run a single reconciliation cycle and print the snapshot as JSON.

    Args:
        context: Bootstrap context with configuration and container.
        out: Stream to write the snapshot to. Defaults to stdout.

    Returns:
        Exit code: 0 if the cycle completed, 1 if discovery failed.
    """
    logger.info("Running single reconciliation cycle (--once mode)")
    reconciler = context.container.reconciler()
    result = reconciler.run_once()
    if not result.succeeded:
        logger.error("Cycle failed: %s", result.error)
        return 1

    stream = out if out is not None else sys.stdout
    json.dump(context.container.reader().as_mapping(), stream, indent=2, sort_keys=True)
    stream.write("\n")
    logger.info(
        "Completed: %s pods, %s fetched, %s failed",
        result.discovered,
        result.fetched,
        result.failed,
    )
    return 0


def run_continuous_mode(context: BootstrapContext) -> int:
    """Run the reconciler and the dashboard until a shutdown signal arrives.

    Args:
        context: Bootstrap context with configuration and container.

    Returns:
        Exit code: 0 on graceful shutdown, 1 if the dashboard failed to start.
    """
    config = context.config
    reconciler = context.container.reconciler()
    shutdown_handler = create_shutdown_handler()

    reconciler.start()

    # Give the reconciler a moment to collect initial data
    if config.initial_delay > 0 and shutdown_handler.wait(config.initial_delay):
        reconciler.stop()
        return 0

    dashboard_server = start_dashboard(context, shutdown_handler.event)
    if dashboard_server is None:
        reconciler.stop()
        return 1

    try:
        shutdown_handler.wait()
    finally:
        dashboard_server.stop()
        reconciler.stop()

    logger.info("Probe Monitor shutdown complete")
    return 0


def run_application(parsed: argparse.Namespace, context: BootstrapContext) -> int:
    """Run the application in the mode selected on the command line.

    The probe client's pooled connections are released on exit.

    Args:
        parsed: Parsed command-line arguments.
        context: Bootstrap context with all dependencies.

    Returns:
        Exit code for the application.
    """
    try:
        if parsed.once:
            return run_once_mode(context)
        return run_continuous_mode(context)
    finally:
        context.container.clients.probe_client().close()


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    This is the primary entry point that:
    1. Parses command-line arguments
    2. Bootstraps dependencies
    3. Runs the application

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)

    context = bootstrap(parsed)
    if context is None:
        # Bootstrap failed (logged internally)
        return 1

    return run_application(parsed, context)


__all__ = [
    "main",
    "run_application",
    "run_continuous_mode",
    "run_once_mode",
    "start_dashboard",
]


if __name__ == "__main__":
    sys.exit(main())
