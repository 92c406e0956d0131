"""Command-line interface argument parsing for Probe Monitor.

This module provides the CLI argument parser that handles:
- Single-cycle mode (--once)
- Dashboard port and reconciliation interval overrides
- Label selector and namespace overrides
- Log level override
- Environment file specification
"""

from __future__ import annotations

import argparse
from pathlib import Path


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments to parse. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace with the following attributes:
        - once: Whether to run a single cycle, print the snapshot and exit
        - port: Dashboard port
        - interval: Reconciliation interval in seconds
        - selector: Label selector for pod discovery
        - namespace: Namespace to restrict discovery to
        - log_level: Logging level
        - env_file: Path to .env file
    """
    parser = argparse.ArgumentParser(
        prog="probe-monitor",
        description="Probe Monitor - live dashboard of Kubernetes pod probe state",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation cycle, print the snapshot as JSON and exit",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Dashboard port (overrides PORT)",
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Reconciliation interval in seconds (overrides PROBE_MONITOR_POLL_INTERVAL)",
    )

    parser.add_argument(
        "--selector",
        default=None,
        help="Pod label selector (overrides PROBE_MONITOR_LABEL_SELECTOR)",
    )

    parser.add_argument(
        "--namespace",
        default=None,
        help="Namespace to watch (overrides PROBE_MONITOR_NAMESPACE, default: all)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides PROBE_MONITOR_LOG_LEVEL)",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
