"""Dashboard module for Probe Monitor.

This module provides the web surface of the monitor: a FastAPI application
factory, route handlers and request models. The dashboard only reads state
through a SnapshotReader and only changes pods through an ActionForwarder,
so it never touches the state store directly.
"""

from probe_monitor.dashboard.app import create_app

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "create_app",
]
