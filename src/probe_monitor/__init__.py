"""Probe Monitor - live dashboard of Kubernetes pod probe state."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("probe-monitor")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from probe_monitor.app import main

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "main",
]
