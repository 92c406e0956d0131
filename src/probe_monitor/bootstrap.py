"""Bootstrap and dependency wiring for Probe Monitor.

This module provides the startup logic for the application:
- Configuration loading with CLI overrides
- Logging setup
- Kubernetes client initialization
- Container assembly

The bootstrap module acts as the composition root, wiring together all
dependencies before the application starts running.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from typing import Any

from probe_monitor.config import MAX_PORT, MIN_PORT, Config, load_config
from probe_monitor.container import MonitorContainer, create_container
from probe_monitor.errors import DiscoveryError
from probe_monitor.logging import get_logger, setup_logging

logger = get_logger(__name__)


class BootstrapContext:
    """Holds the configuration and the wired container.

    Attributes:
        config: Effective configuration (environment plus CLI overrides).
        container: Container providing the store, clients, reconciler,
            reader and forwarder.
    """

    def __init__(self, config: Config, container: MonitorContainer) -> None:
        self.config = config
        self.container = container


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI argument overrides to the configuration.

    Invalid override values are logged and ignored, like invalid
    environment values.

    Args:
        config: Base configuration loaded from environment.
        parsed: Parsed command-line arguments.

    Returns:
        New Config instance with CLI overrides applied.
    """
    overrides: dict[str, Any] = {}

    if parsed.port is not None:
        if MIN_PORT <= parsed.port <= MAX_PORT:
            overrides["port"] = parsed.port
        else:
            logger.warning("Ignoring invalid --port %s", parsed.port)
    if parsed.interval is not None:
        if parsed.interval > 0:
            overrides["poll_interval"] = parsed.interval
        else:
            logger.warning("Ignoring non-positive --interval %s", parsed.interval)
    if parsed.selector:
        overrides["label_selector"] = parsed.selector.strip()
    if parsed.namespace is not None:
        overrides["namespace"] = parsed.namespace.strip()
    if parsed.log_level:
        overrides["log_level"] = parsed.log_level

    if overrides:
        return replace(config, **overrides)
    return config


def bootstrap(parsed: argparse.Namespace) -> BootstrapContext | None:
    """Bootstrap the application with all dependencies.

    This is the main entry point for application initialization. It:
    1. Loads and configures settings
    2. Sets up logging
    3. Loads the Kubernetes configuration
    4. Builds the container

    Args:
        parsed: Parsed command-line arguments.

    Returns:
        BootstrapContext with all initialized dependencies, or None if
        initialization failed (e.g., no Kubernetes configuration found).
    """
    config = load_config(parsed.env_file)
    config = apply_cli_overrides(config, parsed)

    setup_logging(
        config.log_level,
        json_format=config.log_json,
        diagnostic_tags=config.diagnostic_tags,
    )

    logger.info(
        "Pod Monitor Dashboard %s (commit: %s, built: %s)",
        config.build.version,
        config.build.git_commit,
        config.build.build_time,
    )

    container = create_container(config)

    # Resolve the discovery client now so missing cluster credentials fail fast
    try:
        container.clients.discovery()
    except DiscoveryError as e:
        logger.error("Failed to create dashboard: %s", e)
        return None

    return BootstrapContext(config=config, container=container)


__all__ = [
    "BootstrapContext",
    "apply_cli_overrides",
    "bootstrap",
]
