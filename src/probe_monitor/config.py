"""Configuration loading from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Valid log levels
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Port validation bounds
MIN_PORT = 1
MAX_PORT = 65535

DEFAULT_PORT = 8090
DEFAULT_INSTANCE_PORT = 8080
DEFAULT_LABEL_SELECTOR = "app=probe-demo"


@dataclass(frozen=True)
class BuildInfo:
    """Build metadata shown in the dashboard banner and logged at startup."""

    version: str = "dev"
    git_commit: str = "unknown"
    build_time: str = "unknown"


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment.

    This dataclass is frozen (immutable) to prevent accidental modification
    after creation.
    """

    # Dashboard server
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT

    # Reconciliation
    poll_interval: float = 5.0  # seconds between cycles
    label_selector: str = DEFAULT_LABEL_SELECTOR
    namespace: str = ""  # empty = all namespaces
    discovery_timeout: float = 10.0  # seconds, per Kubernetes API request
    fetch_workers: int = 1  # parallel status fetches per cycle; 1 = sequential
    initial_delay: float = 2.0  # seconds to wait for first data before serving

    # Remote pod endpoints
    instance_port: int = DEFAULT_INSTANCE_PORT
    request_timeout: float = 3.0  # seconds, for status fetches and proxied actions

    # Proxy
    # When True, /api/proxy only relays to addresses of currently known pods
    proxy_restrict_targets: bool = False
    # Minimum seconds between two relays to the same URL; 0 (default) disables
    proxy_cooldown_seconds: float = 0.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    diagnostic_tags: str = ""

    # Build metadata
    build: BuildInfo = field(default_factory=BuildInfo)


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed positive integer, or the default if invalid.

    Logs a warning if the value is invalid.
    """
    try:
        parsed = int(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %d is not positive, using default %d",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_port(value: str, name: str, default: int) -> int:
    """Parse a string as a valid TCP port number with range validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed port number (MIN_PORT-MAX_PORT), or the default if invalid.

    Logs a warning if the value is invalid or out of range.
    """
    try:
        parsed = int(value)
        if parsed < MIN_PORT or parsed > MAX_PORT:
            logging.warning(
                "Invalid %s: %d is not a valid port (must be %d-%d), using default %d",
                name,
                parsed,
                MIN_PORT,
                MAX_PORT,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_positive_float(value: str, name: str, default: float) -> float:
    """Parse a string as a strictly positive float with validation.

    Logs a warning and returns the default if the value is invalid.
    """
    try:
        parsed = float(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %f is not positive, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _parse_non_negative_float(value: str, name: str, default: float) -> float:
    """Parse a string as a non-negative float with validation.

    Logs a warning and returns the default if the value is invalid.
    """
    try:
        parsed = float(value)
        if parsed < 0:
            logging.warning(
                "Invalid %s: %f is negative, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _validate_log_level(value: str, default: str = "INFO") -> str:
    """Validate and normalize a log level string.

    Args:
        value: The log level string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated log level (uppercase), or the default if invalid.
    """
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid PROBE_MONITOR_LOG_LEVEL: '%s' is not valid, using default '%s'. "
            "Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def _parse_bool(value: str) -> bool:
    """Parse a string as a boolean.

    Returns:
        True if value is "true", "1", or "yes" (case-insensitive), False otherwise.
    """
    return value.lower() in ("true", "1", "yes")


def _validate_label_selector(value: str, default: str = DEFAULT_LABEL_SELECTOR) -> str:
    """Reject an empty label selector, which would match every pod in the cluster."""
    value = value.strip()
    if not value:
        logging.warning(
            "Invalid PROBE_MONITOR_LABEL_SELECTOR: empty selector, using default '%s'",
            default,
        )
        return default
    return value


def load_config(env_file: Path | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current directory.

    Returns:
        Config object with loaded values.

    Invalid values are logged and replaced by their defaults.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    port = _parse_port(os.getenv("PORT", str(DEFAULT_PORT)), "PORT", DEFAULT_PORT)

    poll_interval = _parse_positive_float(
        os.getenv("PROBE_MONITOR_POLL_INTERVAL", "5"),
        "PROBE_MONITOR_POLL_INTERVAL",
        5.0,
    )

    label_selector = _validate_label_selector(
        os.getenv("PROBE_MONITOR_LABEL_SELECTOR", DEFAULT_LABEL_SELECTOR),
    )

    discovery_timeout = _parse_positive_float(
        os.getenv("PROBE_MONITOR_DISCOVERY_TIMEOUT", "10.0"),
        "PROBE_MONITOR_DISCOVERY_TIMEOUT",
        10.0,
    )

    fetch_workers = _parse_positive_int(
        os.getenv("PROBE_MONITOR_FETCH_WORKERS", "1"),
        "PROBE_MONITOR_FETCH_WORKERS",
        1,
    )

    initial_delay = _parse_non_negative_float(
        os.getenv("PROBE_MONITOR_INITIAL_DELAY", "2.0"),
        "PROBE_MONITOR_INITIAL_DELAY",
        2.0,
    )

    instance_port = _parse_port(
        os.getenv("PROBE_MONITOR_INSTANCE_PORT", str(DEFAULT_INSTANCE_PORT)),
        "PROBE_MONITOR_INSTANCE_PORT",
        DEFAULT_INSTANCE_PORT,
    )

    request_timeout = _parse_positive_float(
        os.getenv("PROBE_MONITOR_REQUEST_TIMEOUT", "3.0"),
        "PROBE_MONITOR_REQUEST_TIMEOUT",
        3.0,
    )

    proxy_cooldown_seconds = _parse_non_negative_float(
        os.getenv("PROBE_MONITOR_PROXY_COOLDOWN", "0"),
        "PROBE_MONITOR_PROXY_COOLDOWN",
        0.0,
    )

    log_level = _validate_log_level(os.getenv("PROBE_MONITOR_LOG_LEVEL", "INFO"))

    build = BuildInfo(
        version=os.getenv("PROBE_MONITOR_VERSION", "dev"),
        git_commit=os.getenv("PROBE_MONITOR_GIT_COMMIT", "unknown"),
        build_time=os.getenv("PROBE_MONITOR_BUILD_TIME", "unknown"),
    )

    return Config(
        host=os.getenv("PROBE_MONITOR_HOST", "0.0.0.0"),
        port=port,
        poll_interval=poll_interval,
        label_selector=label_selector,
        namespace=os.getenv("PROBE_MONITOR_NAMESPACE", "").strip(),
        discovery_timeout=discovery_timeout,
        fetch_workers=fetch_workers,
        initial_delay=initial_delay,
        instance_port=instance_port,
        request_timeout=request_timeout,
        proxy_restrict_targets=_parse_bool(os.getenv("PROBE_MONITOR_PROXY_RESTRICT", "")),
        proxy_cooldown_seconds=proxy_cooldown_seconds,
        log_level=log_level,
        log_json=_parse_bool(os.getenv("PROBE_MONITOR_LOG_JSON", "")),
        diagnostic_tags=os.getenv("PROBE_MONITOR_DIAGNOSTIC_TAGS", ""),
        build=build,
    )


__all__ = ["BuildInfo", "Config", "load_config"]
