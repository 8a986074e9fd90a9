"""Monitor configuration.

``HealthMonitorConfig`` is what ``HealthMonitor.configure()`` accepts. The
caller supplies the callbacks; scalar settings may come from code or from
the environment via :func:`load_settings`.

Environment variables read by ``load_settings``:
- HEALTH_TRACKER_REGISTER_KEY: Shared secret gating dynamic registration
- HEALTH_TRACKER_CHECK_INTERVAL_MS: Interval between ticks in ms (default: 60000)
- HEALTH_TRACKER_FAILURES_BEFORE_ESCALATE: Failures before escalating (default: 5)
- HEALTH_TRACKER_PROBE_TIMEOUT: Probe timeout in seconds (default: 5.0)
- HEALTH_TRACKER_LOG_LEVEL: Log level (default: INFO)
- HEALTH_TRACKER_LOG_JSON: Emit JSON logs (default: false)

Usage:
    settings = load_settings()
    setup_logging_from_settings(settings)
    monitor.configure(
        HealthMonitorConfig.from_settings(
            settings,
            on_service_down=page_oncall,
            on_service_down_escalate=open_incident,
        )
    )
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from health_tracker.exceptions import ConfigurationError
from health_tracker.http_probe import DEFAULT_PROBE_TIMEOUT
from health_tracker.logging import get_logger, setup_logging
from health_tracker.types import ServiceStatus

logger = get_logger(__name__)

StatusCallback = Callable[[ServiceStatus], Any]

MIN_CHECK_INTERVAL_MILLIS = 1000
DEFAULT_CHECK_INTERVAL_MILLIS = 60_000
DEFAULT_FAILURES_BEFORE_ESCALATE = 5

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _noop(status: ServiceStatus) -> None:
    return None


@dataclass(frozen=True)
class HealthMonitorConfig:
    """Configuration accepted by ``HealthMonitor.configure()``.

    Required fields default to None so that ``normalized()`` can report
    exactly which one is missing.

    Attributes:
        register_key: Shared secret that registration requests must present.
        on_service_down: Called with the snapshot on each failure below the
            escalation threshold.
        on_service_down_escalate: Called once per failure episode when the
            failure count reaches ``failures_before_escalate``.
        on_service_ok: Called with the snapshot on every success.
        check_interval_millis: Milliseconds between ticks. Clamped up to
            ``MIN_CHECK_INTERVAL_MILLIS``.
        failures_before_escalate: Consecutive failures that trigger escalation.
        probe_timeout: Timeout in seconds for one probe.
    """

    register_key: str | None = None
    on_service_down: StatusCallback | None = None
    on_service_down_escalate: StatusCallback | None = None
    on_service_ok: StatusCallback | None = None
    check_interval_millis: int | None = None
    failures_before_escalate: int | None = None
    probe_timeout: float | None = None

    @property
    def check_interval(self) -> float:
        """Tick interval in seconds."""
        return (self.check_interval_millis or DEFAULT_CHECK_INTERVAL_MILLIS) / 1000

    def normalized(self) -> HealthMonitorConfig:
        """Validate required fields and fill in defaults.

        Returns:
            A new config with every field populated.

        Raises:
            ConfigurationError: If ``register_key``, ``on_service_down`` or
                ``on_service_down_escalate`` is missing, ``register_key`` is not a
                string, or a supplied callback is not callable.
        """
        if not self.register_key:
            raise ConfigurationError("register_key is mandatory")
        if not isinstance(self.register_key, str):
            raise ConfigurationError(
                f"register_key must be a string, got {type(self.register_key).__name__}"
            )
        if self.on_service_down is None:
            raise ConfigurationError("on_service_down callback is mandatory")
        if self.on_service_down_escalate is None:
            raise ConfigurationError("on_service_down_escalate callback is mandatory")

        for field_name in ("on_service_down", "on_service_down_escalate", "on_service_ok"):
            callback = getattr(self, field_name)
            if callback is not None and not callable(callback):
                raise ConfigurationError(
                    f"{field_name} must be callable, got {type(callback).__name__}"
                )

        interval = self.check_interval_millis
        if not interval:
            interval = DEFAULT_CHECK_INTERVAL_MILLIS
        elif interval < MIN_CHECK_INTERVAL_MILLIS:
            logger.warning(
                "check_interval_millis %d is below the minimum, using %d",
                interval,
                MIN_CHECK_INTERVAL_MILLIS,
            )
            interval = MIN_CHECK_INTERVAL_MILLIS

        failures = self.failures_before_escalate
        if not failures or failures < 1:
            failures = DEFAULT_FAILURES_BEFORE_ESCALATE

        timeout = self.probe_timeout
        if timeout is None or timeout <= 0:
            timeout = DEFAULT_PROBE_TIMEOUT

        return replace(
            self,
            on_service_ok=self.on_service_ok or _noop,
            check_interval_millis=interval,
            failures_before_escalate=failures,
            probe_timeout=timeout,
        )

    @classmethod
    def from_settings(
        cls,
        settings: MonitorSettings,
        *,
        on_service_down: StatusCallback | None = None,
        on_service_down_escalate: StatusCallback | None = None,
        on_service_ok: StatusCallback | None = None,
    ) -> HealthMonitorConfig:
        """Combine environment-loaded settings with caller callbacks.

        Args:
            settings: Scalar settings, typically from ``load_settings()``.
            on_service_down: Failure callback.
            on_service_down_escalate: Escalation callback.
            on_service_ok: Success callback.

        Returns:
            An un-normalized config; ``configure()`` validates it.
        """
        return cls(
            register_key=settings.register_key or None,
            on_service_down=on_service_down,
            on_service_down_escalate=on_service_down_escalate,
            on_service_ok=on_service_ok,
            check_interval_millis=settings.check_interval_millis,
            failures_before_escalate=settings.failures_before_escalate,
            probe_timeout=settings.probe_timeout,
        )


@dataclass(frozen=True)
class MonitorSettings:
    """Scalar monitor settings loaded from the environment."""

    register_key: str = ""
    check_interval_millis: int = DEFAULT_CHECK_INTERVAL_MILLIS
    failures_before_escalate: int = DEFAULT_FAILURES_BEFORE_ESCALATE
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    log_level: str = "INFO"
    log_json: bool = False


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer, logging and defaulting on bad input."""
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


def _parse_positive_float(value: str, name: str, default: float) -> float:
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


def _validate_log_level(value: str, default: str = "INFO") -> str:
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid HEALTH_TRACKER_LOG_LEVEL: '%s' is not valid, using default '%s'. Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def _parse_bool(value: str) -> bool:
    """Return True if value is "true", "1", or "yes" (case-insensitive)."""
    return value.lower() in ("true", "1", "yes")


def load_settings(env_file: Path | None = None) -> MonitorSettings:
    """Load monitor settings from environment variables.

    Args:
        env_file: Optional path to a .env file. If not provided, looks for
            .env in the current directory.

    Returns:
        MonitorSettings with validated values. Invalid values are replaced by
        defaults and logged.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    return MonitorSettings(
        register_key=os.getenv("HEALTH_TRACKER_REGISTER_KEY", ""),
        check_interval_millis=_parse_positive_int(
            os.getenv("HEALTH_TRACKER_CHECK_INTERVAL_MS", str(DEFAULT_CHECK_INTERVAL_MILLIS)),
            "HEALTH_TRACKER_CHECK_INTERVAL_MS",
            DEFAULT_CHECK_INTERVAL_MILLIS,
        ),
        failures_before_escalate=_parse_positive_int(
            os.getenv(
                "HEALTH_TRACKER_FAILURES_BEFORE_ESCALATE", str(DEFAULT_FAILURES_BEFORE_ESCALATE)
            ),
            "HEALTH_TRACKER_FAILURES_BEFORE_ESCALATE",
            DEFAULT_FAILURES_BEFORE_ESCALATE,
        ),
        probe_timeout=_parse_positive_float(
            os.getenv("HEALTH_TRACKER_PROBE_TIMEOUT", str(DEFAULT_PROBE_TIMEOUT)),
            "HEALTH_TRACKER_PROBE_TIMEOUT",
            DEFAULT_PROBE_TIMEOUT,
        ),
        log_level=_validate_log_level(os.getenv("HEALTH_TRACKER_LOG_LEVEL", "INFO")),
        log_json=_parse_bool(os.getenv("HEALTH_TRACKER_LOG_JSON", "")),
    )


def setup_logging_from_settings(settings: MonitorSettings, replace_handlers: bool = True) -> None:
    """Apply the log level and format loaded by :func:`load_settings`.

    Args:
        settings: Settings carrying ``log_level`` and ``log_json``.
        replace_handlers: Passed through to ``setup_logging``.
    """
    setup_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        replace_handlers=replace_handlers,
    )
