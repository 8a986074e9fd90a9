"""Health Tracker - in-process health-check monitor for dependent services."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("health-tracker")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from health_tracker.config import (
    HealthMonitorConfig,
    MonitorSettings,
    load_settings,
    setup_logging_from_settings,
)
from health_tracker.exceptions import (
    ConfigurationError,
    DuplicateServiceError,
    HealthTrackerError,
    RegistrationRejectedError,
    TransportError,
    ValidationError,
)
from health_tracker.http_probe import HttpProbe, HttpxProbe
from health_tracker.monitor import HealthMonitor
from health_tracker.service_probe import ServiceProbe
from health_tracker.types import (
    CheckResult,
    HealthState,
    ProbeStatus,
    ServiceDescriptor,
    ServiceStatus,
    TransitionKind,
)

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "CheckResult",
    "ConfigurationError",
    "DuplicateServiceError",
    "HealthMonitor",
    "HealthMonitorConfig",
    "HealthState",
    "HealthTrackerError",
    "HttpProbe",
    "HttpxProbe",
    "MonitorSettings",
    "ProbeStatus",
    "RegistrationRejectedError",
    "ServiceDescriptor",
    "ServiceProbe",
    "ServiceStatus",
    "TransitionKind",
    "TransportError",
    "ValidationError",
    "load_settings",
    "setup_logging_from_settings",
]
