"""Exception types for the health tracker.

Only setup-time problems are raised to callers. Routine operational
outcomes (a duplicate registration, a rejected register key, a malformed
request body) are returned as exception instances so the caller can map
them to a response without a try/except. Probe failures never surface as
exceptions at all; they are folded into the FAILURE transition.
"""

from __future__ import annotations


class HealthTrackerError(Exception):
    """Base class for all health tracker errors."""

    pass


class ConfigurationError(HealthTrackerError):
    """Raised when the monitor configuration is missing a required field.

    Example:
        >>> raise ConfigurationError("register_key is mandatory")
    """

    pass


class ValidationError(HealthTrackerError):
    """Raised when a service descriptor built from untrusted input is invalid."""

    pass


class DuplicateServiceError(HealthTrackerError):
    """Returned by ``add_service`` when the host is already registered."""

    def __init__(self, host: str, message: str | None = None) -> None:
        self.host = host
        super().__init__(message or f"Service {host} already added")


class RegistrationRejectedError(HealthTrackerError):
    """Returned when a registration request presents the wrong register key."""

    def __init__(self, message: str = "Wrong register key") -> None:
        super().__init__(message)


class TransportError(HealthTrackerError):
    """Raised by HTTP probe implementations when no response was received.

    Covers connection refusal, DNS failure, timeouts and malformed
    responses. The underlying client error is chained as ``__cause__``.
    """

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(message)


__all__ = [
    "ConfigurationError",
    "DuplicateServiceError",
    "HealthTrackerError",
    "RegistrationRejectedError",
    "TransportError",
    "ValidationError",
]
