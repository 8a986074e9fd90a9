"""Shared status and transition types.

Usage:
    from health_tracker.types import ProbeStatus, ServiceDescriptor

    descriptor = ServiceDescriptor(name="billing", host="http://billing:8080")
    status = monitor.list_status()[0]
    if status.state is HealthState.UNHEALTHY_ESCALATED:
        ...
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from health_tracker.exceptions import ValidationError

_ALLOWED_SCHEMES = ("http://", "https://")


class ProbeStatus(StrEnum):
    """Outcome of the most recent completed probe.

    Values:
        UNKNOWN: No probe has completed yet ("unknown")
        OK: Last probe succeeded ("ok")
        ERROR: Last probe failed ("error")
    """

    UNKNOWN = "unknown"
    OK = "ok"
    ERROR = "error"


class HealthState(StrEnum):
    """Per-service state machine position, derived from a status snapshot."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNHEALTHY_ESCALATED = "unhealthy_escalated"


class TransitionKind(StrEnum):
    """Kind of transition produced by a single completed check."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class ServiceDescriptor:
    """A service to monitor, as supplied by the caller.

    Attributes:
        name: Display label used in logs and snapshots.
        host: Base URL of the service. Used as the uniqueness key.
    """

    name: str
    host: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ServiceDescriptor:
        """Build a descriptor from an untrusted mapping such as a request body.

        Args:
            data: Mapping expected to hold string ``name`` and ``host`` keys.

        Returns:
            The validated descriptor.

        Raises:
            ValidationError: If the mapping is malformed.
        """
        if not isinstance(data, Mapping):
            raise ValidationError(
                f"Service descriptor must be a mapping, got {type(data).__name__}"
            )

        fields: dict[str, str] = {}
        for key in ("name", "host"):
            value = data.get(key)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Service descriptor field '{key}' must be a non-empty string")
            fields[key] = value.strip()

        if not fields["host"].lower().startswith(_ALLOWED_SCHEMES):
            raise ValidationError(
                f"Service host '{fields['host']}' must start with http:// or https://"
            )

        return cls(name=fields["name"], host=fields["host"])


@dataclass(frozen=True)
class ServiceStatus:
    """Immutable snapshot of one monitored service.

    Attributes:
        id: Identifier assigned by the monitor at registration.
        name: Display label.
        host: Base URL of the service.
        status: Outcome of the last completed probe.
        consecutive_failures: Failures since the last success.
        last_success_time: Epoch seconds of the last success, if any.
        escalated_at: Epoch seconds at which the current failure episode
            escalated, or None if it has not.
    """

    id: int
    name: str
    host: str
    status: ProbeStatus
    consecutive_failures: int
    last_success_time: float | None
    escalated_at: float | None

    @property
    def state(self) -> HealthState:
        """Position of the service in the health state machine."""
        if self.status is ProbeStatus.UNKNOWN:
            return HealthState.UNKNOWN
        if self.status is ProbeStatus.OK:
            return HealthState.HEALTHY
        if self.escalated_at is not None:
            return HealthState.UNHEALTHY_ESCALATED
        return HealthState.UNHEALTHY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for dashboards and logging."""
        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "status": self.status.value,
            "consecutive_failures": self.consecutive_failures,
            "last_success_time": self.last_success_time,
            "escalated_at": self.escalated_at,
        }


@dataclass(frozen=True)
class CheckResult:
    """Transition produced by one ``ServiceProbe.check()`` call.

    Attributes:
        kind: SUCCESS or FAILURE.
        status: Snapshot taken right after the state update.
        error: Description of the failure, None on success.
    """

    kind: TransitionKind
    status: ServiceStatus
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.kind is TransitionKind.SUCCESS
