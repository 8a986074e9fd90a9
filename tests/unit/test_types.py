"""Tests for shared status and descriptor types."""

from __future__ import annotations

from dataclasses import FrozenInstanceError

import pytest

from health_tracker.exceptions import ValidationError
from health_tracker.types import (
    CheckResult,
    HealthState,
    ProbeStatus,
    ServiceDescriptor,
    ServiceStatus,
    TransitionKind,
)


def make_status(**overrides: object) -> ServiceStatus:
    values: dict[str, object] = {
        "id": 1,
        "name": "billing",
        "host": "http://billing",
        "status": ProbeStatus.ERROR,
        "consecutive_failures": 2,
        "last_success_time": 100.0,
        "escalated_at": None,
    }
    values.update(overrides)
    return ServiceStatus(**values)  # type: ignore[arg-type]


class TestServiceDescriptor:
    """Tests for ServiceDescriptor.from_dict()."""

    def test_from_dict(self) -> None:
        descriptor = ServiceDescriptor.from_dict(
            {"name": " billing ", "host": "https://billing.internal", "extra": 1}
        )
        assert descriptor == ServiceDescriptor(name="billing", host="https://billing.internal")

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"name": "billing"},
            {"host": "http://billing"},
            {"name": "", "host": "http://billing"},
            {"name": "billing", "host": "   "},
            {"name": 5, "host": "http://billing"},
            {"name": "billing", "host": "ftp://billing"},
            {"name": "billing", "host": "billing:8080"},
        ],
    )
    def test_from_dict_rejects_malformed(self, data: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            ServiceDescriptor.from_dict(data)

    def test_from_dict_rejects_non_mapping(self) -> None:
        with pytest.raises(ValidationError, match="mapping"):
            ServiceDescriptor.from_dict(["billing", "http://billing"])  # type: ignore[arg-type]

    def test_frozen(self) -> None:
        descriptor = ServiceDescriptor(name="billing", host="http://billing")
        with pytest.raises(FrozenInstanceError):
            descriptor.host = "http://other"  # type: ignore[misc]


class TestServiceStatus:
    """Tests for ServiceStatus state derivation and serialization."""

    @pytest.mark.parametrize(
        ("status", "escalated_at", "expected"),
        [
            (ProbeStatus.UNKNOWN, None, HealthState.UNKNOWN),
            (ProbeStatus.OK, None, HealthState.HEALTHY),
            (ProbeStatus.ERROR, None, HealthState.UNHEALTHY),
            (ProbeStatus.ERROR, 123.0, HealthState.UNHEALTHY_ESCALATED),
        ],
    )
    def test_state(
        self, status: ProbeStatus, escalated_at: float | None, expected: HealthState
    ) -> None:
        assert make_status(status=status, escalated_at=escalated_at).state is expected

    def test_to_dict(self) -> None:
        assert make_status(escalated_at=150.0).to_dict() == {
            "id": 1,
            "name": "billing",
            "host": "http://billing",
            "status": "error",
            "consecutive_failures": 2,
            "last_success_time": 100.0,
            "escalated_at": 150.0,
        }

    def test_check_result_succeeded(self) -> None:
        status = make_status()
        assert CheckResult(kind=TransitionKind.SUCCESS, status=status).succeeded is True
        assert CheckResult(kind=TransitionKind.FAILURE, status=status).succeeded is False

    def test_str_enums(self) -> None:
        assert ProbeStatus.OK == "ok"
        assert HealthState.UNHEALTHY_ESCALATED == "unhealthy_escalated"
