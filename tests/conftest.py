"""Shared pytest fixtures for health tracker tests.

``FakeHttpProbe`` scripts per-service probe outcomes so that monitor tests
can drive exact success/failure sequences without any network access.
``GatedHttpProbe`` holds every probe until released, for tests that need a
check to stay in flight. ``CallbackRecorder`` captures callback invocations
in order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from health_tracker.config import HealthMonitorConfig
from health_tracker.exceptions import TransportError
from health_tracker.http_probe import build_probe_url
from health_tracker.monitor import HealthMonitor
from health_tracker.types import ServiceStatus

REGISTER_KEY = "test-register-key"
FIXED_NOW = 1_700_000_000.0

# Outcome values accepted by FakeHttpProbe.script()
FAIL = 503
OK = 200


class FakeHttpProbe:
    """HttpProbe double returning scripted status codes or raising errors."""

    def __init__(self, default: int = OK) -> None:
        self.default = default
        self.outcomes: dict[str, list[int | BaseException]] = {}
        self.calls: list[str] = []

    def script(self, host: str, *outcomes: int | BaseException) -> None:
        """Queue outcomes for the given host; the default applies once drained."""
        self.outcomes.setdefault(build_probe_url(host), []).extend(outcomes)

    async def probe(self, url: str) -> int:
        self.calls.append(url)
        queue = self.outcomes.get(url)
        outcome = queue.pop(0) if queue else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class GatedHttpProbe:
    """HttpProbe double that blocks every probe until ``release`` is set."""

    def __init__(self, status_code: int = OK) -> None:
        self.status_code = status_code
        self.release = asyncio.Event()
        self.calls: list[str] = []

    async def probe(self, url: str) -> int:
        self.calls.append(url)
        await self.release.wait()
        return self.status_code


class CallbackRecorder:
    """Records callback invocations as ``(kind, status)`` tuples in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, ServiceStatus]] = []

    def ok(self, status: ServiceStatus) -> None:
        self.events.append(("ok", status))

    def down(self, status: ServiceStatus) -> None:
        self.events.append(("down", status))

    def escalate(self, status: ServiceStatus) -> None:
        self.events.append(("escalate", status))

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]

    def kinds_for(self, service_id: int) -> list[str]:
        return [kind for kind, status in self.events if status.id == service_id]

    def clear(self) -> None:
        self.events.clear()


def transport_error(host: str = "http://svc", message: str = "Connection refused") -> TransportError:
    return TransportError(build_probe_url(host), message)


def make_config(recorder: CallbackRecorder, **overrides: Any) -> HealthMonitorConfig:
    """Create a fully populated HealthMonitorConfig wired to ``recorder``."""
    values: dict[str, Any] = {
        "register_key": REGISTER_KEY,
        "on_service_ok": recorder.ok,
        "on_service_down": recorder.down,
        "on_service_down_escalate": recorder.escalate,
        "failures_before_escalate": 5,
    }
    values.update(overrides)
    return HealthMonitorConfig(**values)


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
def fake_probe() -> FakeHttpProbe:
    return FakeHttpProbe()


@pytest.fixture
def make_monitor(
    fake_probe: FakeHttpProbe, recorder: CallbackRecorder
) -> Callable[..., HealthMonitor]:
    """Factory for configured, not-started monitors using ``fake_probe``.

    Keyword arguments override HealthMonitorConfig fields.
    """

    def factory(**overrides: Any) -> HealthMonitor:
        monitor = HealthMonitor(http_probe=fake_probe, time_func=lambda: FIXED_NOW)
        monitor.configure(make_config(recorder, **overrides), autostart=False)
        return monitor

    return factory
