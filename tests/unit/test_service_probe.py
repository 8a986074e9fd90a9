"""Unit tests for the ServiceProbe state machine."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from health_tracker.service_probe import ServiceProbe
from health_tracker.types import HealthState, ProbeStatus, ServiceDescriptor, TransitionKind
from tests.conftest import FAIL, FIXED_NOW, OK, FakeHttpProbe, transport_error

HOST = "http://billing:8080"


def make_probe(http_probe: object, **kwargs: object) -> ServiceProbe:
    return ServiceProbe(
        7,
        ServiceDescriptor(name="billing", host=HOST),
        http_probe,  # type: ignore[arg-type]
        time_func=lambda: FIXED_NOW,
        **kwargs,  # type: ignore[arg-type]
    )


class HangingProbe:
    async def probe(self, url: str) -> int:
        await asyncio.Event().wait()
        return OK


class BrokenProbe:
    async def probe(self, url: str) -> int:
        raise KeyError("status")


class TestServiceProbeCheck:
    """Tests for ServiceProbe.check()."""

    @pytest.mark.asyncio
    async def test_probes_health_check_path(self, fake_probe: FakeHttpProbe) -> None:
        probe = ServiceProbe(1, ServiceDescriptor(name="x", host=HOST + "/"), fake_probe)
        await probe.check()
        assert fake_probe.calls == ["http://billing:8080/health-check"]

    @pytest.mark.asyncio
    async def test_success_path(self, fake_probe: FakeHttpProbe) -> None:
        probe = make_probe(fake_probe)

        result = await probe.check()

        assert result.kind is TransitionKind.SUCCESS
        assert result.succeeded is True
        assert result.error is None
        assert result.status.status is ProbeStatus.OK
        assert result.status.consecutive_failures == 0
        assert result.status.last_success_time == FIXED_NOW
        assert result.status == probe.snapshot()

    @pytest.mark.asyncio
    async def test_failure_status_increments(self, fake_probe: FakeHttpProbe) -> None:
        probe = make_probe(fake_probe)
        fake_probe.script(HOST, FAIL, 404)

        first = await probe.check()
        second = await probe.check()

        assert first.kind is TransitionKind.FAILURE
        assert first.error == "HTTP 503"
        assert second.error == "HTTP 404"
        assert second.status.consecutive_failures == 2
        assert second.status.status is ProbeStatus.ERROR
        assert second.status.last_success_time is None

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self, fake_probe: FakeHttpProbe) -> None:
        probe = make_probe(fake_probe)
        fake_probe.script(HOST, transport_error(HOST, "Connection refused"))

        result = await probe.check()

        assert result.kind is TransitionKind.FAILURE
        assert result.error == "Connection refused"
        assert result.status.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_probe_error_is_failure(self) -> None:
        probe = make_probe(BrokenProbe())

        result = await probe.check()

        assert result.kind is TransitionKind.FAILURE
        assert result.error is not None
        assert "KeyError" in result.error

    @pytest.mark.asyncio
    async def test_hung_probe_times_out_as_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("health_tracker.service_probe.TIMEOUT_BUFFER_SECONDS", 0.0)
        probe = make_probe(HangingProbe(), probe_timeout=0.05)

        result = await probe.check()

        assert result.kind is TransitionKind.FAILURE
        assert result.error is not None
        assert "did not complete" in result.error

    @pytest.mark.asyncio
    async def test_success_clears_escalation(self, fake_probe: FakeHttpProbe) -> None:
        probe = make_probe(fake_probe)
        fake_probe.script(HOST, FAIL, FAIL, OK)

        await probe.check()
        await probe.check()
        probe.escalate(MagicMock())
        assert probe.snapshot().state is HealthState.UNHEALTHY_ESCALATED

        result = await probe.check()

        assert result.status.escalated_at is None
        assert result.status.consecutive_failures == 0
        assert result.status.state is HealthState.HEALTHY
        assert probe.is_escalated is False

    @pytest.mark.asyncio
    async def test_logs_outcome_with_service_name(
        self, fake_probe: FakeHttpProbe, caplog: pytest.LogCaptureFixture
    ) -> None:
        probe = make_probe(fake_probe)
        fake_probe.script(HOST, OK, FAIL)

        with caplog.at_level(logging.INFO, logger="health_tracker"):
            await probe.check()
            await probe.check()

        records = [r for r in caplog.records if r.name == "health_tracker.service_probe"]
        assert [r.levelno for r in records] == [logging.INFO, logging.WARNING]
        assert all("billing" in r.getMessage() for r in records)
        assert records[0].service_id == 7  # type: ignore[attr-defined]
        assert records[1].outcome == "error"  # type: ignore[attr-defined]


class TestServiceProbeEscalate:
    """Tests for ServiceProbe.escalate()."""

    def test_initial_snapshot(self, fake_probe: FakeHttpProbe) -> None:
        status = make_probe(fake_probe).snapshot()
        assert status.status is ProbeStatus.UNKNOWN
        assert status.escalated_at is None
        assert status.id == 7

    def test_escalate_sets_timestamp_and_calls_back(self, fake_probe: FakeHttpProbe) -> None:
        probe = make_probe(fake_probe)
        callback = MagicMock(return_value="sent")

        returned = probe.escalate(callback)

        assert returned == "sent"
        callback.assert_called_once()
        (status,) = callback.call_args.args
        assert status.escalated_at == FIXED_NOW
        assert probe.snapshot().escalated_at == FIXED_NOW

    @pytest.mark.parametrize("callback", [None, "not-callable"])
    def test_escalate_without_callable_logs_error(
        self,
        fake_probe: FakeHttpProbe,
        caplog: pytest.LogCaptureFixture,
        callback: object,
    ) -> None:
        probe = make_probe(fake_probe)

        with caplog.at_level(logging.ERROR, logger="health_tracker"):
            returned = probe.escalate(callback)  # type: ignore[arg-type]

        assert returned is None
        assert probe.is_escalated is True
        assert any("No escalation callback" in r.getMessage() for r in caplog.records)
