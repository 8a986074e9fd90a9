"""Per-service health state machine.

A ``ServiceProbe`` owns the mutable health state of one monitored service.
Each ``check()`` performs one HTTP probe, applies the success or failure
path to that state and returns the resulting transition. The owning
``HealthMonitor`` decides which caller callback the transition triggers.

Success path: failures reset to 0, status OK, last success time set,
escalation cleared.
Failure path: failures incremented, status ERROR.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from typing import Any

from health_tracker.exceptions import TransportError
from health_tracker.http_probe import HttpProbe, build_probe_url, is_failure_status
from health_tracker.logging import get_logger
from health_tracker.types import (
    CheckResult,
    ProbeStatus,
    ServiceDescriptor,
    ServiceStatus,
    TransitionKind,
)

logger = get_logger(__name__)

# Added to the probe timeout for the outer asyncio.wait_for() so the HTTP
# client's own timeout fires first and reports the more specific error.
TIMEOUT_BUFFER_SECONDS = 1.0


class ServiceProbe:
    """Health state of a single registered service.

    Thread-safety contract:
        State updates and ``snapshot()`` are serialized by ``_lock`` so a
        snapshot taken from another thread never sees a half-applied
        transition. ``check()`` itself must not be run concurrently for the
        same probe; the monitor's in-flight guard enforces that.

    Attributes:
        id: Identifier assigned by the monitor.
        descriptor: The caller-supplied name and host.
    """

    def __init__(
        self,
        service_id: int,
        descriptor: ServiceDescriptor,
        http_probe: HttpProbe,
        probe_timeout: float | None = None,
        time_func: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the probe in the UNKNOWN state.

        Args:
            service_id: Positive identifier assigned by the monitor.
            descriptor: Name and host of the service.
            http_probe: Collaborator performing the HTTP request.
            probe_timeout: Request timeout in seconds. When set, the probe is
                additionally bounded by ``probe_timeout + TIMEOUT_BUFFER_SECONDS``.
            time_func: Optional callable returning epoch seconds. Defaults to
                ``time.time``.
        """
        self.id = service_id
        self.descriptor = descriptor
        self._http_probe = http_probe
        self._probe_timeout = probe_timeout
        self._time_func: Callable[[], float] = time_func or time.time
        self._lock = threading.Lock()
        self._logger = logger.with_context(
            service=descriptor.name, service_id=service_id, host=descriptor.host
        )

        self._status = ProbeStatus.UNKNOWN
        self._consecutive_failures = 0
        self._last_success_time: float | None = None
        self._escalated_at: float | None = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def host(self) -> str:
        return self.descriptor.host

    @property
    def url(self) -> str:
        """Health-check URL probed by ``check()``."""
        return build_probe_url(self.descriptor.host)

    @property
    def is_escalated(self) -> bool:
        with self._lock:
            return self._escalated_at is not None

    def snapshot(self) -> ServiceStatus:
        """Return the current state as an immutable value."""
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> ServiceStatus:
        return ServiceStatus(
            id=self.id,
            name=self.descriptor.name,
            host=self.descriptor.host,
            status=self._status,
            consecutive_failures=self._consecutive_failures,
            last_success_time=self._last_success_time,
            escalated_at=self._escalated_at,
        )

    async def check(self) -> CheckResult:
        """Probe the service once and apply the resulting transition.

        Never raises for probe failures: transport errors, timeouts and
        4xx/5xx responses all produce a FAILURE result. Cancellation
        propagates.

        Returns:
            The SUCCESS or FAILURE transition with a post-update snapshot.
        """
        url = self.url
        timeout = (
            self._probe_timeout + TIMEOUT_BUFFER_SECONDS
            if self._probe_timeout is not None
            else None
        )

        try:
            status_code = await asyncio.wait_for(self._http_probe.probe(url), timeout=timeout)
        except TimeoutError:
            return self._on_failure(f"Probe did not complete within {timeout}s")
        except TransportError as e:
            return self._on_failure(str(e))
        except Exception as e:
            # INTENTIONAL BROAD CATCH: a misbehaving probe collaborator is
            # treated like a transport error so the scheduler keeps running.
            return self._on_failure(f"Unexpected probe error: {type(e).__name__}: {e}")

        if is_failure_status(status_code):
            return self._on_failure(f"HTTP {status_code}")
        return self._on_success(status_code)

    def escalate(self, callback: Callable[[ServiceStatus], Any] | None) -> Any:
        """Mark the current failure episode as escalated and notify.

        Sets ``escalated_at`` to now, then calls ``callback`` with the
        updated snapshot. A missing or non-callable callback is logged as a
        configuration error and otherwise ignored.

        Only the monitor's "not already escalated" guard prevents repeated
        escalation; calling this twice moves ``escalated_at`` forward.

        Args:
            callback: Escalation callback receiving the service snapshot.

        Returns:
            Whatever the callback returned (possibly an awaitable), or None.
        """
        with self._lock:
            self._escalated_at = self._time_func()
            status = self._snapshot_locked()

        if not callable(callback):
            self._logger.error(
                "[HEALTH_TRACKER] %s: No escalation callback provided",
                self.descriptor.name,
            )
            return None

        self._logger.warning(
            "[HEALTH_TRACKER] %s: Escalating after %d consecutive failures",
            self.descriptor.name,
            status.consecutive_failures,
        )
        return callback(status)

    def _on_success(self, status_code: int) -> CheckResult:
        with self._lock:
            self._consecutive_failures = 0
            self._status = ProbeStatus.OK
            self._last_success_time = self._time_func()
            self._escalated_at = None
            status = self._snapshot_locked()

        self._logger.info(
            "[HEALTH_TRACKER] %s: OK (HTTP %d)",
            self.descriptor.name,
            status_code,
            extra={"outcome": "ok", "consecutive_failures": 0},
        )
        return CheckResult(kind=TransitionKind.SUCCESS, status=status)

    def _on_failure(self, error: str) -> CheckResult:
        with self._lock:
            self._consecutive_failures += 1
            self._status = ProbeStatus.ERROR
            status = self._snapshot_locked()

        self._logger.warning(
            "[HEALTH_TRACKER] %s: ERROR (consecutive failures: %d): %s",
            self.descriptor.name,
            status.consecutive_failures,
            error,
            extra={"outcome": "error", "consecutive_failures": status.consecutive_failures},
        )
        return CheckResult(kind=TransitionKind.FAILURE, status=status, error=error)

    def __repr__(self) -> str:
        return f"ServiceProbe(id={self.id}, name={self.descriptor.name!r}, host={self.descriptor.host!r})"
