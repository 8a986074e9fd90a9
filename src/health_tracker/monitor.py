"""Health monitor: service registry, tick scheduler and callback dispatch.

The monitor owns every ``ServiceProbe``. On each tick it starts one check
task per registered service without waiting for the others, then reacts to
each returned transition by invoking exactly one caller callback:

- SUCCESS: ``on_service_ok`` on every success, not only on recovery.
- FAILURE below the escalation threshold: ``on_service_down``.
- FAILURE reaching the threshold: ``on_service_down_escalate`` once per
  failure episode. Later failures in the same episode fire nothing until
  the service succeeds again.

Usage:
    monitor = HealthMonitor()

    async def main() -> None:
        monitor.configure(
            HealthMonitorConfig(
                register_key="s3cret",
                on_service_down=notify_down,
                on_service_down_escalate=page_oncall,
            )
        )
        service_id = monitor.add_service(ServiceDescriptor("billing", "http://billing:8080"))
        ...
        monitor.stop()
"""

from __future__ import annotations

import asyncio
import inspect
import secrets
import threading
from collections.abc import Callable, Mapping
from functools import partial
from typing import Any

from health_tracker.config import HealthMonitorConfig
from health_tracker.exceptions import (
    ConfigurationError,
    DuplicateServiceError,
    HealthTrackerError,
    RegistrationRejectedError,
    ValidationError,
)
from health_tracker.http_probe import DEFAULT_PROBE_TIMEOUT, HttpProbe, HttpxProbe
from health_tracker.logging import get_logger
from health_tracker.service_probe import ServiceProbe
from health_tracker.types import CheckResult, ServiceDescriptor, ServiceStatus

logger = get_logger(__name__)


def _host_key(host: str) -> str:
    return host.rstrip("/")


class HealthMonitor:
    """Polls registered services and turns probe outcomes into callbacks.

    Each instance is independent; a host application may run several.

    Thread-safety contract:
        ``add_service``, ``remove_service``, ``list_status`` and
        ``authorize_registration`` may be called from any thread. The
        service mapping is protected by ``_lock``; a tick works on a copy
        taken under the lock, so services added mid-tick join the next tick.
        ``configure``, ``start``, ``stop``, ``check_all`` and ``wait_idle``
        must be called on the event loop that runs the checks.

    Concurrency:
        A service whose previous check (including its callback) is still
        running is skipped by the next tick, so transitions for one service
        are applied strictly in order. Results arriving for a service that
        has since been removed are discarded.
    """

    def __init__(
        self,
        http_probe: HttpProbe | None = None,
        time_func: Callable[[], float] | None = None,
    ) -> None:
        """Initialize an unconfigured, stopped monitor.

        Args:
            http_probe: Collaborator performing HTTP probes. When omitted an
                ``HttpxProbe`` is created using the configured probe timeout.
            time_func: Optional callable returning epoch seconds, passed to
                every ``ServiceProbe``. Defaults to ``time.time``.
        """
        self._http_probe = http_probe
        self._time_func = time_func
        self._config: HealthMonitorConfig | None = None
        self._lock = threading.Lock()
        self._probes: dict[int, ServiceProbe] = {}
        self._next_id = 0
        self._in_flight: dict[int, asyncio.Task[None]] = {}
        self._scheduler_task: asyncio.Task[None] | None = None

    @property
    def config(self) -> HealthMonitorConfig | None:
        """The normalized configuration, or None before ``configure()``."""
        return self._config

    @property
    def is_running(self) -> bool:
        return self._scheduler_task is not None and not self._scheduler_task.done()

    def configure(self, config: HealthMonitorConfig, *, autostart: bool = True) -> None:
        """Validate and store the configuration, then start the scheduler.

        Re-configuring a monitor is not supported.

        Args:
            config: Monitor configuration.
            autostart: Start the tick scheduler immediately. Requires a
                running event loop.

        Raises:
            ConfigurationError: If a required field is missing or the
                monitor has already been configured.
            RuntimeError: If ``autostart`` is set and there is no running
                event loop. The monitor is left unconfigured.
        """
        if self._config is not None:
            raise ConfigurationError("HealthMonitor is already configured")

        normalized = config.normalized()
        if autostart:
            # Raises RuntimeError before anything is stored.
            asyncio.get_running_loop()
        self._config = normalized
        logger.info(
            "[HEALTH_TRACKER] Configured: interval=%dms, failures_before_escalate=%d, "
            "probe_timeout=%.1fs",
            self._config.check_interval_millis,
            self._config.failures_before_escalate,
            self._config.probe_timeout,
        )

        if autostart:
            self.start()

    def start(self) -> None:
        """Arm the recurring tick timer.

        The first tick fires one interval after starting. Calling ``start``
        on a running monitor does nothing.

        Raises:
            ConfigurationError: If ``configure()`` has not been called.
            RuntimeError: If there is no running event loop.
        """
        config = self._require_config()
        if self.is_running:
            logger.debug("[HEALTH_TRACKER] start() called while already running")
            return

        loop = asyncio.get_running_loop()
        self._scheduler_task = loop.create_task(
            self._run(config.check_interval), name="health-tracker-scheduler"
        )
        logger.info("[HEALTH_TRACKER] Scheduler started (every %.3fs)", config.check_interval)

    def stop(self) -> None:
        """Disarm the tick timer.

        Checks already in flight are not cancelled; their results are
        processed as usual.
        """
        task = self._scheduler_task
        self._scheduler_task = None
        if task is None:
            return
        task.cancel()
        logger.info("[HEALTH_TRACKER] Scheduler stopped")

    async def _run(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self._tick()
            except Exception:
                # INTENTIONAL BROAD CATCH: the timer must survive a bad tick.
                logger.exception("[HEALTH_TRACKER] Tick failed")

    def _tick(self) -> list[asyncio.Task[None]]:
        """Start one check task per idle registered service.

        Returns:
            The tasks started by this tick.
        """
        with self._lock:
            probes = list(self._probes.values())

        tasks: list[asyncio.Task[None]] = []
        for probe in probes:
            if probe.id in self._in_flight:
                logger.debug(
                    "[HEALTH_TRACKER] %s: Previous check still running, skipping tick",
                    probe.name,
                )
                continue
            task = asyncio.create_task(self._check_service(probe), name=f"health-check-{probe.id}")
            self._in_flight[probe.id] = task
            task.add_done_callback(partial(self._on_check_done, probe.id))
            tasks.append(task)

        logger.debug(
            "[HEALTH_TRACKER] Tick started %d of %d checks", len(tasks), len(probes)
        )
        return tasks

    def _on_check_done(self, service_id: int, task: asyncio.Task[None]) -> None:
        if self._in_flight.get(service_id) is task:
            del self._in_flight[service_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "[HEALTH_TRACKER] Check for service %d failed unexpectedly",
                service_id,
                exc_info=task.exception(),
            )

    async def check_all(self) -> None:
        """Run one tick immediately and wait for all of its checks.

        Raises:
            ConfigurationError: If ``configure()`` has not been called.
        """
        self._require_config()
        tasks = self._tick()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no checks are in flight."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)
            await asyncio.sleep(0)

    async def _check_service(self, probe: ServiceProbe) -> None:
        result = await probe.check()
        await self._handle_result(result)

    async def _handle_result(self, result: CheckResult) -> None:
        config = self._require_config()
        service_id = result.status.id

        with self._lock:
            probe = self._probes.get(service_id)

        if probe is None:
            logger.debug(
                "[HEALTH_TRACKER] Discarding %s result for removed service %d",
                result.kind.value,
                service_id,
            )
            return

        if result.succeeded:
            await self._run_callback("on_service_ok", config.on_service_ok, result.status)
            return

        if result.status.consecutive_failures >= config.failures_before_escalate:
            if probe.is_escalated:
                logger.debug(
                    "[HEALTH_TRACKER] %s: Already escalated, no further notification",
                    probe.name,
                )
                return
            await self._run_callback(
                "on_service_down_escalate", probe.escalate, config.on_service_down_escalate
            )
        else:
            await self._run_callback("on_service_down", config.on_service_down, result.status)

    async def _run_callback(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            outcome = func(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            # INTENTIONAL BROAD CATCH: caller callbacks must not stop the
            # scheduler or the other services' checks.
            logger.exception("[HEALTH_TRACKER] %s callback raised", name)

    def add_service(self, descriptor: ServiceDescriptor) -> int | DuplicateServiceError:
        """Register a service for monitoring.

        Args:
            descriptor: Name and host of the service.

        Returns:
            The assigned service id, or a ``DuplicateServiceError`` (returned,
            not raised) if the host is already registered.
        """
        host_key = _host_key(descriptor.host)
        with self._lock:
            if any(_host_key(p.host) == host_key for p in self._probes.values()):
                error = DuplicateServiceError(descriptor.host)
                logger.warning("[HEALTH_TRACKER] %s", error)
                return error

            self._next_id += 1
            service_id = self._next_id
            self._probes[service_id] = ServiceProbe(
                service_id,
                descriptor,
                self._get_http_probe(),
                probe_timeout=self._probe_timeout(),
                time_func=self._time_func,
            )

        logger.info(
            "[HEALTH_TRACKER] Added service %s (%s) with id %d",
            descriptor.name,
            descriptor.host,
            service_id,
        )
        return service_id

    def remove_service(self, service_id: int) -> bool:
        """Stop monitoring a service.

        An in-flight check for the service may still complete; its result is
        discarded.

        Args:
            service_id: Id returned by ``add_service``.

        Returns:
            True if the service was removed, False if the id was unknown.
        """
        with self._lock:
            probe = self._probes.pop(service_id, None)

        if probe is None:
            logger.warning("[HEALTH_TRACKER] remove_service: unknown service id %s", service_id)
            return False

        logger.info("[HEALTH_TRACKER] Removed service %s (id %d)", probe.name, service_id)
        return True

    def list_status(self) -> list[ServiceStatus]:
        """Return snapshots of all registered services in ascending id order."""
        with self._lock:
            probes = list(self._probes.values())
        return [probe.snapshot() for probe in probes]

    def authorize_registration(self, presented_key: object) -> bool:
        """Check a registration request's key against ``register_key``.

        Args:
            presented_key: Key supplied by the registration request.

        Returns:
            True only if the monitor is configured and the keys match.
        """
        if self._config is None or not self._config.register_key:
            return False
        if not isinstance(presented_key, str):
            return False
        return secrets.compare_digest(
            presented_key.encode("utf-8"), self._config.register_key.encode("utf-8")
        )

    def register_service(
        self,
        presented_key: object,
        descriptor: ServiceDescriptor | Mapping[str, Any],
    ) -> int | HealthTrackerError:
        """Gate, validate and add a service on behalf of a registration endpoint.

        Args:
            presented_key: Key supplied by the registration request.
            descriptor: A descriptor, or the raw request body mapping.

        Returns:
            The new service id, or (returned, not raised) a
            ``RegistrationRejectedError`` for a wrong key, a
            ``ValidationError`` for a malformed body, or a
            ``DuplicateServiceError``.
        """
        if not self.authorize_registration(presented_key):
            logger.warning("[HEALTH_TRACKER] Registration rejected: wrong register key")
            return RegistrationRejectedError()

        if not isinstance(descriptor, ServiceDescriptor):
            try:
                descriptor = ServiceDescriptor.from_dict(descriptor)
            except ValidationError as e:
                logger.warning("[HEALTH_TRACKER] Registration rejected: %s", e)
                return e

        return self.add_service(descriptor)

    def _require_config(self) -> HealthMonitorConfig:
        if self._config is None:
            raise ConfigurationError("HealthMonitor.configure() has not been called")
        return self._config

    def _probe_timeout(self) -> float:
        if self._config is not None and self._config.probe_timeout:
            return self._config.probe_timeout
        return DEFAULT_PROBE_TIMEOUT

    def _get_http_probe(self) -> HttpProbe:
        if self._http_probe is None:
            self._http_probe = HttpxProbe(timeout=self._probe_timeout())
        return self._http_probe

    def __repr__(self) -> str:
        return f"HealthMonitor(services={len(self._probes)}, running={self.is_running})"
