"""HTTP probe collaborator used by service probes.

A probe issues one GET against a service's health endpoint and reports the
response status code. Anything that prevents a status code from being
received is raised as :class:`TransportError`. Classifying the status code
is left to :func:`is_failure_status` so probe implementations stay dumb.

Custom probes only need to satisfy the ``HttpProbe`` protocol::

    class StaticProbe:
        async def probe(self, url: str) -> int:
            return 200
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from health_tracker.exceptions import TransportError
from health_tracker.logging import get_logger

logger = get_logger(__name__)

HEALTH_CHECK_PATH = "/health-check"
"""Path appended to a service's host to build its probe URL."""

DEFAULT_PROBE_TIMEOUT = 5.0

_FAILURE_LEADING_DIGITS = ("4", "5")


def build_probe_url(host: str) -> str:
    """Return the health-check URL for a service host."""
    return f"{host.rstrip('/')}{HEALTH_CHECK_PATH}"


def is_failure_status(status_code: int) -> bool:
    """Classify a response status code.

    A response is a failure iff the leading digit of its status code is 4 or 5.
    """
    return str(status_code).startswith(_FAILURE_LEADING_DIGITS)


@runtime_checkable
class HttpProbe(Protocol):
    """Protocol for the HTTP client performing a single liveness probe.

    Implementations must bound the request by a timeout and raise
    ``TransportError`` when no response status was received.
    """

    async def probe(self, url: str) -> int:
        """Issue one GET request and return the response status code.

        Args:
            url: Absolute URL of the health endpoint.

        Returns:
            The HTTP status code of the response.

        Raises:
            TransportError: If the request failed before a status was received.
        """
        ...  # pragma: no cover


class HttpxProbe:
    """``HttpProbe`` implementation backed by ``httpx.AsyncClient``.

    Redirects are not followed; a 3xx response counts as alive.

    Attributes:
        timeout: Timeout in seconds applied to connect, read, write and pool.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, mainly for tests
                (``httpx.MockTransport``).
        """
        self.timeout = timeout
        self._transport = transport

    async def probe(self, url: str) -> int:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                response = await client.get(url)
                return response.status_code
        except httpx.TimeoutException as e:
            logger.debug("[HEALTH_TRACKER] Probe of %s timed out", url)
            raise TransportError(url, f"Probe of {url} timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            logger.debug("[HEALTH_TRACKER] Probe of %s failed: %s", url, e)
            raise TransportError(url, f"Probe of {url} failed: {type(e).__name__}: {e}") from e


__all__ = [
    "DEFAULT_PROBE_TIMEOUT",
    "HEALTH_CHECK_PATH",
    "HttpProbe",
    "HttpxProbe",
    "build_probe_url",
    "is_failure_status",
]
