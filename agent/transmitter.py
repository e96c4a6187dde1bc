"""
Metric transmitter: ships store snapshots to the collector over HTTP.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import aiohttp
from loguru import logger

from agent.store import MetricSnapshot
from agent.update_requests import UpdateRequest, build_update_requests, normalize_base_url

DEFAULT_CLIENT_TIMEOUT = 5.0
DEFAULT_MAX_CONNECTIONS = 30


@dataclass
class ReportResult:
    """Outcome of one reporting tick."""
    sent: int = 0
    failed: int = 0
    dropped: int = 0
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.sent + self.failed


class MetricTransmitter:
    """Sends one update request per metric through a shared, pooled session.

    The session is created once by ``start()`` and reused for every report
    until ``close()``. A failed call only affects its own metric.
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_CLIENT_TIMEOUT,
                 max_connections: int = DEFAULT_MAX_CONNECTIONS,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize the transmitter.

        Args:
            base_url: Collector base URL or ``host:port`` address
            timeout: Upper bound for a single request, in seconds
            max_connections: Size of the connection pool
            session: Pre-built session to use instead of creating one
        """
        self.base_url = normalize_base_url(base_url)
        self.timeout = timeout
        self.max_connections = max_connections
        self._session = session
        self._owns_session = session is None
        self.reports_sent = 0
        self.requests_sent = 0
        self.requests_failed = 0

    @property
    def session(self) -> Optional[aiohttp.ClientSession]:
        return self._session

    async def start(self) -> None:
        """Create the HTTP session. Errors here are fatal to the agent."""
        if self._session is not None:
            return
        connector = aiohttp.TCPConnector(limit=self.max_connections)
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        self._owns_session = True
        logger.info(f"Transmitter ready: {self.base_url} "
                    f"(timeout {self.timeout}s, pool {self.max_connections})")

    async def close(self) -> None:
        """Close the HTTP session if this transmitter created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            logger.debug("Transmitter session closed")
        self._session = None

    async def __aenter__(self) -> "MetricTransmitter":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def report(self, snapshot: MetricSnapshot) -> ReportResult:
        """Send every metric of the snapshot.

        Args:
            snapshot: Immutable store snapshot

        Returns:
            ReportResult with per-metric failures
        """
        if self._session is None:
            raise RuntimeError("Transmitter is not started")

        requests = build_update_requests(snapshot, self.base_url)
        result = ReportResult(dropped=len(snapshot) - len(requests))

        # At most one request per pooled connection is in flight.
        semaphore = asyncio.Semaphore(self.max_connections)
        outcomes = await asyncio.gather(*(self._send(request, semaphore) for request in requests.values()))

        for request, error in zip(requests.values(), outcomes):
            if error is None:
                result.sent += 1
            else:
                result.failed += 1
                result.failures[request.name] = error

        self.reports_sent += 1
        self.requests_sent += result.sent
        self.requests_failed += result.failed

        age = max(time.time() - snapshot.taken_at, 0.0)
        if result.failed:
            logger.warning(f"Report {self.reports_sent}: {result.sent}/{result.total} metrics delivered, "
                           f"{result.failed} failed (snapshot age {age:.3f}s)")
        else:
            logger.debug(f"Report {self.reports_sent}: {result.sent} metrics delivered "
                         f"(snapshot age {age:.3f}s)")
        return result

    async def _send(self, request: UpdateRequest, semaphore: asyncio.Semaphore) -> Optional[str]:
        """Send one request.

        Returns:
            None on success, otherwise a short description of the failure
        """
        try:
            async with semaphore:
                async with self._session.post(request.url, headers=dict(request.headers), data=b"") as response:
                    await response.read()
                    if not 200 <= response.status < 300:
                        error = f"HTTP {response.status}"
                        logger.warning(f"Collector rejected {request.kind.value} '{request.name}': {error}")
                        return error
        except asyncio.TimeoutError:
            error = f"timed out after {self.timeout}s"
            logger.warning(f"Sending {request.kind.value} '{request.name}' {error}")
            return error
        except aiohttp.ClientError as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"Failed to send {request.kind.value} '{request.name}': {error}")
            return error
        return None
