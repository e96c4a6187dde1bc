"""
Shared test configuration and fixtures for the runtime metrics agent tests.

This module provides the simulated clock, fake runtime statistics, a fake
aiohttp session and a threaded collector server used across test modules.
"""
import asyncio
import heapq
import itertools
import os
import sys
import threading
from typing import Dict, List, Optional

import pytest
from loguru import logger

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from agent.runtime_stats import RUNTIME_GAUGE_NAMES, RuntimeStatsError
from agent.store import MetricStore
from collector.update_handler import create_collector_server


async def settle(rounds: int = 50) -> None:
    """Let every ready task run until the loop is idle."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Simulated monotonic clock; time only moves through ``advance()``."""

    def __init__(self):
        self.now = 0.0
        self._sleepers = []
        self._seq = itertools.count()

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self.now + max(delay, 0.0), next(self._seq), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def advance(self, delta: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self.now + delta
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self.now = deadline
            future.set_result(None)
            await settle()
        self.now = target
        await settle()


class FakeStatsReader:
    """Runtime statistics reader returning fixed values."""

    def __init__(self, base: float = 1024.0):
        self.base = base
        self.reads = 0
        self.fail = False

    def read(self) -> Dict[str, float]:
        if self.fail:
            raise RuntimeStatsError("statistics unavailable")
        self.reads += 1
        return {name: self.base + index for index, name in enumerate(RUNTIME_GAUGE_NAMES)}


class FakeResponse:
    def __init__(self, status: int, session: "FakeSession"):
        self.status = status
        self.session = session

    async def read(self) -> bytes:
        return b""

    async def __aenter__(self):
        self.session.in_flight += 1
        self.session.max_in_flight = max(self.session.max_in_flight, self.session.in_flight)
        # Yield so concurrent requests overlap.
        await asyncio.sleep(0)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.session.in_flight -= 1
        return False


class FakeSession:
    """Stand-in for aiohttp.ClientSession that records every POST.

    ``responses`` maps a substring of the URL to either a status code or
    an exception instance to raise.
    """

    def __init__(self, default_status: int = 200):
        self.default_status = default_status
        self.responses = {}
        self.calls: List[Dict] = []
        self.closed = False
        self.in_flight = 0
        self.max_in_flight = 0

    def post(self, url, headers=None, data=None):
        self.calls.append({"url": url, "headers": headers, "data": data})
        outcome = self.default_status
        for fragment, configured in self.responses.items():
            if fragment in url:
                outcome = configured
                break
        if isinstance(outcome, BaseException):
            raise outcome
        return FakeResponse(outcome, self)

    async def close(self):
        self.closed = True


class RecordingTransmitter:
    """Transmitter double that records snapshots instead of sending them."""

    def __init__(self):
        self.started = False
        self.closed = False
        self.snapshots = []

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True

    async def report(self, snapshot):
        if self.closed:
            raise AssertionError("report called after close")
        self.snapshots.append(snapshot)
        return len(snapshot)


@pytest.fixture
def store():
    return MetricStore()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_reader():
    return FakeStatsReader()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def recording_transmitter():
    return RecordingTransmitter()


@pytest.fixture
def log_messages():
    """Capture loguru records as ``(level, message)`` tuples."""
    messages = []
    handler_id = logger.add(
        lambda message: messages.append((message.record["level"].name, message.record["message"])),
        level="DEBUG",
    )
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def collector_server():
    """Collector stub on a free local port, served from a background thread."""
    server = create_collector_server("127.0.0.1", 0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


@pytest.fixture
def collector_url(collector_server) -> str:
    host, port = collector_server.server_address[:2]
    return f"http://{host}:{port}"


@pytest.fixture
def unused_port() -> int:
    """A local port with nothing listening on it."""
    import socket
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
