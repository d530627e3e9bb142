"""Shared test fixtures for rxgateway tests."""

import asyncio
import heapq
import itertools
import random
from collections.abc import Sequence

import pytest
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import (
    LogRecordExporter,
    LogRecordExportResult,
    SimpleLogRecordProcessor,
)

from rxgateway import (
    BackoffPolicy,
    GatewayConfig,
    GatewayConnection,
    GatewayDelegate,
    MockSocket,
)

ENDPOINT = "wss://gateway.example/v1"


async def settle(rounds: int = 25) -> None:
    """Let callbacks and freshly created tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class VirtualClock:
    """Manually advanced replacement for ``time.monotonic``/``asyncio.sleep``.

    Sleepers block until :meth:`advance` moves virtual time past their
    deadline. Every requested delay is recorded in ``sleeps``.
    """

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []
        self._timers: list[tuple[float, int, asyncio.Future]] = []
        self._order = itertools.count()

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._timers, (self.now + max(delay, 0.0), next(self._order), future))
        await future

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while self._timers and self._timers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._timers)
            self.now = max(self.now, deadline)
            if not future.done():
                future.set_result(None)
            await settle()
        self.now = target


class CollectingLogExporter(LogRecordExporter):
    """Keeps exported log records in memory."""

    def __init__(self):
        self.records = []

    def export(self, batch: Sequence) -> LogRecordExportResult:
        self.records.extend(item.log_record for item in batch)
        return LogRecordExportResult.SUCCESS

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True

    def bodies(self, severity: str | None = None) -> list[str]:
        return [
            str(record.body)
            for record in self.records
            if severity is None or record.severity_text == severity
        ]


class RecordingDelegate(GatewayDelegate):
    def __init__(self):
        self.events: list[str] = []
        self.messages = []

    def on_connection_established(self) -> None:
        self.events.append("established")

    def on_connection_closed(self) -> None:
        self.events.append("closed")

    def on_connection_failed(self) -> None:
        self.events.append("failed")

    def on_message(self, payload) -> None:
        self.messages.append(payload)


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def log_exporter():
    return CollectingLogExporter()


@pytest.fixture
def logger_provider(log_exporter):
    provider = LoggerProvider()
    provider.add_log_record_processor(SimpleLogRecordProcessor(log_exporter))
    return provider


@pytest.fixture
def backoff_policy():
    return BackoffPolicy(rng=random.Random(1234))


@pytest.fixture
def make_connection(clock, logger_provider, backoff_policy):
    """Build a GatewayConnection over a MockSocket driven by the virtual clock.

    Returns (connection, socket, delegate).
    """

    def _make(socket: MockSocket | None = None, **kwargs):
        socket = socket if socket is not None else MockSocket()
        delegate = RecordingDelegate()
        config = kwargs.pop(
            "config", GatewayConfig(endpoint=ENDPOINT, identify={"token": "secret"})
        )
        connection = GatewayConnection(
            config,
            delegate=delegate,
            raw_socket=socket,
            backoff_policy=kwargs.pop("backoff_policy", backoff_policy),
            logger_provider=logger_provider,
            sleep=clock.sleep,
            clock=clock.monotonic,
            **kwargs,
        )
        return connection, socket, delegate

    return _make
