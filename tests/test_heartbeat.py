"""Tests for rxgateway.heartbeat - the repeating heartbeat monitor."""

import asyncio

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from rxgateway import HeartbeatIntervalError, HeartbeatMonitor
from rxgateway.telemetry import GatewayMetrics, OTelLogger

from conftest import settle


class _Harness:
    def __init__(self, clock, logger_provider, metrics=None):
        self.sent: list[float] = []
        self.missed = 0
        self.clock = clock
        self.monitor = HeartbeatMonitor(
            send=self.send,
            on_missed_ack=self.on_missed_ack,
            logger=OTelLogger(logger_provider.get_logger("test"), source="Heartbeat"),
            metrics=metrics,
            sleep=clock.sleep,
            clock=clock.monotonic,
        )

    async def send(self) -> bool:
        self.sent.append(self.clock.now)
        return True

    def on_missed_ack(self) -> None:
        self.missed += 1


@pytest.fixture
def harness(clock, logger_provider):
    return _Harness(clock, logger_provider)


class TestStart:
    def test_sends_once_per_interval(self, harness, clock):
        async def scenario():
            harness.monitor.start(15.0)
            await clock.advance(15.0)
            harness.monitor.record_ack()
            await clock.advance(15.0)

        asyncio.run(scenario())
        assert harness.sent == [15.0, 30.0]
        assert harness.missed == 0

    def test_nothing_sent_before_first_interval(self, harness, clock):
        async def scenario():
            harness.monitor.start(15.0)
            await clock.advance(14.9)

        asyncio.run(scenario())
        assert harness.sent == []
        assert harness.monitor.is_running

    @pytest.mark.parametrize("interval", [None, 0, 5.0, 9.99])
    def test_refuses_interval_below_floor(self, harness, clock, log_exporter, interval):
        async def scenario():
            with pytest.raises(HeartbeatIntervalError) as info:
                harness.monitor.start(interval)
            await clock.advance(60.0)
            return info.value

        error = asyncio.run(scenario())
        assert error.minimum == 10.0
        assert isinstance(error.exception, ValueError)
        assert not harness.monitor.is_running
        assert harness.sent == []
        assert any("Refusing heartbeat interval" in b for b in log_exporter.bodies("ERROR"))

    def test_restart_retires_previous_generation(self, harness, clock):
        async def scenario():
            harness.monitor.start(20.0)
            await clock.advance(5.0)
            harness.monitor.start(30.0)
            # the first generation wakes at 20s and must exit silently
            await clock.advance(20.0)
            assert harness.sent == []
            await clock.advance(10.0)

        asyncio.run(scenario())
        assert harness.sent == [35.0]


class TestStop:
    def test_stop_prevents_further_heartbeats(self, harness, clock):
        async def scenario():
            harness.monitor.start(10.0)
            await clock.advance(10.0)
            harness.monitor.stop()
            await clock.advance(100.0)

        asyncio.run(scenario())
        assert harness.sent == [10.0]
        assert harness.missed == 0
        assert not harness.monitor.is_running

    def test_reset_forgets_negotiated_state(self, harness, clock):
        async def scenario():
            harness.monitor.start(10.0)
            await clock.advance(10.0)
            harness.monitor.record_ack()
            harness.monitor.reset()

        asyncio.run(scenario())
        assert harness.monitor.interval is None
        assert harness.monitor.last_ack_time is None
        assert not harness.monitor.awaiting_ack


class TestAcks:
    def test_missing_ack_reported_once(self, harness, clock, log_exporter):
        async def scenario():
            harness.monitor.start(10.0)
            await clock.advance(10.0)
            assert harness.monitor.awaiting_ack
            await clock.advance(50.0)

        asyncio.run(scenario())
        assert harness.sent == [10.0]
        assert harness.missed == 1
        assert not harness.monitor.is_running
        assert any("No heartbeat ack" in b for b in log_exporter.bodies("WARN"))

    def test_ack_time_and_latency_recorded(self, clock, logger_provider):
        reader = InMemoryMetricReader()
        metrics = GatewayMetrics(MeterProvider(metric_readers=[reader]), "test")
        harness = _Harness(clock, logger_provider, metrics=metrics)

        async def scenario():
            harness.monitor.start(10.0)
            await clock.advance(10.0)
            await clock.advance(0.25)
            harness.monitor.record_ack()
            await settle()

        asyncio.run(scenario())
        assert harness.monitor.last_ack_time == 10.25
        assert not harness.monitor.awaiting_ack

        points = {}
        for resource_metrics in reader.get_metrics_data().resource_metrics:
            for scope_metrics in resource_metrics.scope_metrics:
                for metric in scope_metrics.metrics:
                    points[metric.name] = list(metric.data.data_points)

        assert points["gateway.heartbeats.sent"][0].value == 1
        latency = points["gateway.heartbeat.latency"][0]
        assert latency.count == 1
        assert latency.sum == pytest.approx(250.0)
