"""OTel instruments recorded by the gateway connection."""

from opentelemetry.metrics import MeterProvider, NoOpMeterProvider


class GatewayMetrics:
    """Counters and histograms describing one gateway connection.

    Args:
        meter_provider: Provider to obtain a meter from. When None the no-op
            provider is used and nothing is recorded.
        name: Connection name, attached to every measurement as the
            ``gateway.name`` attribute.
    """

    def __init__(self, meter_provider: MeterProvider | None, name: str):
        meter = (meter_provider or NoOpMeterProvider()).get_meter("rxgateway")
        self._attributes = {"gateway.name": name}

        self.connect_attempts = meter.create_counter(
            "gateway.connect.attempts",
            description="Transport open attempts",
        )
        self.connect_failures = meter.create_counter(
            "gateway.connect.failures",
            description="Transport open attempts that failed",
        )
        self.heartbeats_sent = meter.create_counter(
            "gateway.heartbeats.sent",
            description="Heartbeat opcodes written to the transport",
        )
        self.heartbeats_missed = meter.create_counter(
            "gateway.heartbeat.missed",
            description="Heartbeats not acknowledged within one interval",
        )
        self.heartbeat_latency = meter.create_histogram(
            "gateway.heartbeat.latency",
            description="Time between a heartbeat and its acknowledgement",
            unit="ms",
        )

    def record_attempt(self, connected: bool) -> None:
        self.connect_attempts.add(1, self._attributes)
        if not connected:
            self.connect_failures.add(1, self._attributes)

    def record_heartbeat(self) -> None:
        self.heartbeats_sent.add(1, self._attributes)

    def record_missed_heartbeat(self) -> None:
        self.heartbeats_missed.add(1, self._attributes)

    def record_latency(self, seconds: float) -> None:
        self.heartbeat_latency.record(seconds * 1000.0, self._attributes)
