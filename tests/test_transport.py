"""Tests for rxgateway.transport - retry loop, writes and event forwarding."""

import asyncio
import random

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from rxgateway import BackoffPolicy, MockSocket, SocketState, TransportDelegate, TransportSocket
from rxgateway.telemetry import OTelLogger

from conftest import ENDPOINT, settle


class _Delegate(TransportDelegate):
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


class _RaisingSocket(MockSocket):
    async def open(self, target):
        self.open_calls.append(target)
        raise ConnectionRefusedError("refused")


@pytest.fixture
def delegate():
    return _Delegate()


@pytest.fixture
def make_transport(clock, logger_provider, delegate):
    def _make(socket=None, **kwargs):
        socket = socket if socket is not None else MockSocket()
        transport = TransportSocket(
            delegate,
            socket,
            logger=OTelLogger(logger_provider.get_logger("test"), source="Transport"),
            backoff_policy=kwargs.pop("backoff_policy", BackoffPolicy(rng=random.Random(7))),
            sleep=clock.sleep,
            **kwargs,
        )
        return transport, socket

    return _make


class TestConnect:
    def test_connects_on_first_attempt(self, make_transport, delegate, clock):
        transport, socket = make_transport()

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            return await task

        assert asyncio.run(scenario()) is True
        assert transport.state is SocketState.CONNECTED
        assert not transport.is_connecting
        assert delegate.events == ["established"]
        assert clock.sleeps == [0.0]

    def test_rejects_second_loop(self, make_transport, clock, log_exporter):
        transport, socket = make_transport()

        async def scenario():
            first = asyncio.create_task(transport.connect(ENDPOINT))
            await settle()
            second = await transport.connect(ENDPOINT)
            await clock.advance(0)
            return await first, second

        assert asyncio.run(scenario()) == (True, False)
        assert len(socket.open_calls) == 1
        assert any("already in progress" in b for b in log_exporter.bodies("WARN"))

    def test_invalid_endpoint_raises(self, make_transport):
        transport, _ = make_transport()

        with pytest.raises(ValueError):
            asyncio.run(transport.connect("http://gateway.example"))
        assert not transport.is_connecting

    def test_open_error_counts_as_failure(self, make_transport, delegate, clock, log_exporter):
        transport, socket = make_transport(_RaisingSocket())

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            assert transport.backoff_policy.attempts == 1
            await transport.disconnect()
            await clock.advance(60)
            return await task

        assert asyncio.run(scenario()) is False
        assert delegate.events == ["failed"]
        assert len(socket.open_calls) == 1
        assert any("ConnectionRefusedError" in b for b in log_exporter.bodies("WARN"))

    def test_open_spans_recorded(self, make_transport, clock):
        spans = InMemorySpanExporter()
        tracer_provider = TracerProvider()
        tracer_provider.add_span_processor(SimpleSpanProcessor(spans))
        transport, _ = make_transport(
            MockSocket([False, True]), tracer=tracer_provider.get_tracer("test")
        )

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(10)
            return await task

        assert asyncio.run(scenario()) is True
        finished = spans.get_finished_spans()
        assert [span.name for span in finished] == ["gateway.transport.open"] * 2
        assert [span.attributes["gateway.attempt"] for span in finished] == [1, 2]
        assert [span.attributes["gateway.connected"] for span in finished] == [False, True]

    def test_open_superseded_by_disconnect(self, make_transport, delegate, clock):
        transport, socket = make_transport()

        async def scenario():
            socket.open_gate = asyncio.Event()
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            assert socket.state is SocketState.CONNECTING

            # disconnect closes the pending attempt; the held open then fails
            await transport.disconnect()
            socket.open_gate.set()
            await settle()
            return await task

        assert asyncio.run(scenario()) is False
        assert socket.state is SocketState.DISCONNECTED
        assert delegate.events == []
        assert not transport.backoff_policy.is_idle


class TestDisconnect:
    def test_disconnect_is_idempotent(self, make_transport, delegate, clock):
        transport, socket = make_transport()

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            await task
            await transport.disconnect()
            await transport.disconnect()
            await settle()

        asyncio.run(scenario())
        assert socket.state is SocketState.DISCONNECTED
        assert socket.close_calls == 1
        assert delegate.events == ["established", "closed"]

    def test_disconnect_after_dispose_is_noop(self, make_transport):
        transport, socket = make_transport()

        async def scenario():
            transport.dispose()
            await transport.disconnect()
            return await transport.connect(ENDPOINT)

        assert asyncio.run(scenario()) is False
        assert transport.disposed
        assert socket.close_calls == 0
        assert socket.open_calls == []


class TestWrite:
    def test_write_fails_when_disconnected(self, make_transport):
        transport, socket = make_transport()

        assert asyncio.run(transport.write({"op": 1, "d": None})) is False
        assert socket.writes == []

    def test_write_encodes_envelope(self, make_transport, clock):
        transport, socket = make_transport()

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            await task
            return await transport.write({"op": 2, "d": {"token": "abc"}})

        assert asyncio.run(scenario()) is True
        assert socket.written_payloads == [
            {"op": 2, "d": {"token": "abc"}, "s": None, "t": None}
        ]

    def test_unencodable_message_rejected(self, make_transport, clock, log_exporter):
        transport, socket = make_transport()

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            await task
            return await transport.write({"op": 0, "d": object()})

        assert asyncio.run(scenario()) is False
        assert socket.writes == []
        assert any("Unable to encode" in b for b in log_exporter.bodies("ERROR"))


class TestEvents:
    def test_messages_forwarded_asynchronously(self, make_transport, delegate, clock):
        transport, socket = make_transport()

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            await task

            socket.receive({"op": 11})
            # never delivered from inside the socket's own callback
            assert delegate.messages == []
            await settle()

        asyncio.run(scenario())
        assert [payload.op for payload in delegate.messages] == [11]

    def test_malformed_message_dropped(self, make_transport, delegate, clock, log_exporter):
        transport, socket = make_transport()

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            await task
            socket.receive(b"{not json")
            socket.receive({"d": "no op"})
            socket.receive({"op": 10, "d": {"heartbeat_interval": 41250}})
            await settle()

        asyncio.run(scenario())
        assert [payload.op for payload in delegate.messages] == [10]
        assert len([b for b in log_exporter.bodies("WARN") if "Dropping" in b]) == 2

    def test_close_before_establishment_not_forwarded(self, make_transport, delegate):
        transport, socket = make_transport()

        async def scenario():
            socket.remote_close("refused")
            socket.fail("boom")
            await settle()

        asyncio.run(scenario())
        assert delegate.events == []

    def test_remote_close_forwarded_once(self, make_transport, delegate, clock):
        transport, socket = make_transport()

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            await task
            socket.remote_close()
            socket.remote_close()
            await settle()

        asyncio.run(scenario())
        assert delegate.events == ["established", "closed"]

    def test_no_events_after_dispose(self, make_transport, delegate, clock):
        transport, socket = make_transport()

        async def scenario():
            task = asyncio.create_task(transport.connect(ENDPOINT))
            await clock.advance(0)
            await task
            transport.dispose()
            socket.receive({"op": 11})
            socket.remote_close()
            await settle()

        asyncio.run(scenario())
        assert delegate.events == ["established"]
        assert delegate.messages == []
