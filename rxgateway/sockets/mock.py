"""Scripted in-memory RawSocket for tests."""

import asyncio
import json
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

from reactivex import Observable, Subject

from .base import SocketEvent, SocketState, SocketTarget


class MockSocket:
    """A :class:`~rxgateway.sockets.base.RawSocket` that never touches the network.

    ``open()`` consumes the scripted results given to the constructor (or
    queued later with :meth:`queue_open_results`), defaulting to success when
    none are left. Written messages are recorded, and the test drives inbound
    traffic with :meth:`receive`, :meth:`remote_close` and :meth:`fail`.

    Set ``open_gate`` to an :class:`asyncio.Event` to hold ``open()`` calls
    in the CONNECTING state until the event is set.
    """

    def __init__(self, open_results: Iterable[bool] = ()):
        self._state = SocketState.DISCONNECTED
        self._events: Subject[SocketEvent] = Subject()
        self._open_results: deque[bool] = deque(open_results)

        self.open_gate: asyncio.Event | None = None
        self.open_calls: list[SocketTarget] = []
        self.writes: list[bytes] = []
        self.close_calls = 0

    @property
    def state(self) -> SocketState:
        return self._state

    @property
    def events(self) -> Observable[SocketEvent]:
        return self._events

    @property
    def written_payloads(self) -> list[dict[str, Any]]:
        """Recorded writes decoded from their JSON envelopes."""
        return [json.loads(data.decode("utf-8")) for data in self.writes]

    def written_opcodes(self) -> list[int]:
        return [payload["op"] for payload in self.written_payloads]

    def queue_open_results(self, *results: bool) -> None:
        self._open_results.extend(results)

    async def open(self, target: SocketTarget) -> bool:
        self.open_calls.append(target)
        self._state = SocketState.CONNECTING

        if self.open_gate is not None:
            await self.open_gate.wait()

        # close() was called while the attempt was held
        if self._state is not SocketState.CONNECTING:
            return False

        connected = self._open_results.popleft() if self._open_results else True
        self._state = SocketState.CONNECTED if connected else SocketState.DISCONNECTED
        return connected

    async def write(self, data: bytes) -> None:
        if self._state is not SocketState.CONNECTED:
            raise ConnectionError("MockSocket is not connected")
        self.writes.append(data)

    async def close(self) -> None:
        self.close_calls += 1
        was_connected = self._state is SocketState.CONNECTED
        self._state = SocketState.DISCONNECTED
        if was_connected:
            self._events.on_next(SocketEvent("close", "closed by client"))

    # ---------------- peer side ---------------- #
    def receive(self, message: Mapping[str, Any] | str | bytes) -> None:
        """Deliver an inbound message as if the peer had sent it."""
        if isinstance(message, Mapping):
            message = json.dumps(dict(message))
        if isinstance(message, str):
            message = message.encode("utf-8")
        self._events.on_next(SocketEvent("message", message))

    def remote_close(self, reason: str = "closed by peer") -> None:
        self._state = SocketState.DISCONNECTED
        self._events.on_next(SocketEvent("close", reason))

    def fail(self, detail: str = "socket error") -> None:
        self._events.on_next(SocketEvent("error", detail))
