"""RawSocket implementation on top of the ``websockets`` asyncio client."""

import asyncio

import websockets
from reactivex import Observable, Subject
from websockets import ClientConnection

from ..utils import get_short_error_info
from .base import SocketEvent, SocketState, SocketTarget


class WebSocketRawSocket:
    """A :class:`~rxgateway.sockets.base.RawSocket` backed by a WebSocket.

    Text and binary frames are both surfaced as ``bytes`` message events. The
    gateway protocol runs its own heartbeat, so WebSocket level pings are off
    unless ``ping_interval`` is given.

    Parameters
    ----------
    open_timeout : float
        Seconds to wait for the opening handshake before the attempt counts
        as failed.
    ping_interval, ping_timeout : float | None
        Forwarded to :pyfunc:`websockets.connect`.
    """

    def __init__(
        self,
        open_timeout: float = 10.0,
        ping_interval: float | None = None,
        ping_timeout: float | None = None,
    ):
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout

        self._state = SocketState.DISCONNECTED
        self._events: Subject[SocketEvent] = Subject()
        self._ws: ClientConnection | None = None
        self._receiver: asyncio.Task | None = None

    @property
    def state(self) -> SocketState:
        return self._state

    @property
    def events(self) -> Observable[SocketEvent]:
        return self._events

    async def open(self, target: SocketTarget) -> bool:
        if self._state is not SocketState.DISCONNECTED:
            return False

        self._state = SocketState.CONNECTING
        try:
            ws = await asyncio.wait_for(
                websockets.connect(
                    target.url,
                    ping_interval=self._ping_interval,
                    ping_timeout=self._ping_timeout,
                    max_size=None,
                ),
                self._open_timeout,
            )
        except (TimeoutError, OSError, websockets.InvalidHandshake, websockets.InvalidURI) as e:
            self._state = SocketState.DISCONNECTED
            self._events.on_next(SocketEvent("error", get_short_error_info(e)))
            return False

        # close() was called while the handshake was in flight
        if self._state is not SocketState.CONNECTING:
            await ws.close()
            self._state = SocketState.DISCONNECTED
            return False

        self._ws = ws
        self._state = SocketState.CONNECTED
        self._receiver = asyncio.create_task(self._receive(ws))
        return True

    async def write(self, data: bytes) -> None:
        if self._ws is None or self._state is not SocketState.CONNECTED:
            raise ConnectionError("WebSocket is not connected")
        try:
            # the gateway speaks UTF-8 JSON, so send text frames
            await self._ws.send(data.decode("utf-8"))
        except websockets.ConnectionClosed as e:
            raise ConnectionError(get_short_error_info(e)) from e

    async def close(self) -> None:
        if self._state is SocketState.DISCONNECTED:
            return
        self._state = SocketState.DISCONNECTING
        if self._ws is not None:
            try:
                await asyncio.wait_for(self._ws.close(), timeout=1.0)
            except (TimeoutError, OSError):
                pass

    async def _receive(self, ws: ClientConnection) -> None:
        reason = ""
        try:
            while True:
                data = await ws.recv()
                if isinstance(data, str):
                    data = data.encode("utf-8")
                self._events.on_next(SocketEvent("message", data))
        except websockets.ConnectionClosedOK as e:
            reason = str(e)
        except websockets.ConnectionClosedError as e:
            reason = str(e)
            self._events.on_next(SocketEvent("error", get_short_error_info(e)))
        except OSError as e:
            reason = get_short_error_info(e)
            self._events.on_next(SocketEvent("error", reason))
        finally:
            self._ws = None
            self._state = SocketState.DISCONNECTED

        self._events.on_next(SocketEvent("close", reason))
