"""Transport socket owning the raw connection and its retry loop.

Provides :class:`TransportDelegate`, the callback interface of the owning
connection, and :class:`TransportSocket`, which opens the raw socket with
exponential backoff, writes gateway envelopes and forwards socket events.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from opentelemetry.trace import Tracer

from .backoff import BackoffPolicy
from .mechanism import PayloadError
from .payload import GatewayPayload, decode_payload, encode_payload
from .sockets import RawSocket, SocketEvent, SocketState, SocketTarget
from .telemetry import GatewayMetrics, OTelLogger
from .utils import GenerationToken, get_short_error_info


class TransportDelegate:
    """Receiver of :class:`TransportSocket` notifications.

    Every method is a no-op by default, so implementers only override what
    they need.
    """

    def on_connection_established(self) -> None:
        pass

    def on_connection_closed(self) -> None:
        pass

    def on_connection_failed(self) -> None:
        pass

    def on_message(self, payload: GatewayPayload) -> None:
        pass


class TransportSocket:
    """Maintains the raw socket of one gateway connection.

    Parameters
    ----------
    delegate : TransportDelegate
        Owner notified about established/closed/failed connections and
        decoded inbound messages.
    raw_socket : RawSocket
        The byte-message socket to drive.
    logger : OTelLogger
        Destination for transport logs.
    backoff_policy : BackoffPolicy | None
        Delay computation between attempts. A default policy when None.
    metrics : GatewayMetrics | None
        Optional instruments for connection attempts.
    tracer : Tracer | None
        When given, every open attempt runs inside a span.
    sleep : Callable[[float], Awaitable[None]]
        Injectable ``asyncio.sleep`` replacement.
    """

    def __init__(
        self,
        delegate: TransportDelegate,
        raw_socket: RawSocket,
        logger: OTelLogger,
        backoff_policy: BackoffPolicy | None = None,
        metrics: GatewayMetrics | None = None,
        tracer: Tracer | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._delegate = delegate
        self._socket = raw_socket
        self._log = logger
        self._backoff = backoff_policy if backoff_policy else BackoffPolicy()
        self._metrics = metrics
        self._tracer = tracer
        self._sleep = sleep

        self._connection_token: GenerationToken | None = None
        self._disposed = False
        # whether the raw socket was handed to the delegate as established
        self._established = False
        self._loop: asyncio.AbstractEventLoop | None = None

        self._subscription = raw_socket.events.subscribe(on_next=self._on_socket_event)

    @property
    def state(self) -> SocketState:
        return self._socket.state

    @property
    def backoff_policy(self) -> BackoffPolicy:
        return self._backoff

    @property
    def is_connecting(self) -> bool:
        return self._connection_token is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _is_current(self, token: GenerationToken) -> bool:
        return self._connection_token is token and not self._disposed

    # ---------------- connection management ---------------- #
    async def connect(self, endpoint: str) -> bool:
        """Open the socket at ``endpoint``, retrying until it succeeds.

        Waits according to the backoff policy before every attempt. Returns
        True once connected, or False when the attempt was rejected,
        superseded by :meth:`disconnect`, or the socket was disposed of.
        """
        if self._disposed:
            return False
        if self._connection_token is not None:
            self._log.warning("A connection attempt is already in progress.")
            return False

        token = GenerationToken("connection")
        target = SocketTarget.from_url(endpoint)
        self._connection_token = token
        self._loop = asyncio.get_running_loop()

        # wait for the initial back-off, to delay the first attempt
        await self._sleep(self._backoff.time_to_next_attempt())
        if not self._is_current(token):
            self._backoff.reset_to_idle()
            return False

        attempt = 0
        while True:
            attempt += 1
            self._log.info(f"Connecting to {endpoint} (attempt {attempt})")

            connected = await self._open(target, attempt)
            if connected:
                self._backoff.mark_success()
            else:
                self._backoff.mark_failure()
            if self._metrics:
                self._metrics.record_attempt(connected)

            if not self._is_current(token):
                # nobody wants this connection anymore
                if connected and (self._disposed or self._connection_token is None):
                    await self._socket.close()
                return False

            if connected:
                self._log.info(f"Connection to {endpoint} succeeded.")
                self._connection_token = None
                self._established = True
                self._delegate.on_connection_established()
                return True

            delay = self._backoff.time_to_next_attempt()
            self._log.warning(
                f"Connection to {endpoint} failed. Next attempt in {delay:.2f}s."
            )
            self._delegate.on_connection_failed()

            await self._sleep(delay)
            if not self._is_current(token):
                self._backoff.reset_to_idle()
                return False

    async def _open(self, target: SocketTarget, attempt: int) -> bool:
        if self._tracer is None:
            return await self._try_open(target)

        with self._tracer.start_as_current_span(
            "gateway.transport.open",
            attributes={"gateway.url": target.url, "gateway.attempt": attempt},
        ) as span:
            connected = await self._try_open(target)
            span.set_attribute("gateway.connected", connected)
            return connected

    async def _try_open(self, target: SocketTarget) -> bool:
        try:
            return await self._socket.open(target)
        except OSError as e:
            self._log.warning(f"Network error (OSError): {get_short_error_info(e)}")
            return False

    async def write(self, message: GatewayPayload | Mapping[str, Any]) -> bool:
        """Encode and send one envelope. False when it could not be written."""
        if self._disposed or self.state is not SocketState.CONNECTED:
            return False

        try:
            data = encode_payload(message)
        except (TypeError, ValueError) as e:
            self._log.error(f"Unable to encode message: {get_short_error_info(e)}")
            return False

        try:
            await self._socket.write(data)
        except OSError as e:
            self._log.warning(f"Failed to write message: {get_short_error_info(e)}")
            return False
        return True

    async def disconnect(self) -> None:
        """Close the socket if open or opening, and cancel any connect loop.

        Safe to call at any time.
        """
        if self._disposed:
            return

        if self._socket.state in (
            SocketState.CONNECTING,
            SocketState.CONNECTED,
            SocketState.DISCONNECTING,
        ):
            await self._socket.close()

        self._connection_token = None

    def dispose(self) -> None:
        self._disposed = True
        self._connection_token = None
        self._subscription.dispose()

    # ---------------- socket events ---------------- #
    def _on_socket_event(self, event: SocketEvent) -> None:
        # never run delegate code inside the socket's own callback
        loop = self._loop or asyncio.get_running_loop()
        loop.call_soon_threadsafe(self._dispatch_event, event)

    def _dispatch_event(self, event: SocketEvent) -> None:
        if self._disposed:
            return

        if event.kind == "message":
            try:
                payload = decode_payload(event.data)
            except PayloadError as e:
                self._log.warning(f"Dropping inbound message: {e.exception}")
                return
            self._delegate.on_message(payload)

        elif event.kind == "error":
            self._log.warning(f"Socket error: {event.data}")

        elif event.kind == "close":
            if not self._established:
                self._log.debug(f"Socket closed before establishment: {event.data}")
                return
            self._established = False
            self._log.info(f"Connection closed: {event.data}")
            self._delegate.on_connection_closed()
