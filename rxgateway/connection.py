"""Gateway protocol state machine.

Provides GatewayConfig, GatewayState, GatewayDelegate and GatewayConnection,
which interprets inbound opcodes, identifies with the peer, runs the heartbeat
monitor and keeps the connection established while the application wants it.

Protocol states:
    IDLE → CONNECTING: connect() called, transport retry loop running
    CONNECTING → AWAITING_HELLO: transport established
    AWAITING_HELLO → IDENTIFYING: Hello received, Identify/Resume sent
    IDENTIFYING → STEADY: READY/RESUMED dispatched or first heartbeat ack
    any → CONNECTING: connection lost or forced reconnect while still wanted
    any → IDLE: disconnect()
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from opentelemetry.metrics import MeterProvider
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.trace import Tracer, TracerProvider
from reactivex import Observable, Subject
from reactivex.subject import BehaviorSubject

from .backoff import BackoffPolicy
from .heartbeat import MINIMUM_HEARTBEAT_INTERVAL, HeartbeatMonitor
from .payload import GatewayPayload, Opcode
from .sockets import RawSocket, SocketState, WebSocketRawSocket
from .telemetry import GatewayMetrics, LogContext, OTelLogger, get_default_providers
from .transport import TransportDelegate, TransportSocket
from .utils import GenerationToken, get_full_error_info, get_short_error_info

# Interval assumed when the peer's Hello omits one.
DEFAULT_HEARTBEAT_INTERVAL_MS = 41250

_NO_DATA: Any = object()


@dataclass(frozen=True)
class GatewayConfig:
    """Typed gateway connection configuration.

    Attributes:
        endpoint: ``wss://`` URL of the gateway.
        identify: Data sent as ``d`` of the Identify opcode. A ``token`` key,
            when present, is reused for Resume.
        endpoint_resolver: Optional coroutine function returning the URL to
            connect to; awaited before every connection loop and preferred
            over ``endpoint``.
        name: Name used as log source. Defaults to
            ``"GatewayConnection:{endpoint}"``.
    """

    endpoint: str = ""
    identify: Mapping[str, Any] = field(default_factory=dict)
    endpoint_resolver: Callable[[], Awaitable[str]] | None = None
    name: str | None = None


class GatewayState(Enum):
    """Observable protocol states of a GatewayConnection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING = "identifying"
    STEADY = "steady"


class GatewayDelegate:
    """Application-side observer of a GatewayConnection.

    Every method is a no-op by default, so applications override only the
    callbacks they care about.
    """

    def on_connection_established(self) -> None:
        pass

    def on_connection_closed(self) -> None:
        pass

    def on_connection_failed(self) -> None:
        pass

    def on_message(self, payload: GatewayPayload) -> None:
        """Called for every Dispatch payload received from the gateway."""
        pass


class GatewayConnection(TransportDelegate):
    """A resilient client for an opcode-based gateway protocol.

    Key Features
    ------------
    * **Auto-reconnect** -- while the application wants a connection, lost
      or refused connections are retried with exponential backoff.
    * **Heartbeats** -- runs at the interval the peer announces in Hello and
      forces a reconnect when an acknowledgement goes missing.
    * **Resume** -- after a reconnect, a known session is resumed instead of
      identifying from scratch.

    All methods must be called from the event loop that runs the connection.

    Parameters
    ----------
    config : GatewayConfig
        Endpoint and Identify data.
    delegate : GatewayDelegate | None
        Application observer. Dispatches are also emitted by
        :attr:`dispatches`.
    raw_socket : RawSocket | None
        Socket to drive. Defaults to a :class:`WebSocketRawSocket`.
    backoff_policy : BackoffPolicy | None
        Reconnection delays. Defaults to ``BackoffPolicy()``.
    tracer_provider, logger_provider, meter_provider
        Optional OTel providers. Without a logger provider the console
        default from :func:`get_default_providers` is used.
    sleep, clock
        Injectable ``asyncio.sleep`` and ``time.monotonic`` replacements.
    minimum_heartbeat_interval : float
        Floor, in seconds, for the peer-supplied heartbeat interval.
    """

    def __init__(
        self,
        config: GatewayConfig,
        delegate: GatewayDelegate | None = None,
        raw_socket: RawSocket | None = None,
        backoff_policy: BackoffPolicy | None = None,
        tracer_provider: TracerProvider | None = None,
        logger_provider: LoggerProvider | None = None,
        meter_provider: MeterProvider | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        minimum_heartbeat_interval: float = MINIMUM_HEARTBEAT_INTERVAL,
    ):
        self._config = config
        self._name = config.name or f"GatewayConnection:{config.endpoint}"

        # Auto-configure default providers if not provided
        if logger_provider is None:
            tracer_provider, logger_provider = get_default_providers("rxgateway")

        self._tracer: Tracer | None = (
            tracer_provider.get_tracer(f"rxgateway.{self._name}")
            if tracer_provider
            else None
        )
        self._otel_logger = OTelLogger(
            logger_provider.get_logger(f"rxgateway.{self._name}"),
            source=self._name,
            context=LogContext(
                service="rxgateway", component="connection", endpoint=config.endpoint
            ),
        )
        self._metrics = GatewayMetrics(meter_provider, self._name)
        self._delegate = delegate or GatewayDelegate()

        # Whether the application wants the connection to be up
        self._intent = False
        self._connected = False
        self._connecting = False
        self._attempt_token: GenerationToken | None = None
        self._sleep = sleep

        # Resumption state
        self._session_id: str | None = None
        self._sequence: int | None = None

        self._state_subject: BehaviorSubject[GatewayState] = BehaviorSubject(
            GatewayState.IDLE
        )
        self._dispatches: Subject[GatewayPayload] = Subject()
        self._tasks: set[asyncio.Task] = set()

        self._socket = TransportSocket(
            self,
            raw_socket if raw_socket is not None else WebSocketRawSocket(),
            logger=self._otel_logger.with_context(
                source=f"{self._name}:transport", component="transport"
            ),
            backoff_policy=backoff_policy,
            metrics=self._metrics,
            tracer=self._tracer,
            sleep=sleep,
        )
        self._heartbeat = HeartbeatMonitor(
            send=self._send_heartbeat,
            on_missed_ack=self._on_missed_heartbeat_ack,
            logger=self._otel_logger.with_context(
                source=f"{self._name}:heartbeat", component="heartbeat"
            ),
            metrics=self._metrics,
            sleep=sleep,
            clock=clock,
            minimum_interval=minimum_heartbeat_interval,
        )

    # ---------------- observable state ---------------- #
    @property
    def state(self) -> Observable[GatewayState]:
        """Stream of protocol state changes; new subscribers get the current one."""
        return self._state_subject

    @property
    def current_state(self) -> GatewayState:
        return self._state_subject.value

    @property
    def dispatches(self) -> Observable[GatewayPayload]:
        """Stream of Dispatch payloads received from the gateway."""
        return self._dispatches

    @property
    def transport(self) -> TransportSocket:
        return self._socket

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    @property
    def heartbeat_ack_time(self) -> float | None:
        """Monotonic time of the most recent heartbeat acknowledgement."""
        return self._heartbeat.last_ack_time

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def sequence(self) -> int | None:
        return self._sequence

    def is_connected(self) -> bool:
        return self._connected

    def is_connecting(self) -> bool:
        return self._connecting

    def _set_state(self, state: GatewayState) -> None:
        if self._state_subject.is_disposed or self._state_subject.value is state:
            return
        self._otel_logger.debug(f"Gateway state: {state.value}")
        self._state_subject.on_next(state)

    # ---------------- connection management ---------------- #
    async def connect(self) -> bool:
        """Establish the connection and keep it established until disconnect().

        Returns True once the transport is connected. Returns False right away
        when the connection is already up or a connection attempt is already
        in flight, and False when this attempt was superseded by disconnect().
        Applications usually run this as a task rather than awaiting it.

        Errors raised by ``GatewayConfig.endpoint_resolver`` propagate from
        here. During reconnects an ``OSError`` from the resolver counts as a
        failed attempt and is retried with backoff.
        """
        self._intent = True

        if self._connecting or self._connected:
            return False
        return await self._internal_connect()

    async def _internal_connect(self, token: GenerationToken | None = None) -> bool:
        # a token is handed in by background reconnects, which outlive resolver errors
        retry_resolver = token is not None
        if token is None:
            token = self._begin_attempt()
        elif not self._is_current_attempt(token):
            return False
        self._set_state(GatewayState.CONNECTING)

        backoff = self._socket.backoff_policy
        while True:
            try:
                endpoint = await self._resolve_endpoint()
            except Exception as e:
                if not (retry_resolver and self._intent and isinstance(e, OSError)):
                    self._otel_logger.exception("Unable to resolve the gateway endpoint", e)
                    self._connecting = False
                    self._set_state(GatewayState.IDLE)
                    raise

                backoff.mark_failure()
                delay = backoff.time_to_next_attempt()
                self._otel_logger.warning(
                    f"Unable to resolve the gateway endpoint ({get_short_error_info(e)}). "
                    f"Next attempt in {delay:.2f}s."
                )
                self.on_connection_failed()

                await self._sleep(delay)
                if not self._is_current_attempt(token):
                    if not self._intent:
                        backoff.reset_to_idle()
                    return False
                continue

            if not self._is_current_attempt(token):
                return False  # disconnected while resolving
            return await self._socket.connect(endpoint)

    def _begin_attempt(self) -> GenerationToken:
        token = GenerationToken("attempt")
        self._attempt_token = token
        self._connecting = True
        return token

    def _is_current_attempt(self, token: GenerationToken) -> bool:
        return self._connecting and self._attempt_token is token

    async def _resolve_endpoint(self) -> str:
        if self._config.endpoint_resolver is not None:
            return await self._config.endpoint_resolver()
        return self._config.endpoint

    async def disconnect(self) -> None:
        """Close the connection, or stop trying to establish one.

        Safe to call at any time, including while the transport is still
        retrying because of on-going network issues.
        """
        self._intent = False
        self._connecting = False

        self._heartbeat.stop()
        await self._socket.disconnect()
        self._set_state(GatewayState.IDLE)

    async def _force_reconnect(self, reason: str) -> None:
        self._otel_logger.warning(f"Forcing reconnect: {reason}")

        self._heartbeat.stop()
        if not self._intent:
            await self._socket.disconnect()
            self._set_state(GatewayState.IDLE)
            return

        # claimed before the close so on_connection_closed leaves the reconnect to us
        token = self._begin_attempt()
        await self._socket.disconnect()

        await self._internal_connect(token)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._otel_logger.exception(
                "Background task failed",
                error,
                **{"exception.stacktrace": get_full_error_info(error)},
            )

    # ---------------- messages ---------------- #
    async def send_opcode_message(
        self,
        op: int,
        d: Any = _NO_DATA,
        s: int | None = None,
        t: str | None = None,
    ) -> bool:
        """Send an opcode message to the gateway.

        Only ``op`` is required; ``d`` defaults to an empty object. Returns
        False, without raising, when not connected or the write failed.
        """
        if not self._connected:
            return False

        return await self._socket.write(
            {"op": int(op), "d": {} if d is _NO_DATA else d, "s": s, "t": t}
        )

    async def identify(self) -> bool:
        """Identify with the gateway, resuming the previous session if possible."""
        if self._session_id is not None and self._sequence is not None:
            self._otel_logger.info(f"Resuming session {self._session_id}")
            return await self.send_opcode_message(
                Opcode.RESUME,
                {
                    "token": self._config.identify.get("token"),
                    "session_id": self._session_id,
                    "seq": self._sequence,
                },
            )

        self._otel_logger.info("Identifying")
        return await self.send_opcode_message(Opcode.IDENTIFY, dict(self._config.identify))

    def _forget_session(self) -> None:
        self._session_id = None
        self._sequence = None
        self._otel_logger = self._otel_logger.with_context(session_id="")

    async def _send_heartbeat(self) -> bool:
        return await self.send_opcode_message(Opcode.HEARTBEAT, self._sequence)

    def _on_missed_heartbeat_ack(self) -> None:
        self._spawn(self._force_reconnect("heartbeat acknowledgement missing"))

    # ---------------- transport delegate ---------------- #
    def on_connection_established(self) -> None:
        """Reset handshake state; the full handshake starts over from scratch."""
        self._connected = True
        self._connecting = False

        self._heartbeat.reset()
        self._set_state(GatewayState.AWAITING_HELLO)
        self._delegate.on_connection_established()

    def on_connection_closed(self) -> None:
        self._connected = False
        self._heartbeat.stop()
        self._delegate.on_connection_closed()

        if self._connecting:
            return  # a new connection loop is already running

        if self._intent:
            self._otel_logger.info("Connection lost, reconnecting.")
            self._spawn(self._internal_connect(self._begin_attempt()))
        else:
            self._set_state(GatewayState.IDLE)

    def on_connection_failed(self) -> None:
        self._delegate.on_connection_failed()

    def on_message(self, payload: GatewayPayload) -> None:
        op = payload.opcode

        if op is Opcode.HELLO:
            self._handle_hello(payload)

        elif op is Opcode.HEARTBEAT:
            self._spawn(self.send_opcode_message(Opcode.HEARTBEAT_ACK))

        elif op is Opcode.HEARTBEAT_ACK:
            self._heartbeat.record_ack()
            if self.current_state is GatewayState.IDENTIFYING:
                self._set_state(GatewayState.STEADY)

        elif op is Opcode.DISPATCH:
            self._handle_dispatch(payload)

        elif op is Opcode.RECONNECT:
            self._spawn(self._force_reconnect("gateway requested a reconnect"))

        elif op is Opcode.INVALID_SESSION:
            if payload.d is not True:
                self._forget_session()
            self._spawn(self._force_reconnect("session invalidated"))

        else:
            self._otel_logger.warning(f"Unhandled message: {payload.as_dict()}")

    def _handle_hello(self, payload: GatewayPayload) -> None:
        data = payload.d if isinstance(payload.d, Mapping) else {}
        interval_ms = data.get("heartbeat_interval")

        if not isinstance(interval_ms, (int, float)) or isinstance(interval_ms, bool):
            self._otel_logger.warning(
                f"Heartbeat interval missing in Hello: {payload.as_dict()}"
            )
            interval_ms = DEFAULT_HEARTBEAT_INTERVAL_MS

        # raises when the interval is below the floor; Identify is not sent then
        self._heartbeat.start(interval_ms / 1000)

        self._set_state(GatewayState.IDENTIFYING)
        self._spawn(self.identify())

    def _handle_dispatch(self, payload: GatewayPayload) -> None:
        if payload.s is not None:
            self._sequence = payload.s

        if payload.t == "READY":
            data = payload.d if isinstance(payload.d, Mapping) else {}
            session_id = data.get("session_id")
            if isinstance(session_id, str):
                self._session_id = session_id
                self._otel_logger = self._otel_logger.with_context(session_id=session_id)
            else:
                self._otel_logger.warning("READY dispatch without a session_id")

        if payload.t in ("READY", "RESUMED"):
            self._set_state(GatewayState.STEADY)

        self._delegate.on_message(payload)
        self._dispatches.on_next(payload)

    # ------------------------------------------------------------- #
    async def dispose(self) -> None:
        """Release the connection: cancel timers, close and release the transport."""
        self._intent = False
        self._connecting = False

        self._heartbeat.cancel()
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        await self._socket.disconnect()
        self._socket.dispose()

        self._set_state(GatewayState.IDLE)
        self._state_subject.on_completed()
        self._dispatches.on_completed()
        self._otel_logger.info("Disposed.")
