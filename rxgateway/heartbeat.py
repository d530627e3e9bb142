"""Heartbeat monitor keeping a gateway connection alive.

The peer announces the interval in its Hello message. Once started, the
monitor sleeps for that interval, sends a heartbeat and repeats until it is
stopped or superseded by a newer :meth:`HeartbeatMonitor.start` call.

A heartbeat that is still unacknowledged when the next one is due means the
connection died silently; the monitor then stops and reports the missed ack.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from .mechanism import HeartbeatIntervalError
from .telemetry import GatewayMetrics, OTelLogger
from .utils import GenerationToken

# Minimum interval at which the monitor is willing to run, to not spam the peer.
MINIMUM_HEARTBEAT_INTERVAL = 10.0


class HeartbeatMonitor:
    """Cancellable repeating heartbeat timer tied to a generation token.

    Parameters
    ----------
    send : Callable[[], Awaitable[bool]]
        Writes one heartbeat message, returning whether it was written.
    on_missed_ack : Callable[[], None]
        Invoked once when a heartbeat went unacknowledged for a full interval.
    logger : OTelLogger
        Destination for monitor logs.
    metrics : GatewayMetrics | None
        Optional instruments for sent/missed heartbeats and ack latency.
    sleep, clock
        Injectable ``asyncio.sleep`` and ``time.monotonic`` replacements.
    minimum_interval : float
        Floor in seconds below which :meth:`start` refuses to run.
    """

    def __init__(
        self,
        send: Callable[[], Awaitable[bool]],
        on_missed_ack: Callable[[], None],
        logger: OTelLogger,
        metrics: GatewayMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        minimum_interval: float = MINIMUM_HEARTBEAT_INTERVAL,
    ):
        self._send = send
        self._on_missed_ack = on_missed_ack
        self._log = logger
        self._metrics = metrics
        self._sleep = sleep
        self._clock = clock
        self.minimum_interval = minimum_interval

        self._token: GenerationToken | None = None
        self._task: asyncio.Task | None = None

        self.interval: float | None = None
        self.last_ack_time: float | None = None
        self._last_sent_time: float | None = None
        self._awaiting_ack = False

    @property
    def is_running(self) -> bool:
        return self._token is not None

    @property
    def awaiting_ack(self) -> bool:
        """Whether the most recent heartbeat has not been acknowledged yet."""
        return self._awaiting_ack

    def start(self, interval: float | None) -> None:
        """Start a new monitor generation, retiring any previous one.

        Args:
            interval: Seconds between heartbeats, as negotiated with the peer.

        Raises:
            HeartbeatIntervalError: if ``interval`` is unset or below
                :attr:`minimum_interval`. No monitor runs afterwards.
        """
        token = GenerationToken("heartbeat")
        self._token = token

        if not interval or interval < self.minimum_interval:
            self._token = None
            self._log.error(
                f"Refusing heartbeat interval {interval!r}s"
                f" (minimum {self.minimum_interval}s)"
            )
            raise HeartbeatIntervalError(
                interval, self.minimum_interval, source=self._log.source
            )

        self.interval = interval
        self._awaiting_ack = False
        self._last_sent_time = None

        self._log.debug(f"Heartbeat monitor started, interval {interval:.2f}s")
        self._task = asyncio.create_task(self._run(token))

    def stop(self) -> None:
        """Retire the current generation; its next wake-up exits silently."""
        self._token = None

    def cancel(self) -> None:
        """Stop and cancel the pending wake-up right away."""
        self.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def reset(self) -> None:
        """Forget negotiated state ahead of a fresh handshake."""
        self.stop()
        self.interval = None
        self.last_ack_time = None
        self._last_sent_time = None
        self._awaiting_ack = False

    def record_ack(self) -> None:
        """Record that the peer acknowledged a heartbeat."""
        now = self._clock()
        if self._awaiting_ack and self._last_sent_time is not None and self._metrics:
            self._metrics.record_latency(now - self._last_sent_time)

        self.last_ack_time = now
        self._awaiting_ack = False

    async def _run(self, token: GenerationToken) -> None:
        while True:
            await self._sleep(self.interval)  # type: ignore[arg-type]

            if self._token is not token:
                return  # the monitor was stopped or restarted

            if self._awaiting_ack:
                self._log.warning(
                    f"No heartbeat ack within {self.interval:.2f}s, connection is stale"
                )
                if self._metrics:
                    self._metrics.record_missed_heartbeat()
                self._token = None
                self._on_missed_ack()
                return

            self._awaiting_ack = True
            self._last_sent_time = self._clock()
            if await self._send():
                self._log.debug("Heartbeat sent")
                if self._metrics:
                    self._metrics.record_heartbeat()
