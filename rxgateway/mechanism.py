"""Core error types for :mod:`rxgateway`."""


class GatewayException(Exception):
    """Base class for all rxgateway exceptions."""

    def __init__(self, exception: Exception, source: str = "Unknown", note: str = ""):
        super().__init__(f"<{source}> {note}: {exception}")
        self.exception = exception
        self.source = source
        self.note = note

    def __str__(self):
        return f"<{self.source}> {self.note}: {self.exception}"


class HeartbeatIntervalError(GatewayException):
    """The peer negotiated a heartbeat interval the monitor refuses to run at."""

    def __init__(self, interval: float | None, minimum: float, source: str = "Unknown"):
        super().__init__(
            ValueError(
                f"Unwilling to start the heartbeat monitor: interval {interval!r}s"
                f" is below the {minimum}s floor"
            ),
            source=source,
            note="HeartbeatMonitor.start",
        )
        self.interval = interval
        self.minimum = minimum


class PayloadError(GatewayException):
    """An inbound envelope could not be decoded."""

    def __init__(self, reason: str, source: str = "payload"):
        super().__init__(ValueError(reason), source=source, note="decode")
