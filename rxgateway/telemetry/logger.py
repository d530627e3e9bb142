"""Structured OTel logging for gateway components.

Every component logs through an :class:`OTelLogger` bound to a source name
(``"Gateway:transport"``) and a :class:`LogContext` of gateway dimensions
(service, component, endpoint, session). The formatting helpers at the bottom
render emitted records for :class:`~rxgateway.telemetry.exporters.ConsoleLogRecordExporter`.
"""

import json
import time
from dataclasses import dataclass, fields, replace
from datetime import UTC, datetime
from typing import Any

from opentelemetry._logs import Logger, LogRecord, SeverityNumber

# OTel attribute key of each LogContext field
_CONTEXT_KEYS = {
    "service": "service.name",
    "component": "component.name",
    "endpoint": "gateway.endpoint",
    "session_id": "gateway.session_id",
}

_SEVERITY_TEXT = {
    SeverityNumber.DEBUG: "DEBUG",
    SeverityNumber.INFO: "INFO",
    SeverityNumber.WARN: "WARN",
    SeverityNumber.ERROR: "ERROR",
}


@dataclass(frozen=True)
class LogContext:
    """Gateway dimensions attached to every record of an :class:`OTelLogger`.

    Empty fields are left out of the emitted attributes.
    """

    service: str = ""
    component: str = ""
    endpoint: str = ""
    session_id: str = ""

    def as_attributes(self) -> dict[str, str]:
        attrs: dict[str, str] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value:
                attrs[_CONTEXT_KEYS[f.name]] = value
        return attrs

    def child(self, **overrides: str) -> "LogContext":
        return replace(self, **overrides)


class OTelLogger:
    """Emits OTel log records on behalf of one gateway component.

    Parameters
    ----------
    logger : Logger
        Obtained from ``LoggerProvider.get_logger()``.
    source : str
        Stored as the ``log.source`` attribute of every record.
    context : LogContext | None
        Dimensions added to every record.
    min_severity : SeverityNumber | None
        Records below this severity are dropped before reaching the provider.

    Example:
        >>> log = OTelLogger(provider.get_logger("rxgateway"), source="Gateway")
        >>> log.info("Connecting", attempt=3)
        >>> heartbeat_log = log.with_context(source="Gateway:heartbeat", component="heartbeat")
    """

    def __init__(
        self,
        logger: Logger,
        source: str,
        context: LogContext | None = None,
        min_severity: SeverityNumber | None = None,
    ):
        self._logger = logger
        self._source = source
        self._context = context if context is not None else LogContext()
        self._min_severity = min_severity

    @property
    def source(self) -> str:
        return self._source

    @property
    def context(self) -> LogContext:
        return self._context

    def log(self, severity: SeverityNumber, message: str, **attrs: Any) -> None:
        if self._min_severity is not None and severity.value < self._min_severity.value:
            return

        attributes: dict[str, Any] = {"log.source": self._source}
        attributes.update(self._context.as_attributes())
        attributes.update(attrs)

        self._logger.emit(
            LogRecord(
                timestamp=time.time_ns(),
                body=message,
                severity_text=_SEVERITY_TEXT.get(severity, severity.name),
                severity_number=severity,
                attributes=attributes,
            )
        )

    def debug(self, message: str, **attrs: Any) -> None:
        self.log(SeverityNumber.DEBUG, message, **attrs)

    def info(self, message: str, **attrs: Any) -> None:
        self.log(SeverityNumber.INFO, message, **attrs)

    def warning(self, message: str, **attrs: Any) -> None:
        self.log(SeverityNumber.WARN, message, **attrs)

    def error(self, message: str, **attrs: Any) -> None:
        self.log(SeverityNumber.ERROR, message, **attrs)

    def exception(self, message: str, error: BaseException, **attrs: Any) -> None:
        """Log at ERROR, describing ``error`` with the OTel ``exception.*`` attributes."""
        attrs.setdefault("exception.type", type(error).__name__)
        attrs.setdefault("exception.message", str(error))
        self.log(SeverityNumber.ERROR, message, **attrs)

    def with_context(self, source: str | None = None, **overrides: str) -> "OTelLogger":
        """Derive a logger sharing the same OTel logger.

        ``source`` replaces the source name; the remaining keywords override
        :class:`LogContext` fields.
        """
        return OTelLogger(
            self._logger,
            source=source or self._source,
            context=self._context.child(**overrides),
            min_severity=self._min_severity,
        )


# ---------------- console rendering ---------------- #
def _iso_time(record: LogRecord) -> str:
    stamp = datetime.fromtimestamp((record.timestamp or 0) / 1e9, tz=UTC)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_log_record(record: LogRecord) -> str:
    """Render a record as one console line::

        2026-02-03T10:30:00.000Z INFO  [transport] Gateway:transport: Connecting to wss://...
    """
    attrs = record.attributes or {}
    component = attrs.get("component.name")
    where = f"[{component}] " if component else ""
    return (
        f"{_iso_time(record)} {record.severity_text or '':<5} "
        f"{where}{attrs.get('log.source', '?')}: {record.body}\n"
    )


def format_log_record_json(record: LogRecord) -> str:
    """Render a record as a single JSON object with the attributes flattened in."""
    line: dict[str, Any] = {
        "time": _iso_time(record),
        "level": record.severity_text,
        "message": record.body,
    }
    line.update(record.attributes or {})
    return json.dumps(line, default=str) + "\n"
