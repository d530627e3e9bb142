"""Console log-record exporter for gateway components."""

import sys
from collections.abc import Sequence
from typing import Literal, TextIO

from opentelemetry.sdk._logs._internal import ReadableLogRecord
from opentelemetry.sdk._logs.export import (
    LogRecordExporter,
    LogRecordExportResult,
)

from .logger import format_log_record, format_log_record_json

LOG_FORMAT = Literal["text", "json"]


class ConsoleLogRecordExporter(LogRecordExporter):
    """OTel LogRecordExporter that writes CLI-friendly output to a stream.

    OTel's own ConsoleLogExporter prints every record as indented JSON;
    this one keeps a gateway session readable with one line per record, as
    text or as a flat JSON object.

    Example output:
        2026-02-03T10:30:00.000Z INFO  [transport] Gateway:transport: Connecting to wss://...
        2026-02-03T10:30:41.250Z DEBUG [heartbeat] Gateway:heartbeat: Heartbeat sent
    """

    def __init__(self, format: LOG_FORMAT = "text", stream: TextIO | None = None):
        if format not in ("text", "json"):
            raise ValueError(f"Unsupported log format '{format}'.")
        self._format = format
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        # resolved lazily so pytest's stderr capture is honoured
        return self._stream if self._stream is not None else sys.stderr

    def export(self, batch: Sequence[ReadableLogRecord]) -> LogRecordExportResult:
        formatter = format_log_record if self._format == "text" else format_log_record_json
        try:
            for readable_record in batch:
                self.stream.write(formatter(readable_record.log_record))
            self.stream.flush()
            return LogRecordExportResult.SUCCESS
        except (OSError, ValueError):
            return LogRecordExportResult.FAILURE

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        self.stream.flush()
        return True
