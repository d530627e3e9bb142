"""Provider setup for gateway telemetry.

:func:`configure_telemetry` builds the tracer and logger providers that a
:class:`~rxgateway.connection.GatewayConnection` accepts, and
:func:`configure_metrics` its meter provider. Nothing here installs global
providers. :func:`get_default_providers` is the console fallback a connection
uses when the application injects no logger provider.
"""

from opentelemetry.sdk._logs import LogRecordProcessor, LoggerProvider
from opentelemetry.sdk._logs.export import (
    BatchLogRecordProcessor,
    LogRecordExporter,
    SimpleLogRecordProcessor,
)
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

from .exporters import ConsoleLogRecordExporter


def _resource(service_name: str, service_version: str) -> Resource:
    return Resource.create(
        {"service.name": service_name, "service.version": service_version}
    )


def _log_processor(exporter: LogRecordExporter, batch: bool) -> LogRecordProcessor:
    # console output should appear as it happens, network exporters prefer batches
    if batch:
        return BatchLogRecordProcessor(exporter)
    return SimpleLogRecordProcessor(exporter)


def configure_telemetry(
    service_name: str = "rxgateway",
    service_version: str = "",
    span_exporter: SpanExporter | None = None,
    log_exporter: LogRecordExporter | None = None,
    batch_logs: bool = True,
) -> tuple[TracerProvider, LoggerProvider]:
    """Build the tracer and logger providers for gateway connections.

    Args:
        service_name: ``service.name`` resource attribute.
        service_version: ``service.version`` resource attribute.
        span_exporter: Receives the ``gateway.transport.open`` spans.
        log_exporter: Receives the connection, transport and heartbeat logs.
        batch_logs: Batch log records before export. Pass False for console
            exporters.

    Example:
        >>> tracer_provider, logger_provider = configure_telemetry(
        ...     service_name="chat-bot",
        ...     log_exporter=ConsoleLogRecordExporter(format="json"),
        ...     batch_logs=False,
        ... )
        >>> connection = GatewayConnection(
        ...     config,
        ...     tracer_provider=tracer_provider,
        ...     logger_provider=logger_provider,
        ... )
    """
    resource = _resource(service_name, service_version)

    tracer_provider = TracerProvider(resource=resource)
    if span_exporter is not None:
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))

    logger_provider = LoggerProvider(resource=resource)
    if log_exporter is not None:
        logger_provider.add_log_record_processor(_log_processor(log_exporter, batch_logs))

    return tracer_provider, logger_provider


def configure_metrics(
    service_name: str = "rxgateway",
    service_version: str = "",
    metric_exporter: MetricExporter | None = None,
    export_interval_ms: int = 60_000,
) -> MeterProvider:
    """Build the meter provider feeding :class:`~rxgateway.telemetry.metrics.GatewayMetrics`.

    Measurements are exported every ``export_interval_ms`` to
    ``metric_exporter``, or printed by a ``ConsoleMetricExporter`` when none
    is given.
    """
    reader = PeriodicExportingMetricReader(
        metric_exporter or ConsoleMetricExporter(),
        export_interval_millis=export_interval_ms,
    )
    return MeterProvider(
        resource=_resource(service_name, service_version), metric_readers=[reader]
    )


_default_providers: tuple[TracerProvider, LoggerProvider] | None = None


def get_default_providers(
    service_name: str = "rxgateway",
) -> tuple[TracerProvider, LoggerProvider]:
    """Return the process-wide console providers, creating them on first use.

    Only the first call's ``service_name`` is used; later calls return the
    same pair.
    """
    global _default_providers

    if _default_providers is None:
        _default_providers = configure_telemetry(
            service_name=service_name,
            log_exporter=ConsoleLogRecordExporter(),
            batch_logs=False,
        )
    return _default_providers
