import os
import logging
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry import _logs as logs

logger = logging.getLogger(__name__)

_tracing_initialized = False


def setup_tracing(force: bool = False) -> bool:
    """
    Initializes OpenTelemetry tracing with an OTLP exporter and logging instrumentation.

    Export is only wired up when an OTLP endpoint is configured (or ``force`` is
    set); otherwise spans stay on the no-op provider.

    Returns:
        True if exporters were installed
    """
    global _tracing_initialized
    if _tracing_initialized:
        return True
    if not force and not os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT"):
        logger.debug("OTEL_EXPORTER_OTLP_ENDPOINT not set; tracing export disabled.")
        return False

    # --- Traces Setup ---
    trace_provider = TracerProvider()
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(trace_provider)

    # --- Logs Setup ---
    log_provider = LoggerProvider()
    log_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter()))
    logs.set_logger_provider(log_provider)

    # Attach the OTel handler to the root logger
    logging.getLogger().addHandler(LoggingHandler(logger_provider=log_provider))

    _tracing_initialized = True
    logger.info("OpenTelemetry tracing initialized with OTLPLogExporter and OTLPSpanExporter.")
    return True


def get_tracer(name: str) -> trace.Tracer:
    """
    Returns a tracer with the specified name.

    Safe to call before setup_tracing(); the tracer resolves through the global
    provider lazily.
    """
    return trace.get_tracer(name)
