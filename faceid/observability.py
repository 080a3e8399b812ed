"""
Observability and monitoring setup for the face verification session.
"""

import asyncio
from functools import wraps
from typing import Callable, Optional

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = structlog.get_logger()

# Global tracer and meter
tracer: Optional[trace.Tracer] = None
meter: Optional[metrics.Meter] = None

# Metrics instruments
enrollment_counter: Optional[metrics.Counter] = None
verification_counter: Optional[metrics.Counter] = None
similarity_histogram: Optional[metrics.Histogram] = None
model_load_duration: Optional[metrics.Histogram] = None


def setup_observability(
    service_name: str = "faceid-session",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False
) -> None:
    """
    Set up OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the service for tracing
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint for trace/metric export
        enable_console_export: Whether to enable console export for development
    """
    global tracer, meter
    global enrollment_counter, verification_counter, similarity_histogram, model_load_duration

    logger.info(
        "Setting up observability",
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint
    )

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
    })

    trace_provider = TracerProvider(resource=resource)
    if otlp_endpoint:
        trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    if enable_console_export:
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    metric_readers = []
    if otlp_endpoint:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
                export_interval_millis=30000  # 30 seconds
            )
        )
    if enable_console_export:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=ConsoleMetricExporter(),
                export_interval_millis=60000  # 60 seconds
            )
        )

    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))
    meter = metrics.get_meter(__name__)

    enrollment_counter = meter.create_counter(
        name="face_enrollments_total",
        description="Total number of face enrollment scans",
        unit="1"
    )

    verification_counter = meter.create_counter(
        name="face_verifications_total",
        description="Total number of face verification scans",
        unit="1"
    )

    similarity_histogram = meter.create_histogram(
        name="face_verification_similarity_percent",
        description="Similarity percentages of completed verifications",
        unit="%"
    )

    model_load_duration = meter.create_histogram(
        name="face_model_load_duration_seconds",
        description="Face model load duration in seconds",
        unit="s"
    )

    logger.info("Observability setup completed")


def instrument_fastapi_app(app) -> None:
    """
    Instrument FastAPI application with OpenTelemetry.

    Args:
        app: FastAPI application instance
    """
    if tracer is None:
        logger.warning("Tracer not initialized, call setup_observability() first")
        return

    FastAPIInstrumentor.instrument_app(app)
    LoggingInstrumentor().instrument(set_logging_format=True)

    logger.info("FastAPI application instrumented with OpenTelemetry")


def trace_function(operation_name: Optional[str] = None):
    """
    Decorator to trace function execution.

    Args:
        operation_name: Optional custom operation name for the span
    """
    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        def _record_failure(span, e: Exception) -> None:
            span.record_exception(e)
            span.set_attribute("success", False)
            span.set_attribute("error.type", type(e).__name__)

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            if tracer is None:
                return await func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            if tracer is None:
                return func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_enrollment_metrics(outcome: str, processing_time: float) -> None:
    """
    Record metrics for an enrollment scan.

    Args:
        outcome: "enrolled", "no_face" or the error type name
        processing_time: Time taken for the scan in seconds
    """
    if enrollment_counter is None:
        return

    enrollment_counter.add(1, {"outcome": outcome})
    logger.info("Enrollment metrics recorded", outcome=outcome, processing_time=processing_time)


def record_verification_metrics(
    outcome: str,
    processing_time: float,
    similarity_percent: Optional[int]
) -> None:
    """
    Record metrics for a verification scan.

    Args:
        outcome: "accepted", "rejected", "no_face" or the error type name
        processing_time: Time taken for the scan in seconds
        similarity_percent: Similarity to the enrolled signature (if compared)
    """
    if verification_counter is None:
        return

    verification_counter.add(1, {"outcome": outcome})
    if similarity_percent is not None and similarity_histogram is not None:
        similarity_histogram.record(similarity_percent, {"outcome": outcome})

    logger.info(
        "Verification metrics recorded",
        outcome=outcome,
        processing_time=processing_time,
        similarity_percent=similarity_percent
    )


def record_model_load_metrics(state: str, processing_time: float) -> None:
    """Record how long a model load took and how it ended."""
    if model_load_duration is None:
        return

    model_load_duration.record(processing_time, {"state": state})
