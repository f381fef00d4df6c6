import logging
import os
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor

logger = logging.getLogger(__name__)

TRACER_NAME = "recommendation-engine"


@contextmanager
def repository_span(operation: str, **attributes: Any):
    """
    Create an OpenTelemetry span around a Repository call.

    Usage:
        with repository_span("get_candidate_items", max_candidates=500) as span:
            items = await repository.get_candidate_items(...)
            span.set_attribute("db.repository.results_count", len(items))

    Args:
        operation: Repository method name (e.g., "get_co_likers")
        **attributes: Additional span attributes (e.g., user_id, limit)

    Yields:
        The active span, allowing additional attributes to be set after the call
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        f"repository.{operation}",
        kind=trace.SpanKind.CLIENT,
    ) as span:
        span.set_attribute("db.system", "repository")
        span.set_attribute("db.operation", operation)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"db.repository.{key}", value)
        try:
            yield span
        except Exception as e:
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def setup_tracing(app, service_name: str = "recommendation-api"):
    """
    setup opentelemetry tracing with an otlp exporter.
    """
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        processor = BatchSpanProcessor(exporter)
        provider.add_span_processor(processor)
    except Exception as e:
        # if the collector isn't reachable, just log and continue without tracing export
        logger.warning(f"Tracing export disabled (OTLP collector not available): {e}")

    trace.set_tracer_provider(provider)

    # auto-instrument fastapi
    FastAPIInstrumentor.instrument_app(app)

    # auto-instrument redis (cache backend)
    RedisInstrumentor().instrument()

    return trace.get_tracer(service_name)
