"""
OpenTelemetry setup for the estimate service.

- One span per delivery-estimate resolution
- Attributes for shop, product, country and outcome
- OTLP export when OTEL_EXPORTER_OTLP_ENDPOINT is set
"""
from __future__ import annotations
from typing import Optional
import os


def setup_otel(
    service_name: str = "estimatrack",
    endpoint: Optional[str] = None,
):
    """Initialize OpenTelemetry with OTLP exporter. Returns a tracer or None."""
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource

        resource = Resource.create({"service.name": service_name})
        provider = TracerProvider(resource=resource)

        otlp_endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if otlp_endpoint:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(provider)
        return trace.get_tracer(service_name)

    except ImportError:
        # Tracing is optional; install the "otel" extra to enable it
        return None


def create_estimate_span(tracer, request_id: str, endpoint: str):
    """Start a span for one estimate resolution, or None without a tracer."""
    if tracer is None:
        return None
    return tracer.start_span(
        "delivery_estimate.resolve",
        attributes={
            "estimate.request_id": request_id,
            "estimate.endpoint": endpoint,
        },
    )


def finish_span(span, status: int, **attributes) -> None:
    """Record the outcome on a span from create_estimate_span and end it."""
    if span is None:
        return
    span.set_attribute("http.status_code", status)
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(f"estimate.{key}", value)
    span.end()
