import os
import sys
from functools import wraps
from typing import Any, Awaitable, Callable

from opentelemetry import context, trace
from opentelemetry.util.types import Attributes


def start_as_current_span_async(
    tracer: trace.Tracer,
    name: str,
    attributes: Attributes = None,
    record_exception: bool = True,
    set_status_on_exception: bool = True,
):
    """ A decorator like tracer.start_as_current_span, but works for async functions
    """

    def decorator(function: Callable[..., Awaitable[Any]]):
        @wraps(function)
        async def wrapper(*args, **kwargs):
            with tracer.start_as_current_span(
                name=name,
                attributes=attributes,
                record_exception=record_exception,
                set_status_on_exception=set_status_on_exception,
            ):
                return await function(*args, **kwargs)

        return wrapper

    return decorator


def initialize_telemetry():
    """ Installs a TracerProvider exporting spans over OTLP.

    Does nothing unless OTEL_EXPORTER_OTLP_ENDPOINT is set; without a provider the
    opentelemetry API falls back to no-op spans.
    """
    endpoint = os.environ.get('OTEL_EXPORTER_OTLP_ENDPOINT')
    if not endpoint:
        return

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.semconv.resource import ResourceAttributes
    from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

    from rpmlocklib import __version__

    # Additional attributes can be specified in OTEL_RESOURCE_ATTRIBUTES env var
    resource = Resource.create(attributes={
        ResourceAttributes.SERVICE_NAME: "rpmlock",
        ResourceAttributes.SERVICE_VERSION: __version__,
    })
    exporter = OTLPSpanExporter(endpoint=endpoint, headers=os.environ.get('OTEL_EXPORTER_OTLP_HEADERS'))
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    # TRACEPARENT env var is used to propagate trace context
    traceparent = os.environ.get('TRACEPARENT')
    if traceparent:
        ctx = TraceContextTextMapPropagator().extract(carrier={'traceparent': traceparent})
        context.attach(ctx)
        print(f"Use TRACEPARENT {traceparent} for telemetry", file=sys.stderr)
