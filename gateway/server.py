from typing import Dict, Sequence

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from gateway.routes import router
from gateway.vars import GATEWAY_STAGE, OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME


def parse_otlp_headers(raw: str) -> Dict[str, str]:
    """Parse ``key=value,key2=value2`` into exporter headers."""
    headers = {}
    for item in (raw or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip().lower()] = value.strip()
    return headers


app = FastAPI(title=SERVICE_NAME)
instrumentator = Instrumentator(excluded_handlers=["/health", "/metrics"])

instrumentator.instrument(app).expose(app)


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops ASGI send/receive spans.

    Every proxied response would otherwise add a body span per chunk, and
    bootstrap routes multiply that by their internal calls.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type")
                in ("http.response.body", "http.response.start", "http.request")
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(
        resource=Resource.create(
            {"service.name": SERVICE_NAME, "deployment.environment": GATEWAY_STAGE}
        )
    )
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=parse_otlp_headers(OTLP_HEADERS) or None,
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")

app_info = Info("gateway_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME, "stage": GATEWAY_STAGE})

app.include_router(router)
