from typing import Optional, Sequence

from fastapi import FastAPI, Request
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

from cors_gateway.config import ProxyConfig, load_config
from cors_gateway.errors import GatewayError
from cors_gateway.proxy.composer import error_response
from cors_gateway.proxy.cors import AllowAnyOriginMiddleware
from cors_gateway.proxy.route import build_route
from cors_gateway.proxy.upstream import ClientFactory
from cors_gateway.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    Relayed bodies would otherwise produce one span per chunk.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def _configure_tracing(app: FastAPI) -> None:
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    tracer_provider = trace.get_tracer_provider()
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
        )

        # Wrap exporter with filtering to remove noisy ASGI body spans
        filtering_exporter = FilteringSpanExporter(otlp_exporter)
        tracer_provider.add_span_processor(BatchSpanProcessor(filtering_exporter))

    FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics")


def create_app(
    config: ProxyConfig,
    client_factory: Optional[ClientFactory] = None,
    instrument: bool = False,
) -> FastAPI:
    """Build the gateway application around an immutable configuration."""
    app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)

    if instrument:
        # /metrics must be registered before the catch-all proxy route
        Instrumentator().instrument(app).expose(app)
        _configure_tracing(app)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(_request: Request, exc: GatewayError):
        return error_response(exc)

    app.router.routes.append(build_route(config, client_factory))
    app.add_middleware(AllowAnyOriginMiddleware)
    return app


app = create_app(load_config(), instrument=True)

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})
