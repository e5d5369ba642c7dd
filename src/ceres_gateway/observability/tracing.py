"""OpenTelemetry tracer provider for resolver reporting spans."""

from __future__ import annotations

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from ceres_gateway.config.settings import AppSettings

logger = structlog.get_logger(__name__)

DISABLED_EXPORTERS = frozenset({"", "none", "off"})


def _exporter(kind: str, endpoint: str | None) -> SpanExporter:
    if kind == "otlp":
        return OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()
    if kind == "console":
        return ConsoleSpanExporter()
    raise ValueError(f"Unsupported span exporter {kind!r}")


def build_tracer_provider(settings: AppSettings) -> TracerProvider | None:
    """Build the provider described by ``settings.observability.telemetry``.

    Returns ``None`` when span export is switched off. Sampling follows the
    caller's decision when a parent span is propagated.
    """
    telemetry = settings.observability.telemetry
    kind = telemetry.exporter.lower()
    if kind in DISABLED_EXPORTERS:
        return None
    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.version,
            "deployment.environment": settings.environment.value,
        }
    )
    provider = TracerProvider(
        resource=resource, sampler=ParentBased(TraceIdRatioBased(telemetry.sample_ratio))
    )
    provider.add_span_processor(BatchSpanProcessor(_exporter(kind, telemetry.endpoint)))
    return provider


def configure_tracing(settings: AppSettings) -> TracerProvider | None:
    provider = build_tracer_provider(settings)
    if provider is None:
        logger.info("gateway.tracing.disabled")
        return None
    trace.set_tracer_provider(provider)
    logger.info(
        "gateway.tracing.configured",
        exporter=settings.observability.telemetry.exporter,
        sample_ratio=settings.observability.telemetry.sample_ratio,
    )
    return provider


__all__ = ["build_tracer_provider", "configure_tracing"]
