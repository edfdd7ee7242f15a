from __future__ import annotations

import sys

from fastapi import FastAPI
from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .settings import BillingSettings, billing_settings


def setup_logging(settings: BillingSettings | None = None, sink=sys.stdout) -> None:
    """Configure Loguru for consistent, structured service logs."""
    settings = settings or billing_settings()
    logger.remove()
    logger.add(
        sink=sink,
        level=settings.log_level.upper(),
        backtrace=False,
        diagnose=False,
        colorize=False,
        serialize=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
               "<level>{message}</level> | {extra}",
    )
    logger.info("Logging configured for {}", settings.service_name)


def setup_instrumentation(app: FastAPI, settings: BillingSettings | None = None) -> None:
    """Attach OpenTelemetry tracing when an OTLP endpoint is configured. Idempotent."""
    settings = settings or billing_settings()
    if not settings.otel_endpoint:
        return
    if not isinstance(trace.get_tracer_provider(), (trace.NoOpTracerProvider, trace.ProxyTracerProvider)):
        logger.info("OpenTelemetry instrumentation already initialized, skipping")
        return

    resource = Resource(attributes={SERVICE_NAME: settings.service_name})
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_endpoint)))
    trace.set_tracer_provider(tracer_provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
    app.state.tracer_provider = tracer_provider
    logger.bind(endpoint=settings.otel_endpoint).info("OpenTelemetry instrumentation configured")


def shutdown_instrumentation(app: FastAPI) -> None:
    tracer_provider = getattr(app.state, "tracer_provider", None)
    if tracer_provider is not None:
        tracer_provider.shutdown()
        logger.info("OpenTelemetry instrumentation shut down")
