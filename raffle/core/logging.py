"""Logging and tracing for the raffle service.

State operations log under ``raffle.*`` and open spans named
``raffle.state.<operation>``; spans are only exported when
``RAFFLE_OTEL_ENABLED`` is set.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from raffle.core.config import Settings


def configure_logging(settings: Settings) -> logging.Logger:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"raffle": {"format": settings.log_format}},
            "handlers": {
                "console": {"class": "logging.StreamHandler", "formatter": "raffle"},
            },
            "loggers": {
                "raffle": {"level": level},
                # pool reconnects are noisy at INFO
                "asyncpg": {"level": max(level, logging.WARNING)},
            },
            "root": {"handlers": ["console"], "level": level},
        }
    )
    logger = logging.getLogger("raffle")
    logger.info(
        "Starting %s (%s) with %s storage",
        settings.app_name,
        settings.environment,
        settings.storage_backend,
    )
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Export state operation spans over OTLP/HTTP when tracing is enabled."""

    if not settings.otel_enabled:
        return None
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        # a provider can only be installed once per process
        return None

    exporter = (
        OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
        if settings.otel_exporter_otlp_endpoint
        else OTLPSpanExporter()
    )
    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": settings.otel_service_name, "deployment.environment": settings.environment}
        )
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    if provider is not None:
        provider.shutdown()
