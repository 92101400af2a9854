"""Logging and OpenTelemetry setup for PlumbTix."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from plumbtix.core.config import Settings

# Library loggers that flood INFO with per-request and per-statement lines.
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")

_provider: TracerProvider | None = None


def logging_config(settings: Settings) -> dict[str, Any]:
    level = settings.log_level.upper()
    if not isinstance(logging.getLevelName(level), int):
        level = "INFO"

    loggers: dict[str, dict[str, Any]] = {name: {"level": "WARNING"} for name in QUIET_LOGGERS}
    loggers["plumbtix"] = {"level": level}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"plain": {"format": settings.log_format}},
        "handlers": {"stderr": {"class": "logging.StreamHandler", "formatter": "plain"}},
        "loggers": loggers,
        "root": {"handlers": ["stderr"], "level": level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    dictConfig(logging_config(settings))
    return logging.getLogger("plumbtix")


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install a global tracer provider exporting over OTLP/HTTP.

    Returns ``None`` when tracing is disabled or a provider is already
    installed. Exporter headers are read by the exporter itself from
    ``OTEL_EXPORTER_OTLP_HEADERS``.
    """

    global _provider

    if _provider is not None or not settings.otel_enabled:
        return None

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _provider:
        _provider = None
