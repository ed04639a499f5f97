"""OpenTelemetry tracing bootstrap."""

from __future__ import annotations

import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

_configured = False


def _otlp_endpoint() -> str | None:
    return os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT") or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")


def configure_tracing(*, service_name: str) -> bool:
    """Install an OTLP/HTTP span exporter when an endpoint is configured.

    Returns ``True`` only on the call that installed the exporter. Without an
    endpoint spans stay on the no-op provider, unless ``OTEL_TRACES_EXPORTER``
    asks for an exporter, in which case a ``RuntimeError`` is raised.
    """

    global _configured
    if _configured:
        return False

    requested = (os.getenv("OTEL_TRACES_EXPORTER") or "").strip().lower()
    endpoint = _otlp_endpoint()
    if requested == "none" or (not endpoint and not requested):
        _configured = True
        return False
    if not endpoint:
        raise RuntimeError(
            f"OTEL_TRACES_EXPORTER={requested} needs OTEL_EXPORTER_OTLP_ENDPOINT "
            "(or OTEL_EXPORTER_OTLP_TRACES_ENDPOINT); set OTEL_TRACES_EXPORTER=none to disable."
        )

    name = (os.getenv("OTEL_SERVICE_NAME") or service_name).strip()
    if not name:
        raise RuntimeError("service_name must be a non-empty string")

    provider = TracerProvider(resource=Resource.create({"service.name": name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(provider)
    _configured = True
    return True


def reset_tracing_state() -> None:
    """Forget a previous ``configure_tracing`` call; used by tests."""
    global _configured
    _configured = False


__all__ = ["configure_tracing", "reset_tracing_state"]
