"""Tracing setup and the span helper used by the messaging and workflow layers."""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from salesflow.context import get_correlation_id, get_workspace_id


_exporters_configured = False
_provider: TracerProvider | None = None


def _tracer_provider(service_name: str) -> TracerProvider:
    global _provider

    if _provider is None:
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.namespace": "salesflow",
                "service.version": os.getenv("APP_VERSION", "0.1.0"),
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(service_name: str, enable: bool) -> TracerProvider | None:
    global _exporters_configured

    if not enable:
        return None

    provider = _tracer_provider(service_name)
    if _exporters_configured:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_configured = True
    return provider


def setup_inmemory_otel(service_name: str = "salesflow-api") -> InMemorySpanExporter:
    """Attach an in-memory exporter; tests read finished spans from it."""
    exporter = InMemorySpanExporter()
    _tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def _attribute_value(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


@contextmanager
def domain_span(tracer_name: str, span_name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Start a span stamped with the ambient correlation and workspace ids.

    ``None`` attributes are skipped; UUIDs are written as strings.
    """
    tracer = trace.get_tracer(tracer_name)
    with tracer.start_as_current_span(span_name) as span:
        correlation_id = get_correlation_id()
        if correlation_id:
            span.set_attribute("correlation_id", correlation_id)
        workspace_id = attributes.pop("workspace_id", None) or get_workspace_id()
        if workspace_id:
            span.set_attribute("workspace_id", str(workspace_id))
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, _attribute_value(value))
        yield span


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = dict(scope.get("headers", []))
        for header, attribute in ((b"x-correlation-id", "correlation_id"), (b"x-workspace-id", "workspace_id")):
            raw = headers.get(header)
            if raw:
                span.set_attribute(attribute, raw.decode("latin-1"))

    return server_request_hook
