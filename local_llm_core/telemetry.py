"""OpenTelemetry setup for local-llm-core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from fastapi import FastAPI
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from local_llm_core.config import Settings


class InferenceMetrics(Protocol):
    """Per-request inference metrics recorder contract."""

    def record(
        self,
        *,
        operation: str,
        model: str,
        status: str,
        input_count: int,
        tokens: int | None,
        duration_ms: float,
    ) -> None:
        """Record a single embeddings or chat request measurement."""


@dataclass(slots=True)
class NoopInferenceMetrics:
    """No-op implementation used when telemetry is disabled."""

    def record(
        self,
        *,
        operation: str,
        model: str,
        status: str,
        input_count: int,
        tokens: int | None,
        duration_ms: float,
    ) -> None:
        del operation, model, status, input_count, tokens, duration_ms


@dataclass(slots=True)
class OTelInferenceMetrics:
    """OpenTelemetry-backed inference metrics recorder."""

    request_counter: object
    input_items_counter: object
    duration_histogram: object
    tokens_histogram: object

    def record(
        self,
        *,
        operation: str,
        model: str,
        status: str,
        input_count: int,
        tokens: int | None,
        duration_ms: float,
    ) -> None:
        attributes = {"operation": operation, "model": model, "status": status}
        self.request_counter.add(1, attributes=attributes)
        self.input_items_counter.add(max(0, input_count), attributes=attributes)
        self.duration_histogram.record(max(0.0, duration_ms), attributes=attributes)
        if tokens is not None:
            self.tokens_histogram.record(max(0, tokens), attributes=attributes)


def resolve_otlp_endpoint(endpoint: str, signal: str) -> str:
    """Normalize a collector endpoint to the OTLP path of ``signal`` (traces, metrics)."""
    cleaned = endpoint.rstrip("/")
    suffix = f"/v1/{signal}"
    if cleaned.endswith(suffix):
        return cleaned
    return f"{cleaned}{suffix}"


@dataclass(slots=True)
class TelemetryRuntime:
    """Holds telemetry runtime state for app lifespan."""

    enabled: bool = False
    tracer_provider: TracerProvider | None = None
    meter_provider: MeterProvider | None = None
    instrumentor: FastAPIInstrumentor | None = None
    inference_metrics: InferenceMetrics = field(default_factory=NoopInferenceMetrics)


def setup_telemetry(app: FastAPI, settings: Settings) -> TelemetryRuntime:
    """Initialize OpenTelemetry SDK and FastAPI instrumentation."""
    if not settings.telemetry.enabled:
        return TelemetryRuntime()

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.service_version,
        }
    )
    tracer_provider = TracerProvider(
        resource=resource,
        sampler=TraceIdRatioBased(settings.telemetry.sample_ratio),
    )
    headers = settings.telemetry.otlp_headers or None

    exporter = OTLPSpanExporter(
        endpoint=resolve_otlp_endpoint(settings.telemetry.otlp_endpoint, "traces"),
        headers=headers,
        timeout=settings.telemetry.otlp_timeout_seconds,
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(
            endpoint=resolve_otlp_endpoint(settings.telemetry.otlp_endpoint, "metrics"),
            headers=headers,
            timeout=settings.telemetry.otlp_timeout_seconds,
        ),
        export_interval_millis=settings.telemetry.metrics_export_interval_ms,
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    meter = meter_provider.get_meter(settings.service_name)

    inference_metrics = OTelInferenceMetrics(
        request_counter=meter.create_counter(
            name="local_llm_core_requests_total",
            unit="1",
            description="Count of inference requests by operation, model and status.",
        ),
        input_items_counter=meter.create_counter(
            name="local_llm_core_input_items_total",
            unit="1",
            description="Texts embedded or prompts processed.",
        ),
        duration_histogram=meter.create_histogram(
            name="local_llm_core_request_duration_ms",
            unit="ms",
            description="Latency of inference requests.",
        ),
        tokens_histogram=meter.create_histogram(
            name="local_llm_core_request_tokens",
            unit="1",
            description="Estimated token count per inference request.",
        ),
    )

    instrumentor = FastAPIInstrumentor()
    instrumentor.instrument_app(
        app,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
    )

    return TelemetryRuntime(
        enabled=True,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        instrumentor=instrumentor,
        inference_metrics=inference_metrics,
    )


def shutdown_telemetry(app: FastAPI, runtime: TelemetryRuntime) -> None:
    """Shutdown OpenTelemetry instrumentation/export pipeline."""
    if not runtime.enabled:
        return

    if runtime.instrumentor is not None:
        runtime.instrumentor.uninstrument_app(app)

    if runtime.meter_provider is not None:
        runtime.meter_provider.shutdown()

    if runtime.tracer_provider is not None:
        runtime.tracer_provider.shutdown()
