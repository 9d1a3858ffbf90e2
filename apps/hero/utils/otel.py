"""
OpenTelemetry setup for action-hero.

- Configures the OTLP exporter (gRPC) to the collector.
- Installs a seeded id generator so a run's root span can carry the
  deterministic trace id derived for it.
- Optionally instruments the FastAPI webhook listener + logging.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from fastapi import FastAPI

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.id_generator import RandomIdGenerator

from ..config import VERSION, Settings

logger = logging.getLogger("hero.otel")

TRACER_NAME = "hero.projection"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class SeededIdGenerator(RandomIdGenerator):
    """
    Id generator that hands out a caller-chosen trace id exactly while a
    seed is active on the calling thread.

    The SDK only asks for a trace id when starting a span without a valid
    parent, i.e. for root spans. Seeding around the creation of a run's root
    span gives that span (and every child, which inherits it) the derived
    trace id; span ids stay random. Roots started on other threads while a
    seed is active (e.g. request spans of the webhook listener) keep random
    trace ids.
    """

    def __init__(self) -> None:
        self._local = threading.local()

    @contextmanager
    def seeded(self, trace_id: int) -> Iterator[None]:
        self._local.pending = trace_id
        try:
            yield
        finally:
            self._local.pending = None

    def generate_trace_id(self) -> int:
        pending: Optional[int] = getattr(self._local, "pending", None)
        if pending is not None:
            return pending
        return super().generate_trace_id()


@dataclass
class Telemetry:
    """
    Process-wide tracing handles.

    The provider must be shut down before exit so the batch processor drains
    every queued span.
    """
    provider: TracerProvider
    id_generator: SeededIdGenerator

    @property
    def tracer(self) -> trace.Tracer:
        return self.provider.get_tracer(TRACER_NAME, VERSION)

    def shutdown(self) -> None:
        logger.info("Flushing spans before exit")
        self.provider.force_flush()
        self.provider.shutdown()


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def setup_otel(settings: Settings, app: Optional[FastAPI] = None) -> Telemetry:
    """
    Configure OpenTelemetry for action-hero.

    Reads the OTLP endpoint and service name from `settings`:
      - OTEL_EXPORTER_OTLP_ENDPOINT (default: http://localhost:4317)
      - OTEL_SERVICE_NAME (default: github-actions)
    """

    # 1) TracerProvider with resource
    resource = Resource.create(
        {
            "service.name": settings.SERVICE_NAME,
            "service.version": VERSION,
        }
    )

    id_generator = SeededIdGenerator()
    provider = TracerProvider(resource=resource, id_generator=id_generator)
    trace.set_tracer_provider(provider)

    # 2) OTLP gRPC exporter
    span_exporter = OTLPSpanExporter(
        endpoint=settings.OTEL_ENDPOINT,
        insecure=settings.OTEL_ENDPOINT.startswith("http://"),
    )

    span_processor = BatchSpanProcessor(span_exporter)
    provider.add_span_processor(span_processor)

    # 3) Instrument FastAPI (webhook listener only) and logging
    if app is not None:
        FastAPIInstrumentor().instrument_app(app, tracer_provider=provider)

    LoggingInstrumentor().instrument(
        set_logging_format=False,
        tracer_provider=provider,
    )

    # 4) Configure Python logging root level (INFO by default)
    configure_logging(settings.LOG_LEVEL)

    logger.info("[OTEL] OTLP gRPC exporter -> %s", settings.OTEL_ENDPOINT)

    return Telemetry(provider=provider, id_generator=id_generator)
