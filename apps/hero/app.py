# apps/hero/app.py

from typing import Optional

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from apps.hero.config import VERSION, Settings
from apps.hero.routers.metrics_router import router as metrics_router
from apps.hero.routers.webhook_router import router as webhook_router
from apps.hero.services.ledger import SubmissionLedger
from apps.hero.services.projector import RunProjector
from apps.hero.services.span_builder import SpanTreeBuilder
from apps.hero.utils.github_client import GitHubClient
from apps.hero.utils.otel import Telemetry, setup_otel


def create_app(
    settings: Optional[Settings] = None,
    telemetry: Optional[Telemetry] = None,
    client: Optional[GitHubClient] = None,
) -> FastAPI:
    """
    Build the webhook listener.

    Collaborators can be injected (tests); otherwise they are built from the
    environment-backed Settings.
    """
    settings = settings or Settings()

    app = FastAPI(
        title="action-hero",
        description="Projects GitHub Actions workflow runs into OpenTelemetry traces",
        version=VERSION,
    )

    # ------------------------------------------------------------------
    # OpenTelemetry
    # ------------------------------------------------------------------
    if telemetry is None:
        telemetry = setup_otel(settings, app)

    # ------------------------------------------------------------------
    # Prometheus Metrics
    # ------------------------------------------------------------------
    Instrumentator().instrument(app)
    app.include_router(metrics_router)

    # ------------------------------------------------------------------
    # Projection machinery, shared by all requests
    # ------------------------------------------------------------------
    client = client or GitHubClient.from_settings(settings)
    app.state.settings = settings
    app.state.telemetry = telemetry
    app.state.github = client
    app.state.projector = RunProjector(
        client=client,
        builder=SpanTreeBuilder(telemetry.tracer, telemetry.id_generator),
        ledger=SubmissionLedger(settings.LEDGER_DIR),
    )

    app.include_router(webhook_router)

    # ------------------------------------------------------------------
    # Lifecycle Events
    # ------------------------------------------------------------------
    @app.on_event("shutdown")
    async def shutdown_event():
        """Close the GitHub client and drain queued spans."""
        await app.state.github.aclose()
        app.state.telemetry.shutdown()

    @app.get("/healthz")
    def health_check():
        return {"status": "ok", "service": "action-hero"}

    return app
