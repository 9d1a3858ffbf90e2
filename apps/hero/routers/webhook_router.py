from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from pydantic import ValidationError

from ..config import ProjectionConfig, Settings
from ..models.webhook_models import WorkflowRunEvent
from ..services.ledger import LedgerError, LedgerKeyError
from ..services.projector import RunProjector
from ..utils.github_client import GitHubError

logger = logging.getLogger("hero.webhook")

router = APIRouter(tags=["webhook"])

HERO_WEBHOOK_EVENTS_TOTAL = Counter(
    "hero_webhook_events_total",
    "Webhook deliveries received",
    # event: workflow_run | other | missing (never the raw header value)
    # outcome: projected | skipped | ignored_event | ignored_action | invalid | failed
    ["event", "outcome"],
)

WORKFLOW_RUN_EVENT = "workflow_run"
COMPLETED_ACTION = "completed"


# ------------------------------------------------------------------------------
# Dependencies (overridable in tests)
# ------------------------------------------------------------------------------
def get_projector(request: Request) -> RunProjector:
    return request.app.state.projector


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# ------------------------------------------------------------------------------
# GET /
# ------------------------------------------------------------------------------
@router.get("/", summary="Liveness greeting.")
async def hello_world() -> Response:
    return Response("Hello world!", media_type="text/plain")


# ------------------------------------------------------------------------------
# POST /webhook
# ------------------------------------------------------------------------------
@router.post(
    "/webhook",
    summary="Receive a GitHub workflow_run delivery and project the run.",
    responses={
        202: {"description": "Event type ignored."},
        204: {"description": "Action other than 'completed' ignored."},
        400: {"description": "X-GitHub-Event header missing."},
        422: {"description": "Payload is not a usable workflow_run event."},
        500: {"description": "GitHub API or ledger failure."},
    },
)
async def receive_webhook(
    request: Request,
    x_github_event: Optional[str] = Header(default=None),
    x_github_delivery: Optional[str] = Header(default=None),
    projector: RunProjector = Depends(get_projector),
    settings: Settings = Depends(get_settings),
) -> Any:
    """
    Workflow:
        1. Require the X-GitHub-Event header (400 without it)
        2. Ignore anything but workflow_run events (202)
        3. Validate the payload shape (422)
        4. Ignore actions other than "completed" (204)
        5. Project the run unless the ledger already has it (200)

    GitHub treats non-2xx answers as failed deliveries, so intentionally
    ignored events get 2xx codes that are distinct from a projection.
    """
    if not x_github_event:
        HERO_WEBHOOK_EVENTS_TOTAL.labels(event="missing", outcome="invalid").inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-GitHub-Event header",
        )

    if x_github_event != WORKFLOW_RUN_EVENT:
        logger.info("Ignoring %s event (delivery=%s)", x_github_event, x_github_delivery)
        HERO_WEBHOOK_EVENTS_TOTAL.labels(event="other", outcome="ignored_event").inc()
        return _ignored_event(x_github_event)

    body = await request.body()
    try:
        payload = WorkflowRunEvent.model_validate_json(body)
    except ValidationError as exc:
        logger.warning("Malformed workflow_run payload (delivery=%s): %s", x_github_delivery, exc)
        HERO_WEBHOOK_EVENTS_TOTAL.labels(event=WORKFLOW_RUN_EVENT, outcome="invalid").inc()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid workflow_run payload: {exc.error_count()} error(s)",
        )

    run = payload.workflow_run
    logger.info(
        "%s: %s/%s %s \"%s\" by %s via %s for %s: %s",
        payload.action,
        payload.repository.owner.login,
        payload.repository.name,
        payload.workflow_file,
        run.display_title,
        run.actor.login if run.actor else "unknown",
        run.event,
        run.head_branch,
        run.conclusion,
    )

    if payload.action != COMPLETED_ACTION:
        HERO_WEBHOOK_EVENTS_TOTAL.labels(event=WORKFLOW_RUN_EVENT, outcome="ignored_action").inc()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    config = ProjectionConfig(
        owner=payload.repository.owner.login,
        repository=payload.repository.name,
        workflow=payload.workflow_file,
        devel=settings.DEVEL,
        program_start=settings.program_start,
    )

    try:
        outcome = await projector.project_if_new(config, run, source="webhook")
    except LedgerKeyError as exc:
        # owner/repository/workflow from the payload cannot name a ledger entry
        logger.warning("Unusable run key in delivery %s: %s", x_github_delivery, exc)
        HERO_WEBHOOK_EVENTS_TOTAL.labels(event=WORKFLOW_RUN_EVENT, outcome="invalid").inc()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid workflow_run payload: {exc}",
        )
    except (GitHubError, LedgerError) as exc:
        logger.exception("Failed to project run %s from webhook", run.run_id)
        HERO_WEBHOOK_EVENTS_TOTAL.labels(event=WORKFLOW_RUN_EVENT, outcome="failed").inc()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error projecting run {run.run_id}: {exc}",
        )

    HERO_WEBHOOK_EVENTS_TOTAL.labels(event=WORKFLOW_RUN_EVENT, outcome=outcome.result).inc()
    return _outcome_body(outcome.run_id, outcome.result, outcome.trace_id)


def _ignored_event(event: str) -> Response:
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"status": "ignored", "reason": "event", "event": event},
    )


def _outcome_body(run_id: int, result: str, trace_id: Optional[str]) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": result, "run_id": run_id}
    if trace_id is not None:
        body["trace_id"] = trace_id
    return body
