from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from prometheus_client import Counter, Histogram

from ..config import ProjectionConfig
from ..models.github_models import WorkflowJob, WorkflowRun
from ..utils.github_client import GitHubClient
from .ledger import SubmissionLedger
from .log_excerpt import extract_error_excerpt
from .span_builder import SpanTreeBuilder, jobs_needing_logs
from .time_normalizer import normalize_run

logger = logging.getLogger("hero.projector")

# --------------------------------------------------------------------------
# Prometheus metrics
# --------------------------------------------------------------------------

HERO_RUNS_PROJECTED_TOTAL = Counter(
    "hero_runs_projected_total",
    "Runs considered for projection",
    ["source", "result"],  # result: projected | skipped | in_progress | failed
)

HERO_PROJECTION_DURATION_SECONDS = Histogram(
    "hero_projection_duration_seconds",
    "Time to fetch jobs/logs and build the span tree of one run",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)


@dataclass
class ProjectionOutcome:
    run_id: int
    result: str  # projected | skipped | in_progress | failed
    trace_id: Optional[str] = None
    error: Optional[str] = None


class RunProjector:
    """
    Projects workflow runs into traces.

    Used identically by the polling loop (CLI) and the webhook listener:
      - project(): fetch jobs + failure logs, build the span tree, return
        the hex trace id
      - project_if_new(): the same, gated on and recorded in the ledger
      - poll_and_project(): the most recent N runs, one at a time

    All network calls for a run complete before its first span is opened, so
    a failure aborts the projection without emitting a partial tree and
    without a ledger entry; the run is retried on the next cycle.
    """

    def __init__(
        self,
        client: GitHubClient,
        builder: SpanTreeBuilder,
        ledger: SubmissionLedger,
    ) -> None:
        self.client = client
        self.builder = builder
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Single run
    # ------------------------------------------------------------------

    async def _collect_excerpts(
        self,
        config: ProjectionConfig,
        jobs: List[WorkflowJob],
    ) -> Dict[int, str]:
        excerpts: Dict[int, str] = {}
        for job_id in jobs_needing_logs(jobs):
            text = await self.client.fetch_log(config, job_id)
            excerpts[job_id] = extract_error_excerpt(text)
            logger.debug("Job %s failure excerpt: %r", job_id, excerpts[job_id])
        return excerpts

    async def project(self, config: ProjectionConfig, run: WorkflowRun) -> str:
        started = time.time()
        run = normalize_run(run, config.program_start, config.devel)
        if run.offset:
            logger.debug("Run %s re-based by %s", run.run_id, run.offset)

        jobs = await self.client.list_jobs(config, run)
        excerpts = await self._collect_excerpts(config, jobs)

        # no suspension points below: the tree is assembled in one go
        root = self.builder.open_run(config, run)
        try:
            self.builder.add_jobs(root, run, jobs, excerpts)
        finally:
            # the root is closed exactly once, even when a child fails
            trace_id = self.builder.close_run(root, run)

        HERO_PROJECTION_DURATION_SECONDS.observe(time.time() - started)
        logger.info(
            "Projected run %s (%d jobs) as trace %s",
            run.run_id,
            len(jobs),
            trace_id,
        )
        return trace_id

    async def project_if_new(
        self,
        config: ProjectionConfig,
        run: WorkflowRun,
        source: str = "poll",
    ) -> ProjectionOutcome:
        """
        Project a run unless the ledger says it was already submitted.

        Errors propagate to the caller; the ledger is only written after
        the span tree has been handed to the tracer.
        """
        key = config.run_key(run.run_id)

        if self.ledger.has_submitted(key):
            logger.info("Run %s already submitted, skipping", run.run_id)
            HERO_RUNS_PROJECTED_TOTAL.labels(source=source, result="skipped").inc()
            return ProjectionOutcome(run_id=run.run_id, result="skipped")

        try:
            trace_id = await self.project(config, run)
        except Exception:
            HERO_RUNS_PROJECTED_TOTAL.labels(source=source, result="failed").inc()
            raise

        self.ledger.mark_submitted(key, trace_id)
        HERO_RUNS_PROJECTED_TOTAL.labels(source=source, result="projected").inc()
        return ProjectionOutcome(run_id=run.run_id, result="projected", trace_id=trace_id)

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    async def poll_and_project(
        self,
        config: ProjectionConfig,
        count: int,
    ) -> List[ProjectionOutcome]:
        """
        Project the `count` most recent runs of the workflow.

        Runs are processed strictly in sequence. A run that fails is logged
        and left out of the ledger; the cycle carries on with the next one.
        Runs that have not completed yet are skipped without a ledger entry
        so a later cycle picks them up once they finish.
        """
        runs = await self.client.list_runs(config, count)
        logger.info("Found %d runs for %s/%s %s", len(runs), config.owner, config.repository, config.workflow)

        outcomes: List[ProjectionOutcome] = []
        for run in runs:
            if not run.is_completed:
                logger.info("Run %s is %s, not projecting yet", run.run_id, run.status)
                HERO_RUNS_PROJECTED_TOTAL.labels(source="poll", result="in_progress").inc()
                outcomes.append(ProjectionOutcome(run_id=run.run_id, result="in_progress"))
                continue

            try:
                outcome = await self.project_if_new(config, run, source="poll")
            except Exception as exc:  # noqa: BLE001
                logger.exception("Failed to project run %s", run.run_id)
                outcome = ProjectionOutcome(run_id=run.run_id, result="failed", error=str(exc))

            outcomes.append(outcome)

        return outcomes
