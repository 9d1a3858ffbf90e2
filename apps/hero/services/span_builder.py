"""
Projection of one workflow run into a three-level span tree.

    Run  (root, trace id derived from the run)
    └── Job       one per job, in API order
        └── Step  one per step, in execution order

Parents are passed explicitly: every OpenSpan keeps a reference to its
parent and children are started with a context built from that parent, never
from the ambient "current span". Nothing here performs I/O; log excerpts for
failed steps are fetched by the projector beforehand and passed in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import Span, Status, StatusCode
from prometheus_client import Counter

from ..config import ProjectionConfig
from ..models.github_models import WorkflowJob, WorkflowRun, WorkflowStep
from ..utils.otel import SeededIdGenerator
from .time_normalizer import shift, to_epoch_ns
from .trace_identity import derive_trace_id, format_trace_id

logger = logging.getLogger("hero.span_builder")

HERO_SPANS_EMITTED_TOTAL = Counter(
    "hero_spans_emitted_total",
    "Spans closed by the span tree builder",
    ["layer"],  # Run | Job | Step
)

FAILURE_CONCLUSION = "failure"


@dataclass
class OpenSpan:
    """A span that has been started but not yet ended."""
    span: Span
    layer: str
    parent: Optional["OpenSpan"] = None

    def context(self) -> Context:
        """Context to start children of this span with."""
        return trace.set_span_in_context(self.span, Context())

    @property
    def trace_id(self) -> int:
        return self.span.get_span_context().trace_id

    @property
    def span_id(self) -> int:
        return self.span.get_span_context().span_id

    def end(self, end_ns: int) -> None:
        self.span.end(end_time=end_ns)
        HERO_SPANS_EMITTED_TOTAL.labels(layer=self.layer).inc()


def _end_after(start: datetime, end: Optional[datetime], fallback: datetime) -> datetime:
    """End timestamp that is present, or the fallback, but never before start."""
    candidate = end if end is not None else fallback
    return candidate if candidate >= start else start


class SpanTreeBuilder:
    """
    Builds the span tree of one run on an OpenTelemetry tracer.

    Usage (the projector drives the sequence):
        root = builder.open_run(config, run)
        builder.add_jobs(root, run, jobs, excerpts)
        trace_id = builder.close_run(root, run)
    """

    def __init__(self, tracer: trace.Tracer, id_generator: SeededIdGenerator) -> None:
        self.tracer = tracer
        self.id_generator = id_generator

    # ------------------------------------------------------------------
    # Run (root) layer
    # ------------------------------------------------------------------

    def open_run(self, config: ProjectionConfig, run: WorkflowRun) -> OpenSpan:
        trace_id = derive_trace_id(config.run_key(run.run_id), devel=config.devel)
        start = shift(run.created_at, run.offset)

        attributes = {
            "layer": "Run",
            "owner": config.owner,
            "repository": config.repository,
            "workflow": config.workflow,
            "run_id": run.run_id,
            "run_number": run.run_number,
            "run_attempt": run.run_attempt,
            "status": run.status,
            "html_url": run.html_url,
            "event": run.event,
            "display_title": run.display_title,
        }
        if run.conclusion is not None:
            attributes["conclusion"] = run.conclusion
        if run.head_branch:
            attributes["head_branch"] = run.head_branch
        if run.actor is not None:
            attributes["actor"] = run.actor.login

        # An empty context: the root never inherits whatever span happens to
        # be current (e.g. the webhook request span).
        with self.id_generator.seeded(trace_id):
            span = self.tracer.start_span(
                run.name,
                context=Context(),
                attributes=attributes,
                start_time=to_epoch_ns(start),
            )

        root = OpenSpan(span=span, layer="Run")
        if root.trace_id != trace_id:
            logger.warning(
                "Root span for run %s did not take the derived trace id (tracer not backed by SeededIdGenerator?)",
                run.run_id,
            )
        logger.debug("Opened root span for run %s trace_id=%s", run.run_id, format_trace_id(trace_id))
        return root

    def close_run(self, root: OpenSpan, run: WorkflowRun) -> str:
        start = shift(run.created_at, run.offset)
        finish = _end_after(start, shift(run.updated_at, run.offset), start)
        root.end(to_epoch_ns(finish))
        return format_trace_id(root.trace_id)

    # ------------------------------------------------------------------
    # Job + Step layers
    # ------------------------------------------------------------------

    def add_jobs(
        self,
        root: OpenSpan,
        run: WorkflowRun,
        jobs: List[WorkflowJob],
        excerpts: Optional[Mapping[int, str]] = None,
    ) -> None:
        excerpts = excerpts or {}
        run_finish = shift(run.updated_at, run.offset)

        for job in jobs:
            self._add_job(root, run, job, excerpts.get(job.job_id, ""), run_finish)

    def _add_job(
        self,
        root: OpenSpan,
        run: WorkflowRun,
        job: WorkflowJob,
        excerpt: str,
        run_finish: datetime,
    ) -> None:
        job_start = shift(job.started_at, run.offset)
        job_finish = _end_after(
            job_start,
            shift(job.completed_at, run.offset) if job.completed_at else None,
            run_finish,
        )
        logger.debug("%s: %s (%s)", job.name, job.status, job_finish - job_start)

        attributes = {
            "layer": "Job",
            "job_id": job.job_id,
            "conclusion": job.conclusion or "",
            "status": job.status,
            "head_branch": job.head_branch or "",
            "html_url": job.html_url,
        }
        span = self.tracer.start_span(
            job.name,
            context=root.context(),
            attributes=attributes,
            start_time=to_epoch_ns(job_start),
        )
        job_span = OpenSpan(span=span, layer="Job", parent=root)

        for step in job.steps:
            self._add_step(job_span, run, job_start, step, excerpt, run_finish)

        # children are all closed; now the job
        job_span.end(to_epoch_ns(job_finish))

    def _add_step(
        self,
        job_span: OpenSpan,
        run: WorkflowRun,
        job_start: datetime,
        step: WorkflowStep,
        excerpt: str,
        run_finish: datetime,
    ) -> None:
        step_start = shift(step.started_at, run.offset) if step.started_at else job_start
        step_finish = _end_after(
            step_start,
            shift(step.completed_at, run.offset) if step.completed_at else None,
            run_finish,
        )
        logger.debug(
            "    %s: %s, %s", step.name, step.status, step_finish - step_start
        )

        attributes = {
            "layer": "Step",
            "status": step.status,
            "conclusion": step.conclusion or "",
        }
        span = self.tracer.start_span(
            step.name,
            context=job_span.context(),
            attributes=attributes,
            start_time=to_epoch_ns(step_start),
        )

        if step.conclusion == FAILURE_CONCLUSION:
            span.set_status(Status(StatusCode.ERROR, "Step failed"))
            span.set_attribute("exception.message", excerpt)

        OpenSpan(span=span, layer="Step", parent=job_span).end(to_epoch_ns(step_finish))


def jobs_needing_logs(jobs: List[WorkflowJob]) -> Dict[int, WorkflowJob]:
    """Jobs with at least one failed step, keyed by job id."""
    return {job.job_id: job for job in jobs if job.has_failed_step()}
