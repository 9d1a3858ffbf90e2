# =============================================================================
# Shared test fixtures
# =============================================================================

from typing import Any, Dict, List, Optional

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from apps.hero.config import ProjectionConfig
from apps.hero.models.github_models import WorkflowJob, WorkflowRun
from apps.hero.services.ledger import SubmissionLedger
from apps.hero.services.span_builder import SpanTreeBuilder
from apps.hero.utils.otel import SeededIdGenerator, Telemetry


# =============================================================================
# Telemetry: a local provider exporting into memory
# =============================================================================

@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def telemetry(span_exporter) -> Telemetry:
    # Local provider only; never touch the global tracer provider in tests.
    id_generator = SeededIdGenerator()
    provider = TracerProvider(id_generator=id_generator)
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return Telemetry(provider=provider, id_generator=id_generator)


@pytest.fixture
def builder(telemetry) -> SpanTreeBuilder:
    return SpanTreeBuilder(telemetry.tracer, telemetry.id_generator)


@pytest.fixture
def ledger(tmp_path) -> SubmissionLedger:
    return SubmissionLedger(tmp_path / "records")


@pytest.fixture
def config() -> ProjectionConfig:
    return ProjectionConfig(owner="octo", repository="widgets", workflow="check.yaml")


# =============================================================================
# GitHub payload builders
# =============================================================================

def run_payload(run_id: int = 42, **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": run_id,
        "run_number": 7,
        "run_attempt": 1,
        "name": "Check",
        "display_title": "Fix the widget",
        "head_branch": "main",
        "event": "pull_request",
        "status": "completed",
        "conclusion": "success",
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-01T00:05:00Z",
        "html_url": f"https://github.com/octo/widgets/actions/runs/{run_id}",
        "path": ".github/workflows/check.yaml",
        "actor": {"login": "hubot"},
    }
    payload.update(overrides)
    return payload


def step_payload(
    name: str,
    number: int,
    conclusion: Optional[str] = "success",
    started_at: Optional[str] = "2024-01-01T00:01:00Z",
    completed_at: Optional[str] = "2024-01-01T00:02:00Z",
) -> Dict[str, Any]:
    return {
        "name": name,
        "number": number,
        "status": "completed",
        "conclusion": conclusion,
        "started_at": started_at,
        "completed_at": completed_at,
    }


def job_payload(
    job_id: int = 1001,
    steps: Optional[List[Dict[str, Any]]] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    payload = {
        "id": job_id,
        "run_id": 42,
        "name": "Build and Test",
        "head_branch": "main",
        "status": "completed",
        "conclusion": "success",
        "started_at": "2024-01-01T00:00:30Z",
        "completed_at": "2024-01-01T00:04:30Z",
        "html_url": f"https://github.com/octo/widgets/actions/runs/42/job/{job_id}",
        "steps": steps if steps is not None else [],
    }
    payload.update(overrides)
    return payload


def make_run(run_id: int = 42, **overrides: Any) -> WorkflowRun:
    return WorkflowRun.model_validate(run_payload(run_id, **overrides))


def make_job(job_id: int = 1001, steps=None, **overrides: Any) -> WorkflowJob:
    return WorkflowJob.model_validate(job_payload(job_id, steps, **overrides))


class FakeGitHub:
    """
    Stands in for GitHubClient in projector tests and records every call.
    """

    def __init__(
        self,
        runs: Optional[List[WorkflowRun]] = None,
        jobs: Optional[Dict[int, List[WorkflowJob]]] = None,
        logs: Optional[Dict[int, str]] = None,
        fail_jobs_for: Optional[Dict[int, Exception]] = None,
    ) -> None:
        self.runs = runs or []
        self.jobs = jobs or {}
        self.logs = logs or {}
        self.fail_jobs_for = fail_jobs_for or {}
        self.calls: List[tuple] = []

    async def list_runs(self, config, count):
        self.calls.append(("list_runs", count))
        return self.runs[:count]

    async def list_jobs(self, config, run):
        self.calls.append(("list_jobs", run.run_id))
        if run.run_id in self.fail_jobs_for:
            raise self.fail_jobs_for[run.run_id]
        return self.jobs.get(run.run_id, [])

    async def fetch_log(self, config, job_id):
        self.calls.append(("fetch_log", job_id))
        return self.logs.get(job_id, "")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.calls.append(("aclose",))
