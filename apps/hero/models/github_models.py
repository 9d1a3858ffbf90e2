from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field


# The same WorkflowRun object shape is returned by the "list workflow runs"
# endpoint and delivered inside the workflow_run webhook payload, so both
# paths decode into these models.


class WorkflowActor(BaseModel):
    login: str


class WorkflowStep(BaseModel):
    """
    One ordered action within a Job.

    Timestamps are absent for steps that have not started yet.
    """
    name: str
    number: Optional[int] = None
    status: str
    conclusion: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkflowJob(BaseModel):
    """
    One unit of work within a Run, with its steps in execution order.
    """
    job_id: int = Field(..., alias="id")
    run_id: Optional[int] = None
    name: str
    head_branch: Optional[str] = None
    status: str
    conclusion: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    html_url: str = ""
    steps: List[WorkflowStep] = Field(default_factory=list)

    def has_failed_step(self) -> bool:
        return any(step.conclusion == "failure" for step in self.steps)


class WorkflowRun(BaseModel):
    """
    One execution of a workflow.

    `offset` is not part of the API response: it is computed by the time
    normalizer and added to every timestamp belonging to this run.
    """
    run_id: int = Field(..., alias="id")
    run_number: int
    run_attempt: int = 1
    name: str
    display_title: str = ""
    head_branch: Optional[str] = None
    event: str = ""
    status: str
    conclusion: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    html_url: str = ""
    path: str = ""
    actor: Optional[WorkflowActor] = None

    offset: timedelta = Field(default=timedelta(0), exclude=True)

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class RunsResponse(BaseModel):
    total_count: int = 0
    workflow_runs: List[WorkflowRun]


class JobsResponse(BaseModel):
    total_count: int = 0
    jobs: List[WorkflowJob]
