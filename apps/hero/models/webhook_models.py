from typing import Optional

from pydantic import BaseModel, Field

from .github_models import WorkflowRun


class WebhookOwner(BaseModel):
    login: str


class WebhookRepository(BaseModel):
    name: str
    full_name: Optional[str] = None
    owner: WebhookOwner


class WorkflowRunEvent(BaseModel):
    """
    Body of a GitHub `workflow_run` webhook delivery.

    Only the fields needed to project the run are modelled; everything
    else in the payload is ignored.
    """
    action: str = Field(..., description="requested | in_progress | completed")
    repository: WebhookRepository
    workflow_run: WorkflowRun

    @property
    def workflow_file(self) -> str:
        """
        Workflow key used for trace identity and the ledger.

        The payload carries the workflow path (".github/workflows/check.yaml");
        polling addresses workflows by file name, so both paths agree on the
        last path component.
        """
        path = self.workflow_run.path.split("@", 1)[0]
        return path.rsplit("/", 1)[-1] if path else self.workflow_run.name
