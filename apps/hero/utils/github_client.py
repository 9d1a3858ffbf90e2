from __future__ import annotations

import logging
from typing import List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import VERSION, ProjectionConfig, Settings
from ..models.github_models import JobsResponse, RunsResponse, WorkflowJob, WorkflowRun

logger = logging.getLogger("hero.github")

M = TypeVar("M", bound=BaseModel)

# GitHub caps per_page at 100.
MAX_PAGE_SIZE = 100


class GitHubError(Exception):
    """Base class for everything that can go wrong talking to GitHub."""
    pass


class GitHubTransportError(GitHubError):
    """
    The request never produced a response (DNS, TLS, connection reset,
    timeout, ...).
    """
    pass


class GitHubApiError(GitHubError):
    """GitHub answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Error response from GitHub API: HTTP {status_code} for {url}")


class GitHubDecodeError(GitHubError):
    """The response body did not have the expected JSON shape."""
    pass


class GitHubClient:
    """
    Read-only client for the GitHub Actions REST API.

    Thin on purpose:
      - no retries or backoff (a failed run is retried on the next poll
        cycle or webhook redelivery)
      - every response is decoded into the typed models or rejected with
        GitHubDecodeError
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": f"action-hero/v{VERSION}",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        # Log downloads answer 302 Found with a pre-signed storage URL.
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubClient":
        return cls(
            token=settings.require_token(),
            base_url=settings.GITHUB_API_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal HTTP helpers
    # ------------------------------------------------------------------

    async def _get(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        logger.debug("GET %s params=%s", url, params)
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise GitHubTransportError(f"Request to {url} failed: {exc}") from exc

        if response.status_code != 200:
            logger.warning("GitHub API returned HTTP %s for %s", response.status_code, url)
            logger.debug("Response body: %s", response.text[:500])
            raise GitHubApiError(response.status_code, url)

        return response

    @staticmethod
    def _decode(response: httpx.Response, model: Type[M]) -> M:
        try:
            return model.model_validate_json(response.content)
        except ValidationError as exc:
            raise GitHubDecodeError(
                f"Unexpected response shape from {response.request.url}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_runs(self, config: ProjectionConfig, count: int) -> List[WorkflowRun]:
        """
        Most recent `count` runs of the workflow, newest first.
        """
        logger.info("List Runs for Workflow %s", config.workflow)
        count = max(1, min(count, MAX_PAGE_SIZE))
        url = (
            f"/repos/{config.owner}/{config.repository}"
            f"/actions/workflows/{config.workflow}/runs"
        )
        response = await self._get(url, params={"per_page": count, "page": 1})
        body = self._decode(response, RunsResponse)
        return body.workflow_runs[:count]

    async def list_jobs(self, config: ProjectionConfig, run: WorkflowRun) -> List[WorkflowJob]:
        """
        Every job of the run, in API order.

        Runs with large matrices span several pages; pages are requested
        until total_count jobs have been collected or a page comes back
        empty.
        """
        logger.info("List Jobs in Run %s", run.run_id)
        url = f"/repos/{config.owner}/{config.repository}/actions/runs/{run.run_id}/jobs"

        jobs: List[WorkflowJob] = []
        page = 1
        while True:
            response = await self._get(url, params={"per_page": MAX_PAGE_SIZE, "page": page})
            body = self._decode(response, JobsResponse)
            jobs.extend(body.jobs)
            if not body.jobs or len(jobs) >= body.total_count:
                break
            page += 1

        if len(jobs) < body.total_count:
            logger.warning(
                "Run %s reports %d jobs but only %d were listed",
                run.run_id,
                body.total_count,
                len(jobs),
            )
        return jobs

    async def fetch_log(self, config: ProjectionConfig, job_id: int) -> str:
        """
        Raw plain-text log of one job.
        """
        logger.info("Retrieve logs for job %s", job_id)
        url = f"/repos/{config.owner}/{config.repository}/actions/jobs/{job_id}/logs"
        response = await self._get(url)
        return response.text
