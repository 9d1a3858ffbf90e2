from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

VERSION = "0.3.0"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "y")


class Settings:
    """
    Centralized action-hero configuration.

    Backed by environment variables so the same binary can poll from a
    laptop or run as a webhook receiver without code changes. Built once at
    startup (by the CLI or the app factory) and passed down explicitly;
    nothing in services/ reads the environment.

    Fields:
      - GITHUB_TOKEN: bearer token for the GitHub REST API
      - GITHUB_API_URL: API base URL (GitHub Enterprise installs differ)
      - HERO_LEDGER_DIR: root directory of the submission ledger
      - HERO_DEVEL: development mode (re-based timestamps, per-process trace ids)
      - OTel_Endpoint: OTLP gRPC endpoint of the collector
    """

    def __init__(self) -> None:
        # ------------------------------------------------------------------
        # GitHub API
        # ------------------------------------------------------------------
        self.GITHUB_TOKEN: Optional[str] = os.getenv("GITHUB_TOKEN")
        self.GITHUB_API_URL: str = os.getenv(
            "GITHUB_API_URL", "https://api.github.com"
        ).rstrip("/")
        self.HTTP_TIMEOUT_SECONDS: float = float(
            os.getenv("HERO_HTTP_TIMEOUT_SECONDS", "30")
        )

        # ------------------------------------------------------------------
        # Projection
        # ------------------------------------------------------------------
        self.LEDGER_DIR: str = os.getenv("HERO_LEDGER_DIR", "records")
        self.DEVEL: bool = _env_bool("HERO_DEVEL")
        self.RUN_COUNT: int = int(os.getenv("HERO_RUN_COUNT", "10"))

        # ------------------------------------------------------------------
        # Telemetry / logging
        # ------------------------------------------------------------------
        self.LOG_LEVEL: str = os.getenv("HERO_LOG_LEVEL", "INFO")
        self.OTel_Endpoint: str = os.getenv(
            "OTEL_EXPORTER_OTLP_ENDPOINT",
            "http://localhost:4317",
        )
        self.SERVICE_NAME: str = os.getenv("OTEL_SERVICE_NAME", "github-actions")

        # ------------------------------------------------------------------
        # Webhook listener
        # ------------------------------------------------------------------
        self.HOST: str = os.getenv("HERO_HOST", "127.0.0.1")
        self.PORT: int = int(os.getenv("HERO_PORT", "8080"))

        # Development mode re-bases every run relative to this instant.
        self.program_start: datetime = datetime.now(timezone.utc)

        if self.RUN_COUNT < 1:
            self.RUN_COUNT = 1

    @property
    def OTEL_ENDPOINT(self) -> str:
        return self.OTel_Endpoint

    def require_token(self) -> str:
        if not self.GITHUB_TOKEN:
            raise RuntimeError("GITHUB_TOKEN environment variable not set")
        return self.GITHUB_TOKEN


@dataclass(frozen=True)
class RunKey:
    """Identifies one run for trace identity and ledger purposes."""

    owner: str
    repository: str
    workflow: str
    run_id: int


@dataclass(frozen=True)
class ProjectionConfig:
    """
    Which workflow to project and how.

    `workflow` is the workflow file name (e.g. "check.yaml"), which is what
    the GitHub API accepts in place of a numeric workflow id.
    """

    owner: str
    repository: str
    workflow: str
    devel: bool = False
    program_start: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def run_key(self, run_id: int) -> RunKey:
        return RunKey(self.owner, self.repository, self.workflow, run_id)

    @classmethod
    def from_slug(
        cls,
        slug: str,
        workflow: str,
        *,
        devel: bool = False,
        program_start: Optional[datetime] = None,
    ) -> "ProjectionConfig":
        """Build from an "owner/repo" slug as typed on the command line."""
        owner, sep, repository = slug.partition("/")
        if not sep or not owner or not repository or "/" in repository:
            raise ValueError(
                f'Repository must be specified in the form "owner/repo", got {slug!r}'
            )
        return cls(
            owner=owner,
            repository=repository,
            workflow=workflow,
            devel=devel,
            program_start=program_start or datetime.now(timezone.utc),
        )
