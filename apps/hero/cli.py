"""
Command-line entry point.

    hero poll OWNER/REPO WORKFLOW [--count N] [--devel]
    hero listen [--host HOST] [--port PORT]

`poll` projects the most recent runs of one workflow and exits; `listen`
serves the webhook receiver. Both read GITHUB_TOKEN from the environment.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from apps.hero.config import VERSION, ProjectionConfig, Settings
from apps.hero.services.ledger import LedgerError, SubmissionLedger
from apps.hero.services.projector import ProjectionOutcome, RunProjector
from apps.hero.services.span_builder import SpanTreeBuilder
from apps.hero.utils.github_client import GitHubClient, GitHubError
from apps.hero.utils.otel import Telemetry, setup_otel

logger = logging.getLogger("hero.cli")


def build_parser() -> argparse.ArgumentParser:
    # options shared by every subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: HERO_LOG_LEVEL or INFO)",
    )
    common.add_argument(
        "--devel",
        action="store_true",
        default=None,
        help="Enable development mode: re-base timestamps to now and use per-process trace ids",
    )
    common.add_argument(
        "--ledger-dir",
        default=None,
        help="Directory recording already-submitted runs (default: HERO_LEDGER_DIR or ./records)",
    )

    parser = argparse.ArgumentParser(
        prog="hero",
        description=(
            "Retrieve workflow runs from GitHub Actions and send them to "
            "OpenTelemetry as spans and traces."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s v{VERSION}")

    sub = parser.add_subparsers(dest="command", required=True)

    poll = sub.add_parser("poll", parents=[common], help="Project the most recent runs of a workflow")
    poll.add_argument(
        "repository",
        help='GitHub organization and repository, in the form "owner/repo"',
    )
    poll.add_argument(
        "workflow",
        help='Workflow to present as traces, typically a file name such as "check.yaml"',
    )
    poll.add_argument(
        "--count",
        type=int,
        default=None,
        help="Number of most recent runs to consider (default: HERO_RUN_COUNT or 10)",
    )

    listen = sub.add_parser("listen", parents=[common], help="Receive workflow_run webhooks")
    listen.add_argument("--host", default=None)
    listen.add_argument("--port", type=int, default=None)

    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    if args.log_level:
        settings.LOG_LEVEL = args.log_level
    if args.devel is not None:
        settings.DEVEL = args.devel
    if args.ledger_dir:
        settings.LEDGER_DIR = args.ledger_dir
    if getattr(args, "count", None) is not None:
        settings.RUN_COUNT = max(1, args.count)
    if getattr(args, "host", None) is not None:
        settings.HOST = args.host
    if getattr(args, "port", None) is not None:
        settings.PORT = args.port
    return settings


async def run_poll(
    settings: Settings,
    config: ProjectionConfig,
    telemetry: Telemetry,
    client: Optional[GitHubClient] = None,
) -> List[ProjectionOutcome]:
    client = client or GitHubClient.from_settings(settings)
    async with client:
        projector = RunProjector(
            client=client,
            builder=SpanTreeBuilder(telemetry.tracer, telemetry.id_generator),
            ledger=SubmissionLedger(settings.LEDGER_DIR),
        )
        return await projector.poll_and_project(config, settings.RUN_COUNT)


def _print_outcomes(outcomes: List[ProjectionOutcome]) -> None:
    for outcome in outcomes:
        line = f"{outcome.run_id}: {outcome.result}"
        if outcome.trace_id:
            line += f" trace_id={outcome.trace_id}"
        if outcome.error:
            line += f" error={outcome.error}"
        print(line)


def _poll(settings: Settings, args: argparse.Namespace) -> int:
    config = ProjectionConfig.from_slug(
        args.repository,
        args.workflow,
        devel=settings.DEVEL,
        program_start=settings.program_start,
    )
    settings.require_token()

    telemetry = setup_otel(settings)
    try:
        outcomes = asyncio.run(run_poll(settings, config, telemetry))
    finally:
        # Ensure all spans are exported before the program exits
        telemetry.shutdown()

    _print_outcomes(outcomes)
    return 1 if any(o.result == "failed" for o in outcomes) else 0


def _listen(settings: Settings) -> int:
    import uvicorn

    from apps.hero.app import create_app

    settings.require_token()
    app = create_app(settings)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = apply_overrides(Settings(), args)

    try:
        if args.command == "poll":
            return _poll(settings, args)
        return _listen(settings)
    except (GitHubError, LedgerError) as exc:
        logger.error("%s", exc)
        return 1
    except (ValueError, RuntimeError) as exc:
        print(f"hero: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
