from datetime import datetime, timedelta, timezone

from ..models.github_models import WorkflowRun

# Re-based runs appear to have started this long before the tool itself.
DEVEL_LOOKBACK = timedelta(minutes=10)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def compute_offset(
    created_at: datetime,
    program_start: datetime,
    devel: bool,
) -> timedelta:
    """
    Offset added to every timestamp of one run.

    In development mode historical runs are moved so they look like they
    started DEVEL_LOOKBACK before program_start; otherwise timestamps are
    left untouched.
    """
    if not devel:
        return timedelta(0)
    return program_start - created_at - DEVEL_LOOKBACK


def normalize_run(
    run: WorkflowRun,
    program_start: datetime,
    devel: bool,
) -> WorkflowRun:
    offset = compute_offset(run.created_at, program_start, devel)
    return run.model_copy(update={"offset": offset})


def shift(ts: datetime, offset: timedelta) -> datetime:
    return ts + offset


def to_epoch_ns(ts: datetime) -> int:
    """
    Integer nanoseconds since the Unix epoch, as OpenTelemetry expects.

    Computed with timedelta integer arithmetic so that durations between
    two timestamps survive the conversion exactly.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ((ts - _EPOCH) // timedelta(microseconds=1)) * 1000
