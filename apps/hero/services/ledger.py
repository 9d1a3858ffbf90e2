from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

from ..config import RunKey

logger = logging.getLogger("hero.ledger")


class LedgerError(Exception):
    """
    Raised when the ledger directory cannot be read or written, or when a
    key would escape the ledger root.
    """
    pass


class LedgerKeyError(LedgerError):
    """A run key component that cannot name a ledger directory."""
    pass


def _check_component(value: str) -> str:
    if not value or value in (".", "..") or "/" in value or os.sep in value:
        raise LedgerKeyError(f"Invalid ledger path component: {value!r}")
    return value


class SubmissionLedger:
    """
    Records which runs have already been projected.

    Layout: <root>/<owner>/<repository>/<workflow>/<run-id>, one marker file
    per run. Presence of the file is the only signal; its content (the hex
    trace id) is for humans and is never read back.

    This is best effort, not exactly-once. has_submitted() followed by
    mark_submitted() is not atomic, so two concurrent projections of the
    same run (a redelivered webhook, or a webhook racing a poll cycle) can
    both pass the check. Outside development mode both submissions carry the
    same trace id and the backend merges them.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _directory(self, key: RunKey) -> Path:
        return (
            self.root
            / _check_component(key.owner)
            / _check_component(key.repository)
            / _check_component(key.workflow)
        )

    def marker_path(self, key: RunKey) -> Path:
        return self._directory(key) / str(key.run_id)

    def has_submitted(self, key: RunKey) -> bool:
        directory = self._directory(key)
        try:
            # first use against a new owner/repository/workflow
            directory.mkdir(parents=True, exist_ok=True)
            return (directory / str(key.run_id)).exists()
        except OSError as exc:
            raise LedgerError(f"Ledger unavailable at {directory}: {exc}") from exc

    def mark_submitted(self, key: RunKey, trace_id: str) -> None:
        directory = self._directory(key)
        path = directory / str(key.run_id)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LedgerError(f"Ledger unavailable at {directory}: {exc}") from exc

        try:
            # "x" fails if the marker exists, shrinking the duplicate window
            with open(path, "x", encoding="utf-8") as f:
                f.write(trace_id + "\n")
        except FileExistsError:
            logger.warning("Run %s already marked as submitted at %s", key.run_id, path)
            return
        except OSError as exc:
            raise LedgerError(f"Failed to write ledger marker {path}: {exc}") from exc

        logger.debug("Marked run %s as submitted (trace_id=%s)", key.run_id, trace_id)
