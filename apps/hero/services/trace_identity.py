"""
Deterministic trace identity for a workflow run.

The same (owner, repository, workflow, run) tuple always maps to the same
128-bit trace id, so re-projecting a run after a crash or a lost ledger
lands in the same trace on the backend. Development mode mixes the process
id into the digest so repeated local runs produce separate traces.
"""

from __future__ import annotations

import hashlib
import os
from typing import Optional

from opentelemetry.trace import format_trace_id as _otel_format_trace_id

from ..config import RunKey


def _identity_input(key: RunKey) -> bytes:
    return f"{key.owner}:{key.repository}:{key.workflow}:{key.run_id}".encode("utf-8")


def derive_trace_id(
    key: RunKey,
    devel: bool = False,
    pid: Optional[int] = None,
) -> int:
    hasher = hashlib.sha256()
    hasher.update(_identity_input(key))

    if devel:
        if pid is None:
            pid = os.getpid()
        hasher.update((pid & 0xFFFFFFFF).to_bytes(4, "little"))

    # Trace ids are 128 bits: keep the first half of the 256-bit digest.
    return int.from_bytes(hasher.digest()[:16], "big")


def format_trace_id(trace_id: int) -> str:
    """32 lowercase hex characters."""
    return _otel_format_trace_id(trace_id)
