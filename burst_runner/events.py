"""
Event emission and phase tracking for the burst-stack runner.

Events are canonical JSON lines written to an optional log stream and,
for the command line runner, echoed to stdout. Phase events share the
fields ``type``, ``run_id``, ``phase``, ``phase_name`` and ``ts``.
"""

import sys
from datetime import datetime, timezone
from typing import Any, Optional

from .utils import json_dumps_canonical


def emit(event: dict, log_fp=None, echo: bool = False) -> None:
    """Emit event as JSON line to the log stream and optionally stdout."""
    line = json_dumps_canonical(event).decode("utf-8") + "\n"
    streams = ([sys.stdout] if echo else []) + ([log_fp] if log_fp is not None else [])
    for fp in streams:
        fp.write(line)
        fp.flush()


def _phase_event(kind: str, run_id: str, phase_id: int, phase_name: str, **fields: Any) -> dict[str, Any]:
    ev: dict[str, Any] = {
        "type": kind,
        "run_id": run_id,
        "phase": phase_id,
        "phase_name": phase_name,
        "ts": datetime.now(timezone.utc).isoformat(),
    }
    ev.update(fields)
    return ev


def phase_start(run_id: str, log_fp, phase_id: int, phase_name: str,
                extra: Optional[dict[str, Any]] = None, echo: bool = False) -> None:
    emit(_phase_event("phase_start", run_id, phase_id, phase_name, **(extra or {})), log_fp, echo)


def phase_end(run_id: str, log_fp, phase_id: int, phase_name: str, status: str,
              extra: Optional[dict[str, Any]] = None, echo: bool = False) -> None:
    """Emit phase_end; ``status`` is "ok" or "error"."""
    ev = _phase_event("phase_end", run_id, phase_id, phase_name, status=status)
    ev.update(extra or {})
    emit(ev, log_fp, echo)


def phase_progress(run_id: str, log_fp, phase_id: int, phase_name: str, current: int, total: int,
                   extra: Optional[dict[str, Any]] = None, echo: bool = False) -> None:
    """Emit phase_progress with ``current`` of ``total`` work items done."""
    ev = _phase_event("phase_progress", run_id, phase_id, phase_name, current=current, total=total)
    ev.update(extra or {})
    emit(ev, log_fp, echo)
