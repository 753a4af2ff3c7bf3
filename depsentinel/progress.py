"""Phase timing for one repository run (snapshot, scan, resolve, ...)."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import structlog

log = structlog.get_logger("depsentinel.engine")

STATUS_ICONS = {
    "completed": "+",
    "failed": "!",
    "running": "~",
}


@dataclass
class PhaseProgress:
    phase: str
    status: str = "running"  # "running" | "completed" | "failed"
    start_time: float | None = None
    end_time: float | None = None
    detail: str = ""
    error: str | None = None

    @property
    def duration(self) -> float | None:
        if self.start_time is not None and self.end_time is not None:
            return round(self.end_time - self.start_time, 2)
        return None


class PhaseTracker:
    """Records the phases of a repository run in the order they ran."""

    def __init__(self) -> None:
        self.phases: list[PhaseProgress] = []

    @contextmanager
    def phase(self, name: str) -> Iterator[PhaseProgress]:
        """Time the enclosed block; an escaping exception marks the phase failed."""
        p = PhaseProgress(phase=name, start_time=time.monotonic())
        self.phases.append(p)
        try:
            yield p
        except BaseException as exc:
            p.status = "failed"
            p.error = str(exc) or type(exc).__name__
            raise
        else:
            p.status = "completed"
        finally:
            p.end_time = time.monotonic()
            log.debug("phase.finished", phase=name, status=p.status, duration=p.duration)

    def get_summary(self) -> list[dict[str, Any]]:
        return [
            {
                "phase": p.phase,
                "status": p.status,
                "duration": p.duration,
                "detail": p.detail,
                "error": p.error,
            }
            for p in self.phases
        ]
