"""
Run-scoped state threaded through one scenario execution.

There is no module-level instance state: the service handle, the cancel token,
and the lock that serialises measurement all live on a ``RunContext`` created by
the orchestrator for a single run.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from schemabench.config import Settings
from schemabench.infrastructure.abstract import BenchmarkService


def table_name(scenario_name: str, schema_name: str) -> str:
    """Name of the table holding one schema design within a scenario run."""
    return f"{scenario_name}_{schema_name}"


class CancelledError(Exception):
    """Raised at a phase or pair boundary once cancellation was requested."""


class CancelToken:
    """
    Cooperative cancellation flag.

    Signal handlers only call ``cancel``; the pipeline observes the flag at
    phase and pair boundaries, never in the middle of a statement.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "interrupted") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, boundary: str) -> None:
        if self._event.is_set():
            raise CancelledError(f"cancelled before {boundary} ({self.reason})")


@dataclass
class RunContext:
    scenario_name: str
    settings: Settings
    service: BenchmarkService
    cancel: CancelToken = field(default_factory=CancelToken)
    service_lock: threading.Lock = field(default_factory=threading.Lock)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def run_timestamp(self) -> str:
        return self.started_at.strftime("%Y%m%dT%H%M%SZ")

    def table_name(self, schema_name: str) -> str:
        return table_name(self.scenario_name, schema_name)


__all__ = ["CancelToken", "CancelledError", "RunContext", "table_name"]
