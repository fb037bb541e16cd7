"""
Run executor: warm-up and measured executions of one query against one table.

Each (query, table) pair walks ``IDLE -> WARMING_UP -> MEASURING -> AWAITING_LOG
-> DONE``. Caches are dropped before warm-up so every pair starts cold, and the
whole region from the cache drop to the log flush holds the run's service lock:
only one pair is ever in flight against the service.

Only measured runs produce ``RunRecord``s; warm-up results and timings are
discarded on the spot. The rows of the first measured run are retained for
cross-schema validation.
"""

from __future__ import annotations

import threading
import time
import uuid
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from schemabench.domain.models import QueryDef, RunRecord
from schemabench.errors import BenchmarkEnvironmentError
from schemabench.infrastructure.abstract import QueryRunner
from schemabench.utils.logging import get_logger

log = get_logger(__name__)


class PairState(str, Enum):
    IDLE = "idle"
    WARMING_UP = "warming_up"
    MEASURING = "measuring"
    AWAITING_LOG = "awaiting_log"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PairRun:
    """Outcome of driving one query against one table."""

    query: QueryDef
    schema: str
    table: str
    state: PairState = PairState.IDLE
    records: List[RunRecord] = field(default_factory=list)
    retained_rows: Optional[List[tuple]] = None
    error: Optional[BenchmarkEnvironmentError] = None
    history: List[PairState] = field(default_factory=lambda: [PairState.IDLE])

    @property
    def flushed(self) -> bool:
        """True once the execution log flush barrier has completed for this pair."""
        return self.state is PairState.DONE

    @property
    def run_ids(self) -> List[str]:
        return [record.run_id for record in self.records]


def _new_run_id() -> str:
    return str(uuid.uuid4())


class RunExecutor:
    """
    Drive warm-up and measured runs for (query, table) pairs.

    Parameters
    ----------
    runner : QueryRunner
        Service capability used for cache drop, query execution, and log flush.
    warmup_runs : int
        Discarded executions after the cache drop.
    measured_runs : int
        Timed, tagged executions.
    lock : threading.Lock, optional
        Held from the cache drop through the log flush.
    run_id_factory : callable, optional
        Source of unique run identifiers (uuid4 by default).
    """

    def __init__(
        self,
        runner: QueryRunner,
        warmup_runs: int,
        measured_runs: int,
        lock: Optional[threading.Lock] = None,
        run_id_factory: Callable[[], str] = _new_run_id,
    ) -> None:
        if measured_runs <= 0:
            raise ValueError("measured_runs must be positive")
        if warmup_runs < 0:
            raise ValueError("warmup_runs must not be negative")
        self.runner = runner
        self.warmup_runs = warmup_runs
        self.measured_runs = measured_runs
        self.lock = lock
        self.run_id_factory = run_id_factory

    def run_pair(self, query: QueryDef, schema: str, table: str) -> PairRun:
        pair = PairRun(query=query, schema=schema, table=table)
        sql = query.render(table)
        context = self.lock if self.lock is not None else nullcontext()

        log.info(f"[PAIR START] {query.name} x {schema}", extra={"query": query.name, "table": table})
        with context:
            try:
                self.runner.drop_caches()
                self._transition(pair, PairState.WARMING_UP)
                for _ in range(self.warmup_runs):
                    self.runner.run_query(sql)

                self._transition(pair, PairState.MEASURING)
                for run_number in range(self.measured_runs):
                    self._measure(pair, sql, keep_rows=run_number == 0)

                self._transition(pair, PairState.AWAITING_LOG)
                self.runner.flush_logs()
                self._transition(pair, PairState.DONE)
            except Exception as exc:  # noqa: BLE001 - failure is scoped to this pair
                failed_in = pair.state.value
                self._transition(pair, PairState.FAILED)
                pair.retained_rows = None
                pair.error = (
                    exc
                    if isinstance(exc, BenchmarkEnvironmentError)
                    else BenchmarkEnvironmentError(f"{type(exc).__name__}: {exc}")
                )
                log.exception(
                    f"[PAIR FAILED] {query.name} x {schema}",
                    extra={"query": query.name, "table": table, "state": failed_in},
                )
                return pair

        log.info(
            f"[PAIR DONE] {query.name} x {schema}",
            extra={"query": query.name, "table": table, "runs": len(pair.records)},
        )
        return pair

    def _measure(self, pair: PairRun, sql: str, keep_rows: bool) -> None:
        run_id = self.run_id_factory()
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        rows = self.runner.run_query(sql, run_id=run_id)
        elapsed = time.perf_counter() - start
        finished_at = datetime.now(timezone.utc)

        pair.records.append(
            RunRecord(
                run_id=run_id,
                query=pair.query.name,
                table=pair.table,
                started_at=started_at,
                finished_at=finished_at,
                elapsed_seconds=elapsed,
            )
        )
        if keep_rows:
            pair.retained_rows = list(rows)
        del rows

    @staticmethod
    def _transition(pair: PairRun, state: PairState) -> None:
        log.debug(
            "Pair state change",
            extra={"query": pair.query.name, "table": pair.table, "from": pair.state.value, "to": state.value},
        )
        pair.state = state
        pair.history.append(state)


__all__ = ["PairRun", "PairState", "RunExecutor"]
