"""
Profile collector: attach server-side counters to measured runs.

Counters are read from the service's execution log by run identifier. The log
is only consistent after the pair's flush barrier, so collection refuses to
run for a pair that has not reached ``DONE``; there is no retry loop papering
over an early read.
"""

from __future__ import annotations

from typing import Dict, List

from schemabench.executor import PairRun
from schemabench.infrastructure.abstract import ExecutionLog
from schemabench.utils.logging import get_logger

log = get_logger(__name__)

# Counter names as exposed by ExecutionLog implementations.
PROFILE_COUNTERS = (
    "read_rows",
    "read_bytes",
    "written_rows",
    "written_bytes",
    "result_rows",
    "result_bytes",
    "memory_usage",
    "query_duration_ms",
    "user_time_us",
    "system_time_us",
    "real_time_us",
    "os_read_bytes",
    "os_write_bytes",
    "selected_parts",
    "selected_marks",
    "selected_rows",
)


class ProfileCollector:
    def __init__(self, execution_log: ExecutionLog) -> None:
        self.execution_log = execution_log

    def collect(self, pair: PairRun) -> List[str]:
        """
        Merge counters into ``pair.records`` in place.

        Returns the run ids that were missing from the log; their records are
        marked incomplete.
        """
        if not pair.flushed:
            raise RuntimeError(
                f"execution log read for {pair.query.name} x {pair.schema} "
                f"attempted before flush (state={pair.state.value})"
            )
        if not pair.records:
            return []

        entries = self.execution_log.fetch_query_log(pair.run_ids)
        missing: List[str] = []
        for record in pair.records:
            counters = entries.get(record.run_id)
            if counters is None:
                record.incomplete = True
                missing.append(record.run_id)
                continue
            record.metrics.update(_numeric(counters))

        if missing:
            log.warning(
                f"[PROFILE INCOMPLETE] {pair.query.name} x {pair.schema}",
                extra={"query": pair.query.name, "table": pair.table, "missing_run_ids": missing},
            )
        return missing


def _numeric(counters: Dict[str, object]) -> Dict[str, float]:
    values: Dict[str, float] = {}
    for name, value in counters.items():
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            values[name] = value
    return values


__all__ = ["PROFILE_COUNTERS", "ProfileCollector"]
