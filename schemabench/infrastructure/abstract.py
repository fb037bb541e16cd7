"""
Capability interfaces of the benchmarked service.

The core modules (distributor, executor, profile collector, orchestrator) only
talk to the service through these protocols, so tests can inject in-memory
fakes and the ClickHouse adapter can be swapped without touching them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, TypedDict, runtime_checkable


class TableStorage(TypedDict):
    """
    Storage footprint of one table across its active parts.
    """

    rows: int
    compressed_bytes: int
    uncompressed_bytes: int


@runtime_checkable
class TableLoader(Protocol):
    """Write side used by the batch distributor."""

    def insert_rows(
        self, table: str, column_names: Sequence[str], rows: Sequence[Sequence[Any]]
    ) -> None:
        ...

    def optimize_table(self, table: str) -> None:
        """Force-merge all parts of ``table``."""
        ...

    def table_storage(self, table: str) -> TableStorage:
        ...


@runtime_checkable
class QueryRunner(Protocol):
    """Read side used by the run executor."""

    def drop_caches(self) -> None:
        ...

    def run_query(self, sql: str, run_id: Optional[str] = None) -> List[tuple]:
        """
        Execute ``sql`` and return its rows.

        When ``run_id`` is given the execution is tagged with it so it can be
        found in the execution log afterwards.
        """
        ...

    def flush_logs(self) -> None:
        """Block until every tagged execution so far is visible in the execution log."""
        ...


@runtime_checkable
class ExecutionLog(Protocol):
    """Execution log queried by the profile collector."""

    def fetch_query_log(self, run_ids: Sequence[str]) -> Mapping[str, Dict[str, float]]:
        """Return counters keyed by run id; ids missing from the log are simply absent."""
        ...


@runtime_checkable
class BenchmarkService(TableLoader, QueryRunner, ExecutionLog, Protocol):
    """Full set of statements the orchestrator issues against one instance."""

    def execute(self, sql: str) -> None:
        """Run a DDL or maintenance statement."""
        ...

    def drop_table(self, table: str) -> None:
        ...

    def server_version(self) -> str:
        ...

    def close(self) -> None:
        ...


__all__ = [
    "TableStorage",
    "TableLoader",
    "QueryRunner",
    "ExecutionLog",
    "BenchmarkService",
]
