"""
Benchmarked-service capabilities and their ClickHouse/Docker implementations.
"""

from schemabench.infrastructure.abstract import (
    BenchmarkService,
    ExecutionLog,
    QueryRunner,
    TableLoader,
    TableStorage,
)

__all__ = ["BenchmarkService", "ExecutionLog", "QueryRunner", "TableLoader", "TableStorage"]
