"""
Domain types: scenario configuration models, column rules, and run results.
"""

from schemabench.domain.columns import ResolvedColumn, ResolvedDataset, resolve_dataset
from schemabench.domain.models import (
    AggregatedMetric,
    Batch,
    BenchmarkParams,
    ColumnSpec,
    DatasetSpec,
    PairDiff,
    PairResult,
    QueryDef,
    RunRecord,
    ScenarioReport,
    ScenarioSpec,
    SchemaDef,
    StorageReport,
    ValidationOutcome,
)

__all__ = [
    "AggregatedMetric",
    "Batch",
    "BenchmarkParams",
    "ColumnSpec",
    "DatasetSpec",
    "PairDiff",
    "PairResult",
    "QueryDef",
    "ResolvedColumn",
    "ResolvedDataset",
    "RunRecord",
    "ScenarioReport",
    "ScenarioSpec",
    "SchemaDef",
    "StorageReport",
    "ValidationOutcome",
    "resolve_dataset",
]
