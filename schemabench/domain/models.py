"""
Domain models for schemabench.

Two families live here:

- Definition models (pydantic) that mirror the YAML configuration: columns,
  datasets, physical schemas, queries, scenarios. They are frozen once loaded.
- Runtime records (dataclasses) produced while a scenario executes: batches,
  measured runs, aggregated metrics, validation outcomes, storage reports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from schemabench.errors import RunStatus

_FROZEN = ConfigDict(frozen=True, extra="forbid")


class ElementSpec(BaseModel):
    """
    Value domain of a column or of the items of an ``Array`` column.
    """

    range: Optional[Tuple[Any, Any]] = Field(
        None, description="Inclusive bounds; length bounds for strings and arrays."
    )
    values: Optional[List[Any]] = Field(None, description="Enumerated domain.")
    null_probability: Optional[float] = Field(
        None, description="Chance of emitting NULL for Nullable types; defaults to 0."
    )
    element: Optional["ElementSpec"] = Field(None, description="Item domain for Array types.")

    model_config = _FROZEN


class ColumnSpec(ElementSpec):
    """
    Generation rule of a single dataset column, keyed by a ClickHouse type tag.
    """

    name: str
    type: str


class DatasetSpec(BaseModel):
    name: str
    columns: List[ColumnSpec]

    model_config = _FROZEN


class SchemaDef(BaseModel):
    """
    One physical table design under test.
    """

    name: str
    engine: str = "MergeTree"
    order_by: List[str] = Field(default_factory=list)
    partition_by: Optional[str] = None
    primary_key: Optional[List[str]] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    post_create: List[str] = Field(
        default_factory=list, description="SQL script paths, relative to the config file."
    )

    model_config = _FROZEN


class QueryDef(BaseModel):
    name: str
    sql: str = Field(..., description="Query template with a {table} placeholder.")
    ordered: Optional[bool] = Field(
        None, description="Whether row order is significant; detected from ORDER BY if omitted."
    )

    model_config = _FROZEN

    def render(self, table: str) -> str:
        return self.sql.replace("{table}", table)


class BenchmarkParams(BaseModel):
    row_count: int = Field(..., gt=0)
    batch_size: int = Field(10_000, gt=0)
    warmup_runs: int = Field(1, ge=0)
    measured_runs: int = Field(5, gt=0)
    seed: int = 42
    load_workers: Optional[int] = Field(None, gt=0)

    model_config = _FROZEN


class ScenarioSpec(BaseModel):
    name: str
    dataset: str
    schemas: List[str]
    queries: List[str]
    benchmark: BenchmarkParams

    model_config = _FROZEN


@dataclass
class Batch:
    """
    One generated chunk of rows.

    ``rows`` is a view over the generator's reusable buffer and is only valid
    until the next batch is produced.
    """

    index: int
    column_names: Tuple[str, ...]
    rows: List[List[Any]]

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class RunRecord:
    """One measured query execution, enriched with server counters after flush."""

    run_id: str
    query: str
    table: str
    started_at: datetime
    finished_at: datetime
    elapsed_seconds: float
    metrics: Dict[str, float] = field(default_factory=dict)
    incomplete: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "query": self.query,
            "table": self.table,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "elapsed_seconds": self.elapsed_seconds,
            "metrics": dict(self.metrics),
            "incomplete": self.incomplete,
        }


@dataclass(frozen=True)
class AggregatedMetric:
    count: int
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "p50": self.p50,
            "p95": self.p95,
            "p99": self.p99,
        }


@dataclass
class PairDiff:
    """Bounded description of how two schemas disagree on one query."""

    left: str
    right: str
    left_rows: int
    right_rows: int
    differing_rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def row_count_delta(self) -> int:
        return self.right_rows - self.left_rows

    def to_dict(self) -> Dict[str, Any]:
        return {
            "left": self.left,
            "right": self.right,
            "left_rows": self.left_rows,
            "right_rows": self.right_rows,
            "row_count_delta": self.row_count_delta,
            "differing_rows": self.differing_rows,
        }


@dataclass
class ValidationOutcome:
    query: str
    match: bool
    compared_schemas: List[str] = field(default_factory=list)
    skipped_schemas: List[str] = field(default_factory=list)
    mismatches: List[PairDiff] = field(default_factory=list)
    float_sensitive: bool = False

    @property
    def mismatching_pairs(self) -> List[Tuple[str, str]]:
        return [(diff.left, diff.right) for diff in self.mismatches]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "match": self.match,
            "compared_schemas": list(self.compared_schemas),
            "skipped_schemas": list(self.skipped_schemas),
            "mismatching_pairs": [list(pair) for pair in self.mismatching_pairs],
            "mismatches": [diff.to_dict() for diff in self.mismatches],
            "float_sensitive": self.float_sensitive,
        }


@dataclass
class StorageReport:
    """Estimated versus measured storage of one table after load and merge."""

    schema: str
    table: str
    estimated_bytes: int
    rows: int = 0
    compressed_bytes: int = 0
    uncompressed_bytes: int = 0
    error: Optional[str] = None

    @property
    def drift(self) -> Optional[float]:
        """Relative difference of measured uncompressed size against the estimate."""
        if not self.estimated_bytes or self.error:
            return None
        return (self.uncompressed_bytes - self.estimated_bytes) / self.estimated_bytes

    @property
    def compression_ratio(self) -> Optional[float]:
        if not self.compressed_bytes:
            return None
        return self.uncompressed_bytes / self.compressed_bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema,
            "table": self.table,
            "rows": self.rows,
            "estimated_bytes": self.estimated_bytes,
            "uncompressed_bytes": self.uncompressed_bytes,
            "compressed_bytes": self.compressed_bytes,
            "drift": self.drift,
            "compression_ratio": self.compression_ratio,
            "error": self.error,
        }


@dataclass
class PairResult:
    """Everything measured for one (query, schema) pair."""

    query: str
    schema: str
    table: str
    runs: List[RunRecord] = field(default_factory=list)
    aggregated: Dict[str, AggregatedMetric] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "schema": self.schema,
            "table": self.table,
            "error": self.error,
            "runs": [run.to_dict() for run in self.runs],
            "aggregated": {name: metric.to_dict() for name, metric in self.aggregated.items()},
        }


@dataclass
class ScenarioReport:
    scenario: str
    run_timestamp: str
    status: RunStatus = RunStatus.SUCCESS
    pairs: List[PairResult] = field(default_factory=list)
    storage: List[StorageReport] = field(default_factory=list)
    validations: List[ValidationOutcome] = field(default_factory=list)
    schema_errors: Dict[str, str] = field(default_factory=dict)
    environment: Dict[str, Any] = field(default_factory=dict)
    output_dir: Optional[str] = None
    message: Optional[str] = None


__all__ = [
    "ElementSpec",
    "ColumnSpec",
    "DatasetSpec",
    "SchemaDef",
    "QueryDef",
    "BenchmarkParams",
    "ScenarioSpec",
    "Batch",
    "RunRecord",
    "AggregatedMetric",
    "PairDiff",
    "ValidationOutcome",
    "StorageReport",
    "PairResult",
    "ScenarioReport",
]
