"""
Batch distributor: feeds every table under test the same generated rows.

Each batch is produced once and handed, unmodified, to every live table. Inserts
for one batch run concurrently across tables (bounded by ``workers``); the next
batch is generated only after every table accepted the current one, which keeps
memory flat at one batch.

A table whose insert fails stops receiving batches and is reported as failed;
the remaining tables keep loading.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from schemabench.domain.columns import ResolvedDataset
from schemabench.domain.models import Batch, StorageReport
from schemabench.generator import BatchGenerator
from schemabench.infrastructure.abstract import TableLoader
from schemabench.runtime import CancelToken
from schemabench.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class LoadTarget:
    schema: str
    table: str


@dataclass
class LoadOutcome:
    batches: int = 0
    rows_per_table: Dict[str, int] = field(default_factory=dict)
    storage: List[StorageReport] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    def succeeded(self, schema: str) -> bool:
        return schema not in self.failures


class BatchDistributor:
    """
    Load one generated dataset into several tables.
    """

    def __init__(self, loader: TableLoader, workers: int = 4) -> None:
        if workers <= 0:
            raise ValueError("workers must be positive")
        self.loader = loader
        self.workers = workers

    def distribute(
        self,
        batch: Batch,
        targets: Sequence[LoadTarget],
        pool: Optional[ThreadPoolExecutor] = None,
    ) -> Dict[str, str]:
        """
        Write ``batch`` once to every target; return ``{schema: error}`` for failed inserts.
        """
        failures: Dict[str, str] = {}
        if pool is None or len(targets) == 1:
            for target in targets:
                try:
                    self.loader.insert_rows(target.table, batch.column_names, batch.rows)
                except Exception as exc:  # noqa: BLE001 - recorded against the schema
                    failures[target.schema] = str(exc)
            return failures

        futures = {
            target.schema: pool.submit(
                self.loader.insert_rows, target.table, batch.column_names, batch.rows
            )
            for target in targets
        }
        for schema, future in futures.items():
            exc = future.exception()
            if exc is not None:
                failures[schema] = str(exc)
        return failures

    def load(
        self,
        dataset: ResolvedDataset,
        targets: Sequence[LoadTarget],
        row_count: int,
        batch_size: int,
        seed: int,
        cancel: Optional[CancelToken] = None,
    ) -> LoadOutcome:
        """
        Generate ``row_count`` rows in batches, load them into every target, then
        merge each table and measure its storage against the estimate.
        """
        outcome = LoadOutcome(rows_per_table={t.schema: 0 for t in targets})
        live: List[LoadTarget] = list(targets)
        generator = BatchGenerator(dataset, batch_size=batch_size, seed=seed)

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="load") as pool:
            remaining = row_count
            while remaining > 0 and live:
                if cancel is not None:
                    cancel.raise_if_cancelled(f"batch {generator.batches_emitted}")
                batch = generator.next_batch(min(batch_size, remaining))
                remaining -= len(batch)
                failures = self.distribute(batch, live, pool)
                for target in live:
                    if target.schema not in failures:
                        outcome.rows_per_table[target.schema] += len(batch)
                for schema, error in failures.items():
                    log.error(
                        f"[LOAD FAILED] {schema}",
                        extra={"schema": schema, "batch": batch.index, "error": error},
                    )
                    outcome.failures[schema] = f"insert of batch {batch.index} failed: {error}"
                live = [t for t in live if t.schema not in failures]
                outcome.batches += 1
                log.debug(
                    "Batch distributed",
                    extra={"batch": batch.index, "rows": len(batch), "tables": len(live)},
                )

        estimate = dataset.estimate_bytes(row_count)
        for target in targets:
            report = StorageReport(schema=target.schema, table=target.table, estimated_bytes=estimate)
            outcome.storage.append(report)
            if target.schema in outcome.failures:
                report.error = outcome.failures[target.schema]
                continue
            if cancel is not None:
                cancel.raise_if_cancelled(f"merge of {target.table}")
            self._finalize(target, report, row_count, outcome)
        return outcome

    def _finalize(
        self,
        target: LoadTarget,
        report: StorageReport,
        row_count: int,
        outcome: LoadOutcome,
    ) -> None:
        try:
            self.loader.optimize_table(target.table)
            storage = self.loader.table_storage(target.table)
        except Exception as exc:  # noqa: BLE001 - recorded against the schema
            log.exception(f"[MERGE FAILED] {target.table}", extra={"schema": target.schema})
            report.error = f"merge/storage probe failed: {exc}"
            outcome.failures[target.schema] = report.error
            return

        report.rows = storage["rows"]
        report.compressed_bytes = storage["compressed_bytes"]
        report.uncompressed_bytes = storage["uncompressed_bytes"]
        if report.rows != row_count:
            report.error = f"expected {row_count} rows, table holds {report.rows}"
            outcome.failures[target.schema] = report.error
            log.error(f"[ROW COUNT MISMATCH] {target.table}", extra={"schema": target.schema})
            return
        log.info(
            f"[STORAGE] {target.table}",
            extra={
                "schema": target.schema,
                "rows": report.rows,
                "estimated_bytes": report.estimated_bytes,
                "uncompressed_bytes": report.uncompressed_bytes,
                "compressed_bytes": report.compressed_bytes,
            },
        )


__all__ = ["BatchDistributor", "LoadOutcome", "LoadTarget"]
