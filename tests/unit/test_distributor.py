from __future__ import annotations

from collections import Counter

import pytest

from schemabench.config_loader import ResolvedScenario
from schemabench.distributor import BatchDistributor, LoadTarget
from schemabench.generator import BatchGenerator
from schemabench.runtime import CancelledError, CancelToken
from tests.fakes import FakeService

ROW_COUNT = 100
BATCH_SIZE = 10
TARGETS = [LoadTarget("by_id", "demo_by_id"), LoadTarget("by_kind", "demo_by_kind")]


def _load(service: FakeService, scenario: ResolvedScenario, **kwargs):
    distributor = BatchDistributor(service, workers=2)
    return distributor.load(
        scenario.dataset,
        TARGETS,
        row_count=kwargs.pop("row_count", ROW_COUNT),
        batch_size=kwargs.pop("batch_size", BATCH_SIZE),
        seed=7,
        **kwargs,
    )


def test_every_table_receives_identical_rows(scenario: ResolvedScenario) -> None:
    service = FakeService()
    outcome = _load(service, scenario)

    assert outcome.batches == 10
    assert outcome.rows_per_table == {"by_id": ROW_COUNT, "by_kind": ROW_COUNT}
    assert outcome.failures == {}
    assert Counter(service.tables["demo_by_id"]) == Counter(service.tables["demo_by_kind"])
    inserts = [call for call in service.calls if call[0] == "insert_rows"]
    assert len(inserts) == 2 * 10
    assert all(call[2] == BATCH_SIZE for call in inserts)


def test_last_batch_is_partial(scenario: ResolvedScenario) -> None:
    service = FakeService()
    outcome = _load(service, scenario, row_count=25)
    assert outcome.batches == 3
    assert len(service.tables["demo_by_id"]) == 25


def test_storage_is_measured_after_merge(scenario: ResolvedScenario) -> None:
    service = FakeService()
    outcome = _load(service, scenario)

    names = service.call_names()
    assert names.count("optimize_table") == 2
    assert names.index("optimize_table") > max(i for i, n in enumerate(names) if n == "insert_rows")
    storage = {report.schema: report for report in outcome.storage}
    assert storage["by_id"].rows == ROW_COUNT
    assert storage["by_id"].uncompressed_bytes == ROW_COUNT * 40
    assert storage["by_id"].estimated_bytes == scenario.dataset.estimate_bytes(ROW_COUNT)
    assert storage["by_id"].error is None


def test_failed_table_stops_receiving_batches(scenario: ResolvedScenario) -> None:
    service = FakeService(fail_inserts={"demo_by_kind"})
    outcome = _load(service, scenario)

    assert outcome.rows_per_table["by_id"] == ROW_COUNT
    assert outcome.rows_per_table["by_kind"] == 0
    assert "by_kind" in outcome.failures
    assert not outcome.succeeded("by_kind")
    assert outcome.succeeded("by_id")
    failed_inserts = [c for c in service.calls if c[0] == "insert_rows" and c[1] == "demo_by_kind"]
    assert len(failed_inserts) == 1
    storage = {report.schema: report for report in outcome.storage}
    assert storage["by_kind"].error is not None


def test_cancellation_stops_at_a_batch_boundary(scenario: ResolvedScenario) -> None:
    service = FakeService()
    cancel = CancelToken()
    cancel.cancel("test")
    with pytest.raises(CancelledError):
        _load(service, scenario, cancel=cancel)
    assert "insert_rows" not in service.call_names()


def test_no_batch_is_generated_after_cancellation(scenario: ResolvedScenario, monkeypatch) -> None:
    cancel = CancelToken()
    generated = []
    original = BatchGenerator.next_batch

    def counting_next_batch(self, size=None):
        batch = original(self, size)
        generated.append(batch.index)
        return batch

    class CancellingService(FakeService):
        def insert_rows(self, table, column_names, rows):
            super().insert_rows(table, column_names, rows)
            cancel.cancel("test")

    monkeypatch.setattr(BatchGenerator, "next_batch", counting_next_batch)
    service = CancellingService()
    with pytest.raises(CancelledError, match="batch 1"):
        _load(service, scenario, cancel=cancel)
    assert generated == [0]
    assert "optimize_table" not in service.call_names()


def test_workers_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BatchDistributor(FakeService(), workers=0)
