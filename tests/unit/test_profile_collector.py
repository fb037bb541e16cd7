from __future__ import annotations

import pytest

from schemabench.domain.models import QueryDef
from schemabench.executor import PairRun, PairState, RunExecutor
from schemabench.profile_collector import ProfileCollector
from tests.fakes import FakeService

QUERY = QueryDef(name="total", sql="SELECT count() FROM {table}")
ROWS_IN_TABLE = 4


def test_collect_refuses_before_flush() -> None:
    pair = PairRun(query=QUERY, schema="s", table="t", state=PairState.MEASURING)
    with pytest.raises(RuntimeError, match="before flush"):
        ProfileCollector(FakeService()).collect(pair)


def test_harness_reads_the_log_only_after_the_flush(fake_service: FakeService) -> None:
    fake_service.tables["t"] = [(i,) for i in range(ROWS_IN_TABLE)]
    pair = RunExecutor(fake_service, 1, 3).run_pair(QUERY, "s", "t")

    missing = ProfileCollector(fake_service).collect(pair)

    names = fake_service.call_names()
    assert names.index("fetch_query_log") > names.index("flush_logs")
    assert missing == []
    for record in pair.records:
        assert not record.incomplete
        assert record.metrics["read_rows"] == ROWS_IN_TABLE
        assert record.metrics["memory_usage"] == 4096.0


def test_runs_missing_from_the_log_are_marked_incomplete() -> None:
    ids = iter(["r1", "r2", "r3"])
    service = FakeService(lost_run_ids={"r2"})
    pair = RunExecutor(service, 0, 3, run_id_factory=lambda: next(ids)).run_pair(QUERY, "s", "t")

    missing = ProfileCollector(service).collect(pair)

    assert missing == ["r2"]
    assert [record.incomplete for record in pair.records] == [False, True, False]
    assert pair.records[1].metrics == {}


def test_non_numeric_counters_are_ignored() -> None:
    class Log:
        def fetch_query_log(self, run_ids):
            return {run_id: {"read_rows": 5, "note": "x", "flag": True, "empty": None} for run_id in run_ids}

    service = FakeService()
    pair = RunExecutor(service, 0, 1).run_pair(QUERY, "s", "t")
    ProfileCollector(Log()).collect(pair)
    assert pair.records[0].metrics == {"read_rows": 5}
