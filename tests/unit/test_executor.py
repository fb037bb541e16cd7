from __future__ import annotations

import itertools
import threading

import pytest

from schemabench.domain.models import QueryDef
from schemabench.errors import BenchmarkEnvironmentError
from schemabench.executor import PairState, RunExecutor
from tests.fakes import FakeService

QUERY = QueryDef(name="total", sql="SELECT count() FROM {table}")
WARMUP_RUNS = 2
MEASURED_RUNS = 3


def _ids():
    counter = itertools.count(1)
    return lambda: f"run-{next(counter)}"


def test_warmup_runs_are_not_recorded() -> None:
    service = FakeService()
    service.tables["t"] = [(1,), (2,)]
    executor = RunExecutor(service, WARMUP_RUNS, MEASURED_RUNS, run_id_factory=_ids())

    pair = executor.run_pair(QUERY, "s", "t")

    queries = [call for call in service.calls if call[0] == "run_query"]
    assert len(queries) == WARMUP_RUNS + MEASURED_RUNS
    # warm-ups are untagged, measured runs carry their run id
    assert [call[2] for call in queries] == [None, None, "run-1", "run-2", "run-3"]
    assert pair.run_ids == ["run-1", "run-2", "run-3"]
    assert len(pair.records) == MEASURED_RUNS
    assert all(record.elapsed_seconds >= 0 for record in pair.records)
    assert pair.retained_rows == [(2,)]


def test_pair_walks_states_in_order_and_flushes_last() -> None:
    service = FakeService()
    pair = RunExecutor(service, 1, 1).run_pair(QUERY, "s", "t")

    assert pair.history == [
        PairState.IDLE,
        PairState.WARMING_UP,
        PairState.MEASURING,
        PairState.AWAITING_LOG,
        PairState.DONE,
    ]
    assert pair.flushed
    names = service.call_names()
    assert names[0] == "drop_caches"
    assert names[-1] == "flush_logs"


def test_query_failure_marks_pair_failed() -> None:
    service = FakeService(fail_queries={"t"})
    pair = RunExecutor(service, 1, 3).run_pair(QUERY, "s", "t")

    assert pair.state is PairState.FAILED
    assert isinstance(pair.error, BenchmarkEnvironmentError)
    assert pair.retained_rows is None
    assert not pair.flushed
    assert "flush_logs" not in service.call_names()


def test_unexpected_errors_are_wrapped() -> None:
    service = FakeService()

    def explode(sql, run_id):
        raise ValueError("boom")

    service.on_query = explode
    pair = RunExecutor(service, 0, 1).run_pair(QUERY, "s", "t")
    assert isinstance(pair.error, BenchmarkEnvironmentError)
    assert "boom" in str(pair.error)


def test_lock_is_held_from_cache_drop_through_flush() -> None:
    service = FakeService()
    lock = threading.Lock()
    held = []
    service.on_query = lambda sql, run_id: held.append(lock.locked())

    RunExecutor(service, 1, 2, lock=lock).run_pair(QUERY, "s", "t")

    assert held == [True, True, True]
    assert not lock.locked()


def test_invalid_run_counts_are_rejected() -> None:
    with pytest.raises(ValueError):
        RunExecutor(FakeService(), 0, 0)
    with pytest.raises(ValueError):
        RunExecutor(FakeService(), -1, 1)
