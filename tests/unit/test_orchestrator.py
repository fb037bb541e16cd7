from __future__ import annotations

import json
from pathlib import Path
from typing import List

import pytest

from schemabench.config import Settings
from schemabench.config_loader import ResolvedScenario
from schemabench.errors import BenchmarkEnvironmentError, RunStatus, ValidationMismatchError
from schemabench.orchestrator import raise_for_status, run_scenario
from schemabench.reporter import ENVIRONMENT_FILE, RESULTS_FILE, STORAGE_FILE
from schemabench.runtime import CancelToken
from tests.fakes import FakeService, count_rows, fake_acquire

PLENTY_OF_DISK = 10**12


def _plenty(path: str) -> int:
    return PLENTY_OF_DISK


def test_successful_run_measures_every_pair(scenario: ResolvedScenario, test_settings: Settings) -> None:
    service = FakeService()
    events: List[str] = []

    report = run_scenario(
        scenario,
        test_settings,
        acquire=fake_acquire(service, events),
        disk_probe=_plenty,
    )

    assert report.status is RunStatus.SUCCESS
    assert events == ["acquire", "release"]
    assert [(p.query, p.schema) for p in report.pairs] == [
        ("total", "by_id"),
        ("total", "by_kind"),
        ("per_kind", "by_id"),
        ("per_kind", "by_kind"),
    ]
    for pair in report.pairs:
        assert pair.error is None
        assert len(pair.runs) == 3
        assert pair.aggregated["wall_ms"].count == 3
        assert pair.aggregated["read_rows"].p50 == 100
    assert all(outcome.match for outcome in report.validations)
    assert [s.rows for s in report.storage] == [100, 100]
    assert report.environment["server_version"] == "24.8.1.1"
    assert report.environment["scenario_spec"]["name"] == "demo"


def test_run_writes_three_artifacts(scenario: ResolvedScenario, test_settings: Settings) -> None:
    report = run_scenario(scenario, test_settings, acquire=fake_acquire(FakeService()), disk_probe=_plenty)

    out_dir = Path(report.output_dir)
    assert out_dir.parent == Path(test_settings.results_dir)
    assert out_dir.name.startswith("demo-")
    assert {p.name for p in out_dir.iterdir()} == {RESULTS_FILE, STORAGE_FILE, ENVIRONMENT_FILE}
    results = json.loads((out_dir / RESULTS_FILE).read_text())
    assert results["status"] == "success"
    assert len(results["pairs"]) == 4
    assert len(results["validation"]) == 2


def test_insufficient_disk_aborts_before_any_service_call(
    scenario: ResolvedScenario, test_settings: Settings
) -> None:
    events: List[str] = []
    estimate = scenario.estimated_bytes_total()

    report = run_scenario(
        scenario,
        test_settings,
        acquire=fake_acquire(FakeService(), events),
        disk_probe=lambda path: estimate - 1,
    )

    assert report.status is RunStatus.RESOURCE_ERROR
    assert report.status.exit_code == 5
    assert events == []
    assert report.output_dir is None
    assert not Path(test_settings.results_dir).exists()


def test_differing_results_fail_validation(scenario: ResolvedScenario, test_settings: Settings) -> None:
    def skewed(sql: str, table: str, rows: list) -> list:
        result = count_rows(sql, table, rows)
        if table == "demo_by_kind" and "GROUP BY" in sql:
            return result + [("extra", 1)]
        return result

    report = run_scenario(
        scenario,
        test_settings,
        acquire=fake_acquire(FakeService(handler=skewed)),
        disk_probe=_plenty,
    )

    assert report.status is RunStatus.VALIDATION_FAILED
    assert report.status.exit_code == 4
    outcomes = {outcome.query: outcome for outcome in report.validations}
    assert outcomes["total"].match
    assert not outcomes["per_kind"].match
    assert outcomes["per_kind"].mismatching_pairs == [("by_id", "by_kind")]
    with pytest.raises(ValidationMismatchError):
        raise_for_status(report)


def test_cancellation_mid_matrix_still_releases(scenario: ResolvedScenario, test_settings: Settings) -> None:
    service = FakeService()
    events: List[str] = []
    cancel = CancelToken()
    measured = []

    def cancel_after_first_pair(sql, run_id):
        if run_id is not None:
            measured.append(run_id)
            if len(measured) == 3:
                cancel.cancel("test")

    service.on_query = cancel_after_first_pair

    report = run_scenario(
        scenario,
        test_settings,
        acquire=fake_acquire(service, events),
        disk_probe=_plenty,
        cancel=cancel,
    )

    assert report.status is RunStatus.CANCELLED
    assert events == ["acquire", "release"]
    assert service.closed
    assert len(report.pairs) == 1
    assert report.pairs[0].error is None
    assert report.validations == []
    assert Path(report.output_dir).exists()


def test_keyboard_interrupt_is_reported_as_cancelled(
    scenario: ResolvedScenario, test_settings: Settings
) -> None:
    service = FakeService()
    events: List[str] = []

    def interrupt(sql, run_id):
        raise KeyboardInterrupt

    service.on_query = interrupt
    report = run_scenario(
        scenario, test_settings, acquire=fake_acquire(service, events), disk_probe=_plenty, persist=False
    )

    assert report.status is RunStatus.CANCELLED
    assert events == ["acquire", "release"]


def test_failed_schema_keeps_partial_results(scenario: ResolvedScenario, test_settings: Settings) -> None:
    service = FakeService(fail_statements=["CREATE TABLE `demo_by_kind`"])

    report = run_scenario(scenario, test_settings, acquire=fake_acquire(service), disk_probe=_plenty)

    assert report.status is RunStatus.ENVIRONMENT_ERROR
    assert report.status.exit_code == 3
    assert "by_kind" in report.schema_errors
    pairs = {(p.query, p.schema): p for p in report.pairs}
    assert pairs[("total", "by_id")].error is None
    assert pairs[("total", "by_id")].aggregated
    assert pairs[("total", "by_kind")].error.startswith("schema unavailable")
    assert all(outcome.skipped_schemas == ["by_kind"] for outcome in report.validations)
    assert not any("demo_by_kind" == call[1] for call in service.calls if call[0] == "insert_rows")


def test_failing_query_is_scoped_to_its_pair(scenario: ResolvedScenario, test_settings: Settings) -> None:
    service = FakeService(fail_queries={"demo_by_id"})

    report = run_scenario(
        scenario, test_settings, acquire=fake_acquire(service), disk_probe=_plenty, persist=False
    )

    assert report.status is RunStatus.ENVIRONMENT_ERROR
    failed = [p for p in report.pairs if p.error]
    assert {p.schema for p in failed} == {"by_id"}
    assert all(p.aggregated for p in report.pairs if p.schema == "by_kind")


def test_mismatch_outranks_environment_errors(scenario: ResolvedScenario, test_settings: Settings) -> None:
    def partly_broken(sql: str, table: str, rows: list) -> list:
        if table != "demo_by_kind":
            return count_rows(sql, table, rows)
        if "GROUP BY" not in sql:
            raise BenchmarkEnvironmentError("replica went away", statement=sql)
        return [(len(rows) + 1,)]

    report = run_scenario(
        scenario,
        test_settings,
        acquire=fake_acquire(FakeService(handler=partly_broken)),
        disk_probe=_plenty,
        persist=False,
    )

    pairs = {(p.query, p.schema): p for p in report.pairs}
    assert "replica went away" in pairs[("total", "by_kind")].error
    assert report.status is RunStatus.VALIDATION_FAILED


def test_released_tables_are_the_benchmarked_tables(
    scenario: ResolvedScenario, test_settings: Settings
) -> None:
    service = FakeService()

    report = run_scenario(
        scenario, test_settings, acquire=fake_acquire(service), disk_probe=_plenty, persist=False
    )

    drops = [call[1] for call in service.calls if call[0] == "drop_table"]
    created, released = drops[:2], drops[2:]
    assert created == released == ["demo_by_id", "demo_by_kind"]
    assert {pair.table for pair in report.pairs} == set(released)
    assert {s.table for s in report.storage} == set(released)
