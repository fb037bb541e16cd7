"""
Scenario orchestrator.

Sequences one scenario run:

    size estimate -> disk probe -> acquire service -> create schemas
    -> generate + load -> benchmark matrix -> validation -> export

Usage (example from CLI):
    from schemabench.config_loader import load_scenario
    from schemabench.orchestrator import run_scenario

    report = run_scenario(load_scenario("bench.yaml", "events_layout"))
    raise SystemExit(report.status.exit_code)

The benchmark matrix is query-major: each query is measured against every
schema (one pair at a time), validated, and its retained result sets dropped
before the next query starts.
"""

from __future__ import annotations

import platform
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from schemabench import __version__
from schemabench.config import Settings, get_settings
from schemabench.config_loader import ResolvedScenario
from schemabench.ddl import render_create_table, render_script
from schemabench.distributor import BatchDistributor, LoadTarget
from schemabench.domain.models import PairResult, ScenarioReport, StorageReport
from schemabench.errors import (
    BenchmarkEnvironmentError,
    ConfigurationError,
    ResourceError,
    RunStatus,
    ValidationMismatchError,
)
from schemabench.executor import RunExecutor
from schemabench.generator import batch_count
from schemabench.infrastructure.abstract import BenchmarkService
from schemabench.infrastructure.clickhouse import ClickHouseService
from schemabench.infrastructure.container import free_disk_bytes, service_guard
from schemabench.profile_collector import ProfileCollector
from schemabench.reporter import write_reports
from schemabench.runtime import CancelledError, CancelToken, RunContext, table_name
from schemabench.stats import aggregate_records
from schemabench.utils.logging import get_logger
from schemabench.utils.profiler import host_snapshot, profile_block
from schemabench.validator import ResultValidator

log = get_logger(__name__)

Acquire = Callable[[Sequence[str]], AbstractContextManager]


def check_disk_space(
    scenario: ResolvedScenario,
    settings: Settings,
    disk_probe: Callable[[str], int],
) -> Dict[str, int]:
    """
    Compare free disk space against the scenario's storage estimate.

    Raises ResourceError when the estimate (times the configured headroom)
    does not fit.
    """
    estimate = scenario.estimated_bytes_total()
    required = int(estimate * settings.disk_headroom_ratio)
    available = disk_probe(settings.disk_probe_path)
    log.info(
        "[PHASE] disk check",
        extra={"estimated_bytes": estimate, "required_bytes": required, "available_bytes": available},
    )
    if available < required:
        raise ResourceError(
            f"insufficient disk space at {settings.disk_probe_path}: "
            f"{available:,} bytes free, {required:,} required (estimate {estimate:,})"
        )
    return {"estimated_bytes": estimate, "required_bytes": required, "available_bytes": available}


def _default_acquire(settings: Settings, run_label: str) -> Acquire:
    def factory(host: str, port: int) -> BenchmarkService:
        return ClickHouseService(settings, host=host, port=port)

    def acquire(tables: Sequence[str]) -> AbstractContextManager:
        return service_guard(settings, factory, run_label, tables)

    return acquire


def _environment_snapshot(scenario: ResolvedScenario, settings: Settings) -> Dict[str, Any]:
    params = scenario.spec.benchmark
    return {
        "schemabench_version": __version__,
        "python": platform.python_version(),
        "platform": platform.platform(),
        "host": host_snapshot(),
        "service": {
            "external": settings.external_service,
            "image": None if settings.external_service else settings.container_image,
        },
        "scenario_spec": scenario.spec.model_dump(mode="json"),
        "dataset": {
            "name": scenario.dataset.name,
            "columns": {column.name: column.type for column in scenario.dataset.columns},
            "estimated_row_bytes": scenario.dataset.row_width(),
        },
        "schemas": [schema.definition.model_dump(mode="json") for schema in scenario.schemas],
        "queries": [query.model_dump(mode="json") for query in scenario.queries],
        "batches": batch_count(params.row_count, params.batch_size),
    }


def _create_schemas(context: RunContext, scenario: ResolvedScenario, report: ScenarioReport) -> None:
    service = context.service
    for schema in scenario.schemas:
        context.cancel.raise_if_cancelled(f"creation of {schema.name}")
        table = context.table_name(schema.name)
        try:
            service.drop_table(table)
            service.execute(render_create_table(table, scenario.dataset, schema.definition))
            for reference, script in schema.scripts:
                for statement in render_script(script, table):
                    log.debug("Post-create statement", extra={"schema": schema.name, "script": reference})
                    service.execute(statement)
        except BenchmarkEnvironmentError as exc:
            log.exception(f"[SCHEMA FAILED] {schema.name}", extra={"schema": schema.name})
            report.schema_errors[schema.name] = f"creation failed: {exc}"
            continue
        log.info(f"[SCHEMA CREATED] {schema.name}", extra={"schema": schema.name, "table": table})


def _load(context: RunContext, scenario: ResolvedScenario, report: ScenarioReport) -> None:
    params = scenario.spec.benchmark
    targets = [
        LoadTarget(schema=schema.name, table=context.table_name(schema.name))
        for schema in scenario.schemas
        if schema.name not in report.schema_errors
    ]
    estimate = scenario.estimated_bytes_per_table()
    for schema in scenario.schemas:
        if schema.name in report.schema_errors:
            report.storage.append(
                StorageReport(
                    schema=schema.name,
                    table=context.table_name(schema.name),
                    estimated_bytes=estimate,
                    error=report.schema_errors[schema.name],
                )
            )
    if not targets:
        return

    distributor = BatchDistributor(context.service, workers=params.load_workers or context.settings.load_workers)
    log.info(
        "[PHASE] load",
        extra={"rows": params.row_count, "batch_size": params.batch_size, "tables": len(targets)},
    )
    with profile_block("load") as stats:
        outcome = distributor.load(
            scenario.dataset,
            targets,
            row_count=params.row_count,
            batch_size=params.batch_size,
            seed=params.seed,
            cancel=context.cancel,
        )
    report.environment["load_profile"] = stats.to_dict()
    report.environment["batches_loaded"] = outcome.batches
    report.storage.extend(outcome.storage)
    report.schema_errors.update(outcome.failures)


def _benchmark(context: RunContext, scenario: ResolvedScenario, report: ScenarioReport) -> None:
    params = scenario.spec.benchmark
    executor = RunExecutor(
        context.service,
        warmup_runs=params.warmup_runs,
        measured_runs=params.measured_runs,
        lock=context.service_lock,
    )
    collector = ProfileCollector(context.service)
    validator = ResultValidator(diff_row_limit=context.settings.diff_row_limit)

    for query in scenario.queries:
        retained: Dict[str, Optional[list]] = {}
        for schema in scenario.schemas:
            context.cancel.raise_if_cancelled(f"{query.name} x {schema.name}")
            table = context.table_name(schema.name)
            result = PairResult(query=query.name, schema=schema.name, table=table)
            report.pairs.append(result)
            if schema.name in report.schema_errors:
                result.error = f"schema unavailable: {report.schema_errors[schema.name]}"
                retained[schema.name] = None
                continue

            pair = executor.run_pair(query, schema.name, table)
            if pair.error is not None:
                result.error = str(pair.error)
                retained[schema.name] = None
                continue

            try:
                collector.collect(pair)
            except BenchmarkEnvironmentError as exc:
                log.exception(f"[PROFILE FAILED] {query.name} x {schema.name}")
                for record in pair.records:
                    record.incomplete = True
                result.error = f"execution log query failed: {exc}"
            result.runs = pair.records
            if any(not record.incomplete for record in pair.records):
                result.aggregated = aggregate_records(pair.records)
            retained[schema.name] = pair.retained_rows

        report.validations.append(validator.validate(query, retained))
        retained.clear()


def _terminal_status(report: ScenarioReport, cancelled: bool) -> RunStatus:
    if cancelled:
        return RunStatus.CANCELLED
    if any(not outcome.match for outcome in report.validations):
        return RunStatus.VALIDATION_FAILED
    if report.schema_errors or any(pair.error for pair in report.pairs):
        return RunStatus.ENVIRONMENT_ERROR
    return RunStatus.SUCCESS


def raise_for_status(report: ScenarioReport) -> None:
    """Raise the error class matching a non-successful terminal status."""
    status = report.status
    message = report.message or f"scenario {report.scenario} finished with {status.value}"
    if status is RunStatus.VALIDATION_FAILED:
        raise ValidationMismatchError(message)
    if status is RunStatus.ENVIRONMENT_ERROR:
        raise BenchmarkEnvironmentError(message)
    if status is RunStatus.RESOURCE_ERROR:
        raise ResourceError(message)
    if status is RunStatus.CONFIGURATION_ERROR:
        raise ConfigurationError(message)
    if status is RunStatus.CANCELLED:
        raise CancelledError(message)


def run_scenario(
    scenario: ResolvedScenario,
    settings: Optional[Settings] = None,
    *,
    acquire: Optional[Acquire] = None,
    disk_probe: Callable[[str], int] = free_disk_bytes,
    cancel: Optional[CancelToken] = None,
    persist: bool = True,
    results_dir: Path | str | None = None,
) -> ScenarioReport:
    """
    Run one resolved scenario end to end and return its report.

    Parameters
    ----------
    scenario : ResolvedScenario
        Output of ``config_loader.resolve_scenario``.
    settings : Settings | None
        Defaults to ``get_settings()``.
    acquire : callable | None
        ``acquire(table_names)`` returns a context manager yielding a live
        service and releasing it on exit. Defaults to a Docker-backed
        ClickHouse instance (or the configured external server).
    disk_probe : callable
        ``disk_probe(path)`` returns free bytes; consulted before any service call.
    cancel : CancelToken | None
        Observed at phase and pair boundaries.
    persist : bool
        Whether to write the report artifacts.
    results_dir : Path | str | None
        Parent of the run's output directory; defaults to ``settings.results_dir``.
    """
    settings = settings or get_settings()
    cancel = cancel or CancelToken()
    started_at = datetime.now(timezone.utc)
    report = ScenarioReport(scenario=scenario.name, run_timestamp=started_at.strftime("%Y%m%dT%H%M%SZ"))
    log.info(f"{'=' * 60}")
    log.info(f"[SCENARIO] {scenario.name}", extra={"scenario": scenario.name, "schemas": len(scenario.schemas)})
    log.info(f"{'=' * 60}")

    try:
        report.environment["disk"] = check_disk_space(scenario, settings, disk_probe)
    except ResourceError as exc:
        log.error("[ABORTED] insufficient resources", extra={"scenario": scenario.name, "error": str(exc)})
        report.status = RunStatus.RESOURCE_ERROR
        report.message = str(exc)
        return report

    report.environment.update(_environment_snapshot(scenario, settings))
    acquire = acquire or _default_acquire(settings, f"{scenario.name}-{report.run_timestamp}")
    tables = [table_name(scenario.name, schema.name) for schema in scenario.schemas]
    cancelled = False
    try:
        cancel.raise_if_cancelled("service start")
        with acquire(tables) as service:
            context = RunContext(
                scenario_name=scenario.name,
                settings=settings,
                service=service,
                cancel=cancel,
                started_at=started_at,
            )
            report.environment["server_version"] = service.server_version()
            log.info("[PHASE] create schemas", extra={"scenario": scenario.name})
            _create_schemas(context, scenario, report)
            cancel.raise_if_cancelled("load")
            _load(context, scenario, report)
            cancel.raise_if_cancelled("benchmark")
            log.info("[PHASE] benchmark", extra={"scenario": scenario.name})
            _benchmark(context, scenario, report)
    except CancelledError as exc:
        log.warning(f"[CANCELLED] {exc}", extra={"scenario": scenario.name})
        cancelled = True
        report.message = str(exc)
    except KeyboardInterrupt:
        log.warning("[CANCELLED] keyboard interrupt", extra={"scenario": scenario.name})
        cancel.cancel("keyboard interrupt")
        cancelled = True
        report.message = "interrupted"
    except BenchmarkEnvironmentError as exc:
        log.exception("[ENVIRONMENT ERROR] scenario aborted", extra={"scenario": scenario.name})
        report.schema_errors.setdefault("*", str(exc))
        report.message = str(exc)

    report.status = _terminal_status(report, cancelled)
    if report.status is RunStatus.VALIDATION_FAILED and report.message is None:
        mismatched = [outcome.query for outcome in report.validations if not outcome.match]
        report.message = str(ValidationMismatchError(f"schemas disagree on: {', '.join(mismatched)}"))

    if persist:
        write_reports(report, results_dir or settings.results_dir)

    log.info(
        f"[SCENARIO COMPLETE] {scenario.name}",
        extra={"scenario": scenario.name, "status": report.status.value, "pairs": len(report.pairs)},
    )
    return report


__all__ = ["check_disk_space", "raise_for_status", "run_scenario"]
