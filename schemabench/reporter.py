"""
Report export and console summary.

Every run writes three artifacts into a fresh directory
``<results_dir>/<scenario>-<timestamp>/``:

- ``benchmark_results.json``: per-run records, aggregated statistics per
  (query, schema) pair, and validation outcomes
- ``storage.csv``: estimated versus measured storage per schema
- ``environment.json``: scenario definition and environment snapshot
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Dict, List

from rich import box
from rich.console import Console
from rich.table import Table

from schemabench.domain.models import ScenarioReport
from schemabench.utils.logging import get_logger

log = get_logger(__name__)

RESULTS_FILE = "benchmark_results.json"
STORAGE_FILE = "storage.csv"
ENVIRONMENT_FILE = "environment.json"

STORAGE_COLUMNS = [
    "schema",
    "table",
    "rows",
    "estimated_bytes",
    "uncompressed_bytes",
    "compressed_bytes",
    "drift",
    "compression_ratio",
    "error",
]


def fresh_directory(results_dir: Path, scenario: str, run_timestamp: str) -> Path:
    """Create a directory for this run that did not exist before."""
    results_dir.mkdir(parents=True, exist_ok=True)
    base = f"{scenario}-{run_timestamp}"
    candidate = results_dir / base
    suffix = 1
    while True:
        try:
            candidate.mkdir()
            return candidate
        except FileExistsError:
            suffix += 1
            candidate = results_dir / f"{base}-{suffix}"


def results_payload(report: ScenarioReport) -> Dict[str, Any]:
    return {
        "scenario": report.scenario,
        "run_timestamp": report.run_timestamp,
        "status": report.status.value,
        "message": report.message,
        "schema_errors": dict(report.schema_errors),
        "pairs": [pair.to_dict() for pair in report.pairs],
        "validation": [outcome.to_dict() for outcome in report.validations],
    }


def write_reports(report: ScenarioReport, results_dir: Path | str) -> Path:
    """
    Persist the three artifacts of a run and return their directory.
    """
    out_dir = fresh_directory(Path(results_dir), report.scenario, report.run_timestamp)

    with (out_dir / RESULTS_FILE).open("w", encoding="utf-8") as f:
        json.dump(results_payload(report), f, indent=2, sort_keys=True, default=str)

    with (out_dir / STORAGE_FILE).open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=STORAGE_COLUMNS)
        writer.writeheader()
        for storage in report.storage:
            writer.writerow(storage.to_dict())

    environment = {
        "scenario": report.scenario,
        "run_timestamp": report.run_timestamp,
        **report.environment,
    }
    with (out_dir / ENVIRONMENT_FILE).open("w", encoding="utf-8") as f:
        json.dump(environment, f, indent=2, sort_keys=True, default=str)

    report.output_dir = str(out_dir)
    log.info("Results persisted", extra={"output_dir": str(out_dir)})
    return out_dir


def _ms(value: float) -> str:
    return f"{value:,.1f}"


def _mb(value: float) -> str:
    return f"{value / (1024 * 1024):,.2f}"


def print_summary(report: ScenarioReport, console: Console | None = None) -> None:
    """
    Render benchmark, storage, and validation tables.
    """
    console = console or Console()

    if not report.pairs and not report.storage:
        console.print(f"[yellow]No results for {report.scenario} ({report.status.value}).[/yellow]")
        return

    table = Table(
        title=f"{report.scenario} | {report.run_timestamp}",
        box=box.ROUNDED,
        caption="Wall time from the client; memory and rows from the execution log",
    )
    table.add_column("Query", style="cyan", no_wrap=True)
    table.add_column("Schema", style="magenta")
    table.add_column("Runs", justify="right", style="blue")
    table.add_column("p50 (ms)", justify="right", style="bold green")
    table.add_column("p95 (ms)", justify="right", style="green")
    table.add_column("Read rows\n[dim](avg)[/dim]", justify="right")
    table.add_column("Peak mem (MB)\n[dim](avg)[/dim]", justify="right", style="yellow")

    for pair in report.pairs:
        if pair.error:
            table.add_row(pair.query, pair.schema, "0", "[red]failed[/red]", "", "", "")
            continue
        wall = pair.aggregated.get("wall_ms")
        read_rows = pair.aggregated.get("read_rows")
        memory = pair.aggregated.get("memory_usage")
        table.add_row(
            pair.query,
            pair.schema,
            str(wall.count if wall else 0),
            _ms(wall.p50) if wall else "N/A",
            _ms(wall.p95) if wall else "N/A",
            f"{read_rows.avg:,.0f}" if read_rows else "N/A",
            _mb(memory.avg) if memory else "N/A",
        )
    console.print(table)

    storage = Table(title="Storage", box=box.ROUNDED)
    storage.add_column("Schema", style="magenta")
    storage.add_column("Rows", justify="right")
    storage.add_column("Estimated (MB)", justify="right")
    storage.add_column("Uncompressed (MB)", justify="right")
    storage.add_column("Compressed (MB)", justify="right", style="bold green")
    storage.add_column("Drift", justify="right", style="yellow")
    for item in report.storage:
        drift = f"{item.drift:+.1%}" if item.drift is not None else "N/A"
        storage.add_row(
            item.schema,
            f"{item.rows:,}",
            _mb(item.estimated_bytes),
            _mb(item.uncompressed_bytes),
            _mb(item.compressed_bytes),
            drift if not item.error else "[red]failed[/red]",
        )
    console.print(storage)

    mismatched: List[str] = [v.query for v in report.validations if not v.match]
    if mismatched:
        console.print(f"[bold red]Validation mismatch:[/bold red] {', '.join(mismatched)}")
    console.print(f"Status: [bold]{report.status.value}[/bold]")


__all__ = [
    "ENVIRONMENT_FILE",
    "RESULTS_FILE",
    "STORAGE_FILE",
    "fresh_directory",
    "print_summary",
    "results_payload",
    "write_reports",
]
