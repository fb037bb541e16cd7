"""
Dataset preview script for schemabench.

Generates rows for a scenario's dataset with the same seed and batching the
benchmark uses and writes them to CSV, so column rules can be inspected without
starting a server.
"""

from __future__ import annotations

import csv
import sys
import tempfile
import time
from pathlib import Path
from typing import Any

import typer

from schemabench.config_loader import load_scenario
from schemabench.domain.columns import ResolvedDataset
from schemabench.errors import ConfigurationError
from schemabench.generator import BatchGenerator

app = typer.Typer(help="Generate a scenario's dataset as CSV for inspection.")


def _cell(value: Any) -> str:
    if value is None:
        return "\\N"
    if isinstance(value, list):
        return "[" + ",".join(_cell(item) for item in value) + "]"
    if hasattr(value, "isoformat"):
        return value.isoformat(sep=" ") if hasattr(value, "hour") else value.isoformat()
    return str(value)


def _write_rows_csv(csv_path: Path, dataset: ResolvedDataset, rows: int, batch_size: int, seed: int) -> int:
    generator = BatchGenerator(dataset, batch_size=batch_size, seed=seed)
    written = 0
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(dataset.column_names)
        for batch in generator.batches(rows):
            writer.writerows([_cell(value) for value in row] for row in batch.rows)
            written += len(batch)
    return written


@app.command()
def main(
    config: Path = typer.Option(..., "--config", "-c", help="Project YAML file."),
    scenario: str = typer.Option(..., "--scenario", "-s", help="Scenario whose dataset is generated."),
    rows: int = typer.Option(
        1_000,
        "--rows",
        "-r",
        help="Number of rows to generate.",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        help="RNG seed override (default: the scenario's seed).",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
) -> None:
    """
    Generate rows for the scenario's dataset and write them to CSV.
    """
    try:
        resolved = load_scenario(config, scenario)
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    params = resolved.spec.benchmark
    if output:
        csv_path = output
        csv_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        tmpdir = Path(tempfile.mkdtemp(prefix="schemabench_preview_"))
        csv_path = tmpdir / f"{resolved.dataset.name}.csv"

    effective_seed = params.seed if seed is None else seed
    typer.echo(
        f"Generating {rows:,} rows of '{resolved.dataset.name}' -> {csv_path} "
        f"(batch={params.batch_size}, seed={effective_seed})"
    )
    start = time.perf_counter()
    written = _write_rows_csv(csv_path, resolved.dataset, rows, params.batch_size, effective_seed)
    duration = time.perf_counter() - start
    typer.echo(
        f"Generation completed in {duration:.2f}s ({written / max(duration, 1e-9):,.0f} rows/s); "
        f"estimated {resolved.dataset.row_width():.1f} bytes/row"
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
