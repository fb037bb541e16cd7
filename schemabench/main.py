from __future__ import annotations

import signal
import sys
from pathlib import Path
from typing import Optional

import typer

from schemabench.config import get_settings
from schemabench.config_loader import ResolvedScenario, load_config, resolve_scenario
from schemabench.errors import BenchmarkEnvironmentError, ConfigurationError, RunStatus
from schemabench.infrastructure.container import find_orphans, remove_containers
from schemabench.orchestrator import run_scenario
from schemabench.reporter import print_summary
from schemabench.runtime import CancelToken
from schemabench.utils.logging import configure_logging, get_logger

app = typer.Typer(help="Benchmark ClickHouse table designs against the same data and queries.")
log = get_logger(__name__)

CONFIG_OPTION = typer.Option(..., "--config", "-c", help="Project YAML file.")


def _load(config: Path, scenario: str) -> ResolvedScenario:
    try:
        return resolve_scenario(load_config(config), scenario)
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=RunStatus.CONFIGURATION_ERROR.exit_code) from exc


def _reconcile_orphans(assume_yes: bool) -> None:
    settings = get_settings()
    if settings.external_service:
        return
    try:
        orphans = find_orphans(settings)
    except BenchmarkEnvironmentError as exc:
        log.warning("Could not list leftover containers", extra={"error": str(exc)})
        return
    if not orphans:
        return
    typer.echo(f"Found {len(orphans)} container(s) from earlier runs: {', '.join(orphans)}")
    if assume_yes or typer.confirm("Remove them before starting?", default=True):
        remove_containers(orphans)
        typer.echo("Removed.")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    target = (
        f"external {settings.ch_user}@{settings.ch_host}:{settings.ch_port}/{settings.ch_database}"
        if settings.external_service
        else f"container {settings.container_image}"
    )
    typer.echo(
        f"Service={target} | results={settings.results_dir} "
        f"load_workers={settings.load_workers} headroom={settings.disk_headroom_ratio}"
    )


@app.command()
def validate(
    config: Path = CONFIG_OPTION,
    scenario: Optional[str] = typer.Option(
        None,
        "--scenario",
        "-s",
        help="Scenario to check (default: every scenario in the file).",
    ),
) -> None:
    """
    Check a project file without touching any server.
    """
    try:
        project = load_config(config)
        names = [scenario] if scenario else project.scenario_names()
        for name in names:
            resolved = resolve_scenario(project, name)
            typer.echo(
                f"{name}: dataset={resolved.dataset.name} schemas={len(resolved.schemas)} "
                f"queries={len(resolved.queries)} "
                f"estimated={resolved.estimated_bytes_total() / (1024 * 1024):,.1f} MB"
            )
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=RunStatus.CONFIGURATION_ERROR.exit_code) from exc
    if not names:
        typer.echo("No scenarios declared.")


@app.command()
def run(
    config: Path = CONFIG_OPTION,
    scenario: str = typer.Option(..., "--scenario", "-s", help="Scenario to run."),
    results_dir: Optional[Path] = typer.Option(
        None,
        "--results-dir",
        help="Override the results directory (default from settings).",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Remove leftover containers from earlier runs without asking.",
    ),
) -> None:
    """
    Run one scenario and persist its results.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    resolved = _load(config, scenario)
    _reconcile_orphans(yes)

    cancel = CancelToken()

    def _on_sigint(signum, frame) -> None:  # noqa: ARG001
        if cancel.cancelled:
            raise KeyboardInterrupt
        typer.echo("Cancelling after the current step (Ctrl-C again to abort)...", err=True)
        cancel.cancel("interrupted by user")

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        typer.echo(
            f"Running scenario='{resolved.name}' with {len(resolved.schemas)} schemas, "
            f"{len(resolved.queries)} queries, rows={resolved.spec.benchmark.row_count:,}."
        )
        report = run_scenario(resolved, settings, cancel=cancel, results_dir=results_dir)
    finally:
        signal.signal(signal.SIGINT, previous)

    print_summary(report)
    if report.message:
        typer.echo(report.message, err=report.status is not RunStatus.SUCCESS)
    if report.output_dir:
        typer.echo(f"Results: {report.output_dir}")
    raise typer.Exit(code=report.status.exit_code)


@app.command()
def sweep(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """
    Remove containers left behind by interrupted runs.
    """
    settings = get_settings()
    try:
        orphans = find_orphans(settings)
        if not orphans:
            typer.echo("No leftover containers.")
            return
        typer.echo("\n".join(orphans))
        if yes or typer.confirm(f"Remove {len(orphans)} container(s)?", default=True):
            remove_containers(orphans)
            typer.echo("Removed.")
    except BenchmarkEnvironmentError as exc:
        typer.echo(f"Environment error: {exc}", err=True)
        raise typer.Exit(code=RunStatus.ENVIRONMENT_ERROR.exit_code) from exc


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(RunStatus.CANCELLED.exit_code)


if __name__ == "__main__":
    main()
