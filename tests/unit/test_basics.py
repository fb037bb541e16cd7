import csv
from pathlib import Path
from time import sleep

from typer.testing import CliRunner

from schemabench import config
from schemabench.main import app
from schemabench.runtime import CancelledError, CancelToken, RunContext
from schemabench.utils import profiler
from scripts import preview_dataset
from tests.fakes import FakeService

PROJECT_ROOT = Path(__file__).resolve().parents[2]
EXAMPLE_PROJECT = PROJECT_ROOT / "scenarios" / "events.yaml"


def test_get_settings_defaults():
    settings = config.Settings()
    assert settings.ch_port == 8123
    assert settings.container_label == "schemabench.run"
    assert settings.disk_headroom_ratio >= 1.0
    assert settings.load_workers > 0
    assert settings.diff_row_limit > 0


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("CH_HOST", "clickhouse.internal")
    monkeypatch.setenv("EXTERNAL_SERVICE", "true")
    settings = config.Settings()
    assert settings.ch_host == "clickhouse.internal"
    assert settings.external_service is True


def test_profile_block_measures_time():
    with profiler.profile_block("sleep") as stats:
        sleep(0.05)
    assert stats.duration_seconds >= 0.05
    assert stats.peak_rss_bytes >= stats.start_rss_bytes
    assert isinstance(stats.cpu_percent, float)


def test_host_snapshot_reports_cpu_and_memory():
    snapshot = profiler.host_snapshot()
    assert snapshot["cpu_count_logical"] >= 1
    assert snapshot["memory_total_bytes"] > 0


def test_cancel_token_raises_at_boundary():
    token = CancelToken()
    token.raise_if_cancelled("load")
    token.cancel("stop")
    assert token.cancelled
    try:
        token.raise_if_cancelled("load")
    except CancelledError as exc:
        assert "load" in str(exc) and "stop" in str(exc)
    else:
        raise AssertionError("expected CancelledError")


def test_run_context_names_tables_after_scenario():
    context = RunContext(scenario_name="demo", settings=config.Settings(), service=FakeService())
    assert context.table_name("by_time") == "demo_by_time"
    assert len(context.run_timestamp) == len("20240101T000000Z")


def test_preview_script_writes_csv(tmp_path: Path):
    from schemabench.config_loader import load_scenario

    scenario = load_scenario(EXAMPLE_PROJECT, "events_smoke")
    csv_path = tmp_path / "events.csv"
    written = preview_dataset._write_rows_csv(csv_path, scenario.dataset, rows=5, batch_size=2, seed=123)
    assert written == 5
    with csv_path.open("r", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    # header + 5 rows = 6 lines
    assert len(rows) == 6
    assert rows[0] == list(scenario.dataset.column_names)


def test_cli_validate_reports_each_scenario():
    result = CliRunner().invoke(app, ["validate", "--config", str(EXAMPLE_PROJECT)])
    assert result.exit_code == 0
    assert "events_layout" in result.output
    assert "events_smoke" in result.output


def test_cli_validate_exits_with_configuration_code(tmp_path: Path):
    broken = tmp_path / "broken.yaml"
    broken.write_text("scenarios: 3\n", encoding="utf-8")
    result = CliRunner().invoke(app, ["validate", "--config", str(broken)])
    assert result.exit_code == 2


def test_table_name_is_shared_by_context_and_module():
    from schemabench.runtime import table_name

    context = RunContext(scenario_name="events_layout", settings=config.Settings(), service=FakeService())
    assert table_name("events_layout", "by_user") == context.table_name("by_user") == "events_layout_by_user"
