from __future__ import annotations

import subprocess
from typing import List

import pytest

from schemabench.config import Settings
from schemabench.errors import BenchmarkEnvironmentError
from schemabench.infrastructure import container
from schemabench.infrastructure.container import find_orphans, service_guard
from tests.fakes import FakeService


class _Docker:
    def __init__(self, fail_on: str = "") -> None:
        self.commands: List[List[str]] = []
        self.fail_on = fail_on

    def __call__(self, cmd, check=False, stdout=None, stderr=None, text=None):
        self.commands.append(cmd)
        returncode = 1 if self.fail_on and self.fail_on in cmd else 0
        stdout_text = "abc123\n" if cmd[1] == "run" else "schemabench-1\nschemabench-2\n"
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout_text, stderr="boom")

    def verbs(self) -> List[str]:
        return [cmd[1] for cmd in self.commands]


@pytest.fixture
def docker(monkeypatch: pytest.MonkeyPatch) -> _Docker:
    fake = _Docker()
    monkeypatch.setattr(container.subprocess, "run", fake)
    return fake


def test_guard_starts_and_removes_container(docker: _Docker) -> None:
    service = FakeService()
    settings = Settings(external_service=False, health_timeout_s=1)

    with service_guard(settings, lambda host, port: service, "demo-run") as acquired:
        assert acquired is service
        run = docker.commands[0]
        assert f"{settings.container_label}=demo-run" in run

    assert docker.verbs() == ["run", "rm"]
    assert service.closed


def test_guard_releases_on_exception(docker: _Docker) -> None:
    service = FakeService()
    settings = Settings(external_service=False, health_timeout_s=1)

    with pytest.raises(RuntimeError):
        with service_guard(settings, lambda host, port: service, "demo-run"):
            raise RuntimeError("pipeline failed")

    assert docker.verbs() == ["run", "rm"]
    assert service.closed


def test_guard_releases_on_keyboard_interrupt(docker: _Docker) -> None:
    service = FakeService()
    settings = Settings(external_service=False, health_timeout_s=1)

    with pytest.raises(KeyboardInterrupt):
        with service_guard(settings, lambda host, port: service, "demo-run"):
            raise KeyboardInterrupt

    assert docker.verbs().count("rm") == 1


def test_container_is_removed_when_service_never_comes_up(docker: _Docker) -> None:
    settings = Settings(external_service=False, health_timeout_s=1)

    def unreachable(host, port):
        raise BenchmarkEnvironmentError("connection refused")

    with pytest.raises(BenchmarkEnvironmentError, match="not healthy"):
        with service_guard(settings, unreachable, "demo-run"):
            pass

    assert docker.verbs()[-1] == "rm"


def test_external_mode_drops_tables_and_never_calls_docker(docker: _Docker) -> None:
    service = FakeService()
    settings = Settings(external_service=True)

    with service_guard(settings, lambda host, port: service, "demo-run", tables=["demo_a", "demo_b"]):
        pass

    assert docker.commands == []
    assert [c for c in service.calls if c[0] == "drop_table"] == [("drop_table", "demo_a"), ("drop_table", "demo_b")]
    assert service.closed


def test_find_orphans_filters_by_label(docker: _Docker) -> None:
    names = find_orphans(Settings())
    assert names == ["schemabench-1", "schemabench-2"]
    assert "label=schemabench.run" in docker.commands[0]


def test_docker_failure_is_an_environment_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(container.subprocess, "run", _Docker(fail_on="run"))
    with pytest.raises(BenchmarkEnvironmentError, match="docker run failed"):
        container.start_container(Settings(), "demo-run")


def test_free_disk_bytes_is_positive(tmp_path) -> None:
    assert container.free_disk_bytes(str(tmp_path)) > 0
