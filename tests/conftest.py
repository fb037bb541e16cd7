"""
Pytest configuration for schemabench.

Provides fixtures for:
- An in-memory benchmarked service (no Docker, no ClickHouse)
- A small resolved scenario built from an inline project definition
- Settings pointing results at a temporary directory
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest

from schemabench.config import Settings
from schemabench.config_loader import ResolvedScenario, parse_config, resolve_scenario
from tests.fakes import FakeService, project_definition


@pytest.fixture
def fake_service() -> FakeService:
    return FakeService()


@pytest.fixture
def project() -> Dict[str, Any]:
    return project_definition()


@pytest.fixture
def scenario(project: Dict[str, Any], tmp_path: Path) -> ResolvedScenario:
    return resolve_scenario(parse_config(project, base_dir=tmp_path), "demo")


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """
    Settings with results under tmp_path and no container lifecycle.
    """
    return Settings(
        external_service=True,
        results_dir=str(tmp_path / "results"),
        disk_probe_path=str(tmp_path),
        load_workers=2,
        log_level="DEBUG",
    )
