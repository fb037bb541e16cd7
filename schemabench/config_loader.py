"""
Scenario configuration loading and resolution.

A project file (YAML) declares datasets, physical schemas, queries, and
scenarios that reference them by name:

    datasets:
      - name: events
        columns:
          - {name: event_time, type: DateTime, range: ["2024-01-01", "2024-12-31"]}
          - {name: user_id, type: UInt32, range: [1, 100000]}
    schemas:
      - {name: by_time, order_by: [event_time]}
      - {name: by_user, order_by: [user_id, event_time], post_create: [sql/proj.sql]}
    queries:
      - {name: daily, sql: "SELECT toDate(event_time) d, count() FROM {table} GROUP BY d"}
    scenarios:
      - name: events_layout
        dataset: events
        schemas: [by_time, by_user]
        queries: [daily]
        benchmark: {row_count: 1000000, batch_size: 50000, warmup_runs: 1, measured_runs: 5}

Resolution turns a scenario into fully checked objects (column rules built,
scripts read and split) or raises ``ConfigurationError``. Nothing here talks to
the benchmarked service.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from schemabench.ddl import split_statements
from schemabench.domain.columns import ResolvedDataset, is_identifier, resolve_dataset
from schemabench.domain.models import DatasetSpec, QueryDef, ScenarioSpec, SchemaDef
from schemabench.errors import ConfigurationError

T = TypeVar("T")


class ProjectConfig(BaseModel):
    """Top-level document of a project file."""

    model_config = ConfigDict(extra="forbid")

    datasets: List[DatasetSpec] = Field(default_factory=list)
    schemas: List[SchemaDef] = Field(default_factory=list)
    queries: List[QueryDef] = Field(default_factory=list)
    scenarios: List[ScenarioSpec] = Field(default_factory=list)
    base_dir: Optional[Path] = Field(None, exclude=True)

    def scenario_names(self) -> List[str]:
        return [scenario.name for scenario in self.scenarios]


@dataclass(frozen=True)
class ResolvedSchema:
    definition: SchemaDef
    # (script path, script text) in declaration order; statements use {table}
    scripts: Tuple[Tuple[str, str], ...] = ()

    @property
    def name(self) -> str:
        return self.definition.name


@dataclass(frozen=True)
class ResolvedScenario:
    spec: ScenarioSpec
    dataset: ResolvedDataset
    schemas: Tuple[ResolvedSchema, ...]
    queries: Tuple[QueryDef, ...]

    @property
    def name(self) -> str:
        return self.spec.name

    def estimated_bytes_per_table(self) -> int:
        return self.dataset.estimate_bytes(self.spec.benchmark.row_count)

    def estimated_bytes_total(self) -> int:
        return self.estimated_bytes_per_table() * len(self.schemas)


def load_config(path: Path | str) -> ProjectConfig:
    """
    Parse and structurally validate a project file.
    """
    config_path = Path(path)
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"cannot read config file {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path}: top level must be a mapping")
    return parse_config(raw, base_dir=config_path.parent)


def parse_config(raw: dict, base_dir: Optional[Path] = None) -> ProjectConfig:
    try:
        config = ProjectConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration:\n{exc}") from exc
    for kind, items in (
        ("dataset", config.datasets),
        ("schema", config.schemas),
        ("query", config.queries),
        ("scenario", config.scenarios),
    ):
        _index(items, kind)
    config.base_dir = base_dir
    return config


def _index(items: Sequence[T], kind: str) -> Dict[str, T]:
    indexed: Dict[str, T] = {}
    for item in items:
        name = getattr(item, "name")
        if name in indexed:
            raise ConfigurationError(f"duplicate {kind} '{name}'")
        indexed[name] = item
    return indexed


def _lookup(index: Dict[str, T], name: str, kind: str, scenario: str) -> T:
    try:
        return index[name]
    except KeyError:
        known = ", ".join(sorted(index)) or "none"
        raise ConfigurationError(
            f"scenario '{scenario}' references unknown {kind} '{name}' (known: {known})"
        ) from None


def _read_script(reference: str, base_dir: Path, schema: str) -> str:
    path = Path(reference)
    if not path.is_absolute():
        path = base_dir / path
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"schema '{schema}': cannot read post-create script {path}: {exc}") from exc
    if not split_statements(text):
        raise ConfigurationError(f"schema '{schema}': post-create script {path} has no statements")
    return text


def resolve_schema(definition: SchemaDef, dataset: ResolvedDataset, base_dir: Path) -> ResolvedSchema:
    if not is_identifier(definition.name):
        raise ConfigurationError(f"schema '{definition.name}': name must be a valid identifier")
    if not definition.engine.strip():
        raise ConfigurationError(f"schema '{definition.name}': engine must not be empty")
    columns = set(dataset.column_names)
    for expression in [*definition.order_by, *(definition.primary_key or [])]:
        # only bare column references can be checked without the server
        if is_identifier(expression) and expression not in columns:
            raise ConfigurationError(
                f"schema '{definition.name}': key column '{expression}' is not in dataset '{dataset.name}'"
            )
    scripts = tuple(
        (reference, _read_script(reference, base_dir, definition.name))
        for reference in definition.post_create
    )
    return ResolvedSchema(definition=definition, scripts=scripts)


def resolve_scenario(config: ProjectConfig, name: str) -> ResolvedScenario:
    """
    Resolve one scenario and everything it references.
    """
    scenarios = _index(config.scenarios, "scenario")
    if name not in scenarios:
        known = ", ".join(sorted(scenarios)) or "none"
        raise ConfigurationError(f"unknown scenario '{name}' (known: {known})")
    spec = scenarios[name]
    if not is_identifier(spec.name):
        raise ConfigurationError(f"scenario '{spec.name}': name must be a valid identifier")
    if len(spec.schemas) < 2:
        raise ConfigurationError(f"scenario '{spec.name}' must compare at least two schemas")
    if len(set(spec.schemas)) != len(spec.schemas):
        raise ConfigurationError(f"scenario '{spec.name}' lists a schema more than once")
    if not spec.queries:
        raise ConfigurationError(f"scenario '{spec.name}' declares no queries")
    if len(set(spec.queries)) != len(spec.queries):
        raise ConfigurationError(f"scenario '{spec.name}' lists a query more than once")

    dataset_spec = _lookup(_index(config.datasets, "dataset"), spec.dataset, "dataset", spec.name)
    dataset = resolve_dataset(dataset_spec)
    base_dir = config.base_dir or Path.cwd()

    schema_index = _index(config.schemas, "schema")
    schemas = tuple(
        resolve_schema(_lookup(schema_index, schema_name, "schema", spec.name), dataset, base_dir)
        for schema_name in spec.schemas
    )

    query_index = _index(config.queries, "query")
    queries = []
    for query_name in spec.queries:
        query = _lookup(query_index, query_name, "query", spec.name)
        if "{table}" not in query.sql:
            raise ConfigurationError(f"query '{query.name}' has no {{table}} placeholder")
        queries.append(query)

    return ResolvedScenario(spec=spec, dataset=dataset, schemas=schemas, queries=tuple(queries))


def load_scenario(path: Path | str, name: str) -> ResolvedScenario:
    return resolve_scenario(load_config(path), name)


__all__ = [
    "ProjectConfig",
    "ResolvedSchema",
    "ResolvedScenario",
    "load_config",
    "load_scenario",
    "parse_config",
    "resolve_scenario",
    "resolve_schema",
]
