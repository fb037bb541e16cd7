"""
DDL rendering for physical table designs.
"""

from __future__ import annotations

from typing import Any, List

from schemabench.domain.columns import ResolvedDataset
from schemabench.domain.models import SchemaDef


def _tuple_expr(parts: List[str]) -> str:
    if not parts:
        return "tuple()"
    if len(parts) == 1:
        return parts[0]
    return "(" + ", ".join(parts) + ")"


def _setting_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def render_create_table(table: str, dataset: ResolvedDataset, schema: SchemaDef) -> str:
    """
    Build ``CREATE TABLE`` for ``schema`` over the dataset's columns.
    """
    columns = ",\n".join(f"    `{column.name}` {column.type}" for column in dataset.columns)
    lines = [f"CREATE TABLE `{table}`\n(\n{columns}\n)", f"ENGINE = {schema.engine}"]
    if schema.partition_by:
        lines.append(f"PARTITION BY {schema.partition_by}")
    if schema.primary_key:
        lines.append(f"PRIMARY KEY {_tuple_expr(schema.primary_key)}")
    lines.append(f"ORDER BY {_tuple_expr(schema.order_by)}")
    if schema.settings:
        rendered = ", ".join(f"{k} = {_setting_literal(v)}" for k, v in schema.settings.items())
        lines.append(f"SETTINGS {rendered}")
    return "\n".join(lines)


def split_statements(script: str) -> List[str]:
    """
    Split a SQL script on semicolons outside quotes and ``--`` comments.
    """
    statements: List[str] = []
    current: List[str] = []
    quote: str = ""
    i = 0
    while i < len(script):
        ch = script[i]
        if quote:
            current.append(ch)
            if ch == "\\" and i + 1 < len(script):
                current.append(script[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in ("'", '"', "`"):
            quote = ch
            current.append(ch)
        elif ch == "-" and script.startswith("--", i):
            end = script.find("\n", i)
            i = len(script) if end == -1 else end
            continue
        elif ch == ";":
            statement = "".join(current).strip()
            if statement:
                statements.append(statement)
            current = []
        else:
            current.append(ch)
        i += 1
    tail = "".join(current).strip()
    if tail:
        statements.append(tail)
    return statements


def render_script(script: str, table: str) -> List[str]:
    return [statement.replace("{table}", table) for statement in split_statements(script)]


__all__ = ["render_create_table", "render_script", "split_statements"]
