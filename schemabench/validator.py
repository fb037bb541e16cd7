"""
Result validator: every schema must return the same answer for a query.

Result sets are canonicalised (sorted by full row content unless the query has
an explicit top-level ORDER BY) and compared bit-exactly across every pair of
schemas. Floating point aggregates can differ with part layout and merge
order; such queries are flagged ``float_sensitive`` but never compared with a
tolerance.
"""

from __future__ import annotations

import math
import re
from itertools import combinations, zip_longest
from typing import Any, Dict, List, Mapping, Optional, Sequence

from schemabench.domain.models import PairDiff, QueryDef, ValidationOutcome
from schemabench.utils.logging import get_logger

log = get_logger(__name__)

_ORDER_BY_RE = re.compile(r"\border\s+by\b", re.IGNORECASE)
_STRING_LITERAL_RE = re.compile(r"'(?:[^'\\]|\\.)*'")


def _top_level(sql: str) -> str:
    """Strip string literals and everything nested in parentheses."""
    text = _STRING_LITERAL_RE.sub("''", sql)
    depth = 0
    kept: List[str] = []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        elif depth == 0:
            kept.append(ch)
    return "".join(kept)


def is_ordered(query: QueryDef) -> bool:
    """Whether the query's own row order is significant."""
    if query.ordered is not None:
        return query.ordered
    return bool(_ORDER_BY_RE.search(_top_level(query.sql)))


def canonicalize(rows: Sequence[Sequence[Any]], ordered: bool) -> List[tuple]:
    """
    Return rows as tuples in a deterministic order.

    Unordered results are sorted by ``repr`` of the full row, which is total
    over mixed and NULL values; equal multisets yield equal lists.
    """
    normalized = [tuple(row) for row in rows]
    if ordered:
        return normalized
    return sorted(normalized, key=repr)


def _contains_float(rows: Sequence[tuple]) -> bool:
    def check(value: Any) -> bool:
        if isinstance(value, float):
            return True
        if isinstance(value, (list, tuple)):
            return any(check(v) for v in value)
        return False

    return any(check(value) for row in rows for value in row)


def _same(a: Any, b: Any) -> bool:
    """Value equality where NaN equals NaN, applied through nested rows and arrays."""
    if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
        return True
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return type(a) is type(b) and len(a) == len(b) and all(_same(x, y) for x, y in zip(a, b))
    return a == b


def diff_results(
    left_name: str,
    left: Sequence[tuple],
    right_name: str,
    right: Sequence[tuple],
    limit: int = 5,
) -> Optional[PairDiff]:
    """
    Compare two canonical result sets; ``None`` when they are equal.
    """
    if len(left) == len(right) and all(_same(a, b) for a, b in zip(left, right)):
        return None
    diff = PairDiff(left=left_name, right=right_name, left_rows=len(left), right_rows=len(right))
    for position, (a, b) in enumerate(zip_longest(left, right)):
        if _same(a, b):
            continue
        diff.differing_rows.append({"position": position, left_name: _jsonable(a), right_name: _jsonable(b)})
        if len(diff.differing_rows) >= limit:
            break
    return diff


def _jsonable(row: Optional[tuple]) -> Optional[List[Any]]:
    if row is None:
        return None
    return [_json_value(value) for value in row]


def _json_value(value: Any) -> Any:
    # JSON has no NaN or Infinity tokens
    if isinstance(value, float) and not math.isfinite(value):
        return repr(value)
    if isinstance(value, (int, float, str, bool, type(None))):
        return value
    return repr(value)


class ResultValidator:
    def __init__(self, diff_row_limit: int = 5) -> None:
        self.diff_row_limit = diff_row_limit

    def validate(
        self,
        query: QueryDef,
        results: Mapping[str, Optional[Sequence[Sequence[Any]]]],
    ) -> ValidationOutcome:
        """
        Compare the retained result of every schema for ``query``.

        ``results`` maps schema name to rows, in scenario order; ``None`` marks a
        schema that produced no result (failed pair) and is skipped.
        """
        ordered = is_ordered(query)
        canonical: Dict[str, List[tuple]] = {}
        outcome = ValidationOutcome(query=query.name, match=True)
        for schema, rows in results.items():
            if rows is None:
                outcome.skipped_schemas.append(schema)
                continue
            canonical[schema] = canonicalize(rows, ordered)
        outcome.compared_schemas = list(canonical)
        outcome.float_sensitive = any(_contains_float(rows) for rows in canonical.values())

        for left, right in combinations(canonical, 2):
            diff = diff_results(left, canonical[left], right, canonical[right], self.diff_row_limit)
            if diff is not None:
                outcome.match = False
                outcome.mismatches.append(diff)

        if not outcome.match:
            log.warning(
                f"[VALIDATION MISMATCH] {query.name}",
                extra={
                    "query": query.name,
                    "pairs": [list(p) for p in outcome.mismatching_pairs],
                    "float_sensitive": outcome.float_sensitive,
                },
            )
        elif outcome.float_sensitive:
            log.info(
                f"[VALIDATION] {query.name} matched; results contain floats",
                extra={"query": query.name},
            )
        return outcome


__all__ = ["ResultValidator", "canonicalize", "diff_results", "is_ordered"]
