from __future__ import annotations

from schemabench.domain.models import QueryDef
from schemabench.validator import ResultValidator, canonicalize, diff_results, is_ordered

UNORDERED = QueryDef(name="per_kind", sql="SELECT kind, count() FROM {table} GROUP BY kind")
ORDERED = QueryDef(name="top", sql="SELECT id FROM {table} ORDER BY id LIMIT 3")


def test_order_by_detection_ignores_subqueries_and_literals() -> None:
    assert is_ordered(ORDERED)
    assert not is_ordered(UNORDERED)
    nested = QueryDef(name="n", sql="SELECT * FROM (SELECT id FROM {table} ORDER BY id) WHERE note = 'order by'")
    assert not is_ordered(nested)
    assert is_ordered(QueryDef(name="f", sql="SELECT 1 FROM {table}", ordered=True))
    assert not is_ordered(QueryDef(name="g", sql="SELECT 1 FROM {table} ORDER BY 1", ordered=False))


def test_canonicalize_sorts_unordered_results_with_nulls() -> None:
    rows = [("b", None), ("a", 2), ("a", None)]
    assert canonicalize(rows, ordered=False) == canonicalize(list(reversed(rows)), ordered=False)
    assert canonicalize(rows, ordered=True) == rows


def test_same_multiset_in_different_order_matches() -> None:
    validator = ResultValidator()
    outcome = validator.validate(
        UNORDERED,
        {"by_id": [("a", 3), ("b", 1)], "by_kind": [("b", 1), ("a", 3)]},
    )
    assert outcome.match
    assert outcome.compared_schemas == ["by_id", "by_kind"]
    assert outcome.mismatches == []


def test_ordered_query_compares_row_order() -> None:
    outcome = ResultValidator().validate(ORDERED, {"x": [(1,), (2,)], "y": [(2,), (1,)]})
    assert not outcome.match
    assert outcome.mismatching_pairs == [("x", "y")]


def test_single_value_difference_names_the_pair() -> None:
    outcome = ResultValidator().validate(
        UNORDERED,
        {
            "a": [("k", 1), ("m", 2)],
            "b": [("k", 1), ("m", 2)],
            "c": [("k", 1), ("m", 3)],
        },
    )
    assert not outcome.match
    assert outcome.mismatching_pairs == [("a", "c"), ("b", "c")]
    diff = outcome.mismatches[0]
    assert diff.left_rows == diff.right_rows == 2
    assert diff.differing_rows[0]["a"] == ["m", 2]
    assert diff.differing_rows[0]["c"] == ["m", 3]


def test_row_count_difference_is_reported() -> None:
    diff = diff_results("a", [(1,), (2,)], "b", [(1,)])
    assert diff is not None
    assert diff.row_count_delta == -1
    assert diff.differing_rows == [{"position": 1, "a": [2], "b": None}]


def test_diff_rows_are_bounded() -> None:
    left = [(i,) for i in range(20)]
    right = [(i + 100,) for i in range(20)]
    diff = diff_results("l", left, "r", right, limit=5)
    assert len(diff.differing_rows) == 5


def test_failed_schemas_are_skipped() -> None:
    outcome = ResultValidator().validate(UNORDERED, {"a": [("k", 1)], "b": None, "c": [("k", 1)]})
    assert outcome.match
    assert outcome.skipped_schemas == ["b"]
    assert outcome.compared_schemas == ["a", "c"]


def test_float_results_are_flagged_but_compared_exactly() -> None:
    outcome = ResultValidator().validate(UNORDERED, {"a": [(0.1 + 0.2,)], "b": [(0.3,)]})
    assert outcome.float_sensitive
    assert not outcome.match


def test_nan_results_match_across_schemas() -> None:
    nan = float("nan")
    query = QueryDef(name="avg", sql="SELECT kind, avg(x) FROM {table} GROUP BY kind")
    outcome = ResultValidator().validate(
        query,
        {"a": [("k", nan), ("m", [1.0, nan])], "b": [("m", [1.0, nan]), ("k", nan)]},
    )
    assert outcome.match
    assert outcome.float_sensitive
    assert outcome.mismatches == []


def test_nan_against_number_is_a_json_safe_difference() -> None:
    diff = diff_results("a", [("k", float("nan"))], "b", [("k", 1.5)])
    assert diff is not None
    assert diff.differing_rows == [{"position": 0, "a": ["k", "nan"], "b": ["k", 1.5]}]
