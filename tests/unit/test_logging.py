from __future__ import annotations

import json
import logging

from schemabench.utils.logging import _json_formatter

EXPECTED_ROWS = 10
EXPECTED_BATCH_SIZE = 1000


def _record() -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello",
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.rows = EXPECTED_ROWS
    record.schema = "by_time"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["rows"] == EXPECTED_ROWS
    assert payload["schema"] == "by_time"
    assert "pathname" not in payload


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"batch_size": EXPECTED_BATCH_SIZE}

    payload = json.loads(_json_formatter(record))

    assert payload["batch_size"] == EXPECTED_BATCH_SIZE


def test_json_formatter_serialises_non_json_values() -> None:
    record = _record()
    record.missing_run_ids = ("r1", "r2")
    record.table = object()

    payload = json.loads(_json_formatter(record))

    assert payload["missing_run_ids"] == ["r1", "r2"]
    assert isinstance(payload["table"], str)
