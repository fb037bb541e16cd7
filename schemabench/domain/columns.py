"""
Column generation rules.

A ClickHouse type tag such as ``Array(Nullable(UInt16))`` is parsed exactly once,
when the configuration is resolved, into a tree of rule objects drawn from a
closed set of variants. Generation then calls ``rule.generate(rng)`` without
looking at type strings again. Supporting a new type means adding a variant
here and a branch in ``_build_rule``.

Every problem found while building rules is a ``ConfigurationError``.
"""
from __future__ import annotations

import random
import re
import string
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, List, Optional, Sequence, Tuple, Union

from schemabench.domain.models import ColumnSpec, DatasetSpec, ElementSpec
from schemabench.errors import ConfigurationError

ALPHANUMERIC = string.ascii_letters + string.digits
EPOCH = datetime(1970, 1, 1)

INTEGER_BOUNDS = {
    "Int8": (-(2**7), 2**7 - 1),
    "Int16": (-(2**15), 2**15 - 1),
    "Int32": (-(2**31), 2**31 - 1),
    "Int64": (-(2**63), 2**63 - 1),
    "UInt8": (0, 2**8 - 1),
    "UInt16": (0, 2**16 - 1),
    "UInt32": (0, 2**32 - 1),
    "UInt64": (0, 2**64 - 1),
}
INTEGER_WIDTHS = {"8": 1, "16": 2, "32": 4, "64": 8}
FLOAT_WIDTHS = {"Float32": 4, "Float64": 8}

# Inclusive bounds the server can store for each temporal type.
DATE_BOUNDS = {
    "Date": (date(1970, 1, 1), date(2149, 6, 6)),
    "Date32": (date(1900, 1, 1), date(2299, 12, 31)),
}
DATETIME_BOUNDS = {
    "DateTime": (EPOCH, datetime(2106, 2, 7, 6, 28, 15)),
    "DateTime64": (datetime(1900, 1, 1), datetime(2299, 12, 31, 23, 59, 59, 999_999)),
}

_TYPE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9]*)\s*(?:\((.*)\))?\s*$", re.DOTALL)
_ENUM_ITEM_RE = re.compile(r"^\s*'((?:[^'\\]|\\.)*)'\s*(?:=\s*-?\d+)?\s*$")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class IntegerRule:
    low: int
    high: int
    width: int
    values: Optional[Tuple[int, ...]] = None

    def generate(self, rng: random.Random) -> int:
        if self.values is not None:
            return rng.choice(self.values)
        return rng.randint(self.low, self.high)

    def avg_width(self) -> float:
        return float(self.width)


@dataclass(frozen=True)
class FloatRule:
    low: float
    high: float
    width: int
    values: Optional[Tuple[float, ...]] = None

    def generate(self, rng: random.Random) -> float:
        if self.values is not None:
            return rng.choice(self.values)
        return rng.uniform(self.low, self.high)

    def avg_width(self) -> float:
        return float(self.width)


@dataclass(frozen=True)
class StringRule:
    min_length: int = 0
    max_length: int = 0
    values: Optional[Tuple[str, ...]] = None

    def generate(self, rng: random.Random) -> str:
        if self.values is not None:
            return rng.choice(self.values)
        length = rng.randint(self.min_length, self.max_length)
        return "".join(rng.choices(ALPHANUMERIC, k=length))

    def avg_width(self) -> float:
        # one byte of length prefix per value
        if self.values is not None:
            return 1 + sum(len(v.encode("utf-8")) for v in self.values) / len(self.values)
        return 1 + (self.min_length + self.max_length) / 2


@dataclass(frozen=True)
class DateRule:
    """Calendar dates; ``low``/``high`` are day ordinals."""

    low: int
    high: int
    width: int
    values: Optional[Tuple[date, ...]] = None

    def generate(self, rng: random.Random) -> date:
        if self.values is not None:
            return rng.choice(self.values)
        return date.fromordinal(rng.randint(self.low, self.high))

    def avg_width(self) -> float:
        return float(self.width)


@dataclass(frozen=True)
class DateTimeRule:
    """Instants; ``low``/``high`` are ticks of ``10**-precision`` seconds since the epoch."""

    low: int
    high: int
    precision: int
    width: int
    values: Optional[Tuple[datetime, ...]] = None

    def generate(self, rng: random.Random) -> datetime:
        if self.values is not None:
            return rng.choice(self.values)
        return _from_ticks(rng.randint(self.low, self.high), self.precision)

    def avg_width(self) -> float:
        return float(self.width)


@dataclass(frozen=True)
class UUIDRule:
    def generate(self, rng: random.Random) -> uuid.UUID:
        return uuid.UUID(int=rng.getrandbits(128), version=4)

    def avg_width(self) -> float:
        return 16.0


@dataclass(frozen=True)
class EnumRule:
    labels: Tuple[str, ...]
    width: int

    def generate(self, rng: random.Random) -> str:
        return rng.choice(self.labels)

    def avg_width(self) -> float:
        return float(self.width)


@dataclass(frozen=True)
class NullableRule:
    inner: "Rule"
    null_probability: float = 0.0

    def generate(self, rng: random.Random) -> Any:
        if self.null_probability and rng.random() < self.null_probability:
            return None
        return self.inner.generate(rng)

    def avg_width(self) -> float:
        # null map byte plus the inner value (stored even for NULLs)
        return 1 + self.inner.avg_width()


@dataclass(frozen=True)
class ArrayRule:
    inner: "Rule"
    min_length: int
    max_length: int

    def generate(self, rng: random.Random) -> List[Any]:
        length = rng.randint(self.min_length, self.max_length)
        return [self.inner.generate(rng) for _ in range(length)]

    def avg_width(self) -> float:
        # 8-byte offset per row
        return 8 + (self.min_length + self.max_length) / 2 * self.inner.avg_width()


@dataclass(frozen=True)
class LowCardinalityRule:
    """Dictionary encoding only changes storage; values come from ``inner``."""

    inner: "Rule"

    def generate(self, rng: random.Random) -> Any:
        return self.inner.generate(rng)

    def avg_width(self) -> float:
        return self.inner.avg_width()


Rule = Union[
    IntegerRule,
    FloatRule,
    StringRule,
    DateRule,
    DateTimeRule,
    UUIDRule,
    EnumRule,
    NullableRule,
    ArrayRule,
    LowCardinalityRule,
]


@dataclass(frozen=True)
class ResolvedColumn:
    name: str
    type: str
    rule: Rule


@dataclass(frozen=True)
class ResolvedDataset:
    name: str
    columns: Tuple[ResolvedColumn, ...]

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def row_width(self) -> float:
        """Estimated uncompressed bytes per row."""
        return sum(column.rule.avg_width() for column in self.columns)

    def estimate_bytes(self, row_count: int) -> int:
        return int(self.row_width() * row_count)


def parse_type(tag: str) -> Tuple[str, Optional[str]]:
    """Split ``Head(args)`` into ``("Head", "args")``; ``("Head", None)`` without parentheses."""
    match = _TYPE_RE.match(tag or "")
    if not match:
        raise ConfigurationError(f"Malformed column type '{tag}'")
    return match.group(1), match.group(2)


def split_arguments(args: str) -> List[str]:
    """Split a type argument list on top-level commas, honouring quotes and parentheses."""
    parts: List[str] = []
    depth = 0
    quoted = False
    escaped = False
    current: List[str] = []
    for ch in args:
        if quoted:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == "'":
                quoted = False
            continue
        if ch == "'":
            quoted = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def _require_range(spec: ElementSpec, where: str) -> Tuple[Any, Any]:
    if spec.range is None:
        raise ConfigurationError(f"{where}: 'range' is required for this type")
    return spec.range


def _check_values(spec: ElementSpec, where: str) -> Optional[List[Any]]:
    if spec.values is None:
        return None
    if len(spec.values) == 0:
        raise ConfigurationError(f"{where}: 'values' must not be empty")
    return list(spec.values)


def _ordered(low: Any, high: Any, where: str) -> None:
    if low > high:
        raise ConfigurationError(f"{where}: range lower bound {low!r} exceeds upper bound {high!r}")


def _as_datetime(value: Any, where: str) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).replace(tzinfo=None)
        except ValueError as exc:
            raise ConfigurationError(f"{where}: invalid timestamp {value!r}") from exc
    raise ConfigurationError(f"{where}: invalid timestamp {value!r}")


def _ticks(moment: datetime, precision: int) -> int:
    delta = moment - EPOCH
    micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    return micros // 10 ** (6 - precision)


def _from_ticks(ticks: int, precision: int) -> datetime:
    return EPOCH + timedelta(microseconds=ticks * 10 ** (6 - precision))


def _integer_rule(head: str, spec: ElementSpec, where: str) -> IntegerRule:
    type_low, type_high = INTEGER_BOUNDS[head]
    width = INTEGER_WIDTHS[head.replace("UInt", "").replace("Int", "")]
    values = _check_values(spec, where)
    if values is not None:
        for value in values:
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"{where}: value {value!r} is not an integer")
            if not type_low <= value <= type_high:
                raise ConfigurationError(f"{where}: value {value} does not fit {head}")
        return IntegerRule(low=min(values), high=max(values), width=width, values=tuple(values))
    low, high = _require_range(spec, where)
    if not all(isinstance(b, int) and not isinstance(b, bool) for b in (low, high)):
        raise ConfigurationError(f"{where}: integer range bounds must be integers")
    _ordered(low, high, where)
    if low < type_low or high > type_high:
        raise ConfigurationError(f"{where}: range [{low}, {high}] does not fit {head}")
    return IntegerRule(low=low, high=high, width=width)


def _float_rule(head: str, spec: ElementSpec, where: str) -> FloatRule:
    values = _check_values(spec, where)
    if values is not None:
        floats = tuple(float(v) for v in values)
        return FloatRule(low=min(floats), high=max(floats), width=FLOAT_WIDTHS[head], values=floats)
    low, high = _require_range(spec, where)
    try:
        low, high = float(low), float(high)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{where}: float range bounds must be numbers") from exc
    _ordered(low, high, where)
    return FloatRule(low=low, high=high, width=FLOAT_WIDTHS[head])


def _string_rule(spec: ElementSpec, where: str) -> StringRule:
    values = _check_values(spec, where)
    if values is not None:
        return StringRule(values=tuple(str(v) for v in values))
    low, high = _require_range(spec, where)
    if not all(isinstance(b, int) and not isinstance(b, bool) for b in (low, high)) or low < 0:
        raise ConfigurationError(f"{where}: string length bounds must be non-negative integers")
    _ordered(low, high, where)
    return StringRule(min_length=low, max_length=high)


def _within(head: str, bounds: Tuple[Any, Any], moments: Sequence[Any], where: str) -> None:
    low, high = bounds
    for moment in moments:
        if not low <= moment <= high:
            raise ConfigurationError(
                f"{where}: {moment.isoformat()} is outside the {head} range [{low}, {high}]"
            )


def _date_rule(head: str, spec: ElementSpec, where: str) -> DateRule:
    width = 2 if head == "Date" else 4
    values = _check_values(spec, where)
    if values is not None:
        dates = tuple(_as_datetime(v, where).date() for v in values)
        _within(head, DATE_BOUNDS[head], dates, where)
        return DateRule(low=0, high=0, width=width, values=dates)
    low, high = (_as_datetime(b, where).date() for b in _require_range(spec, where))
    _ordered(low, high, where)
    _within(head, DATE_BOUNDS[head], (low, high), where)
    return DateRule(low=low.toordinal(), high=high.toordinal(), width=width)


def _datetime_rule(head: str, args: Optional[str], spec: ElementSpec, where: str) -> DateTimeRule:
    precision = 0
    width = 4
    if head == "DateTime64":
        arguments = split_arguments(args or "")
        if not arguments or not arguments[0].isdigit():
            raise ConfigurationError(f"{where}: DateTime64 requires a precision argument")
        # the Python client carries microseconds at most
        precision = min(int(arguments[0]), 6)
        width = 8
    values = _check_values(spec, where)
    if values is not None:
        moments = tuple(_as_datetime(v, where) for v in values)
        _within(head, DATETIME_BOUNDS[head], moments, where)
        # stored values carry only `precision` fractional digits
        truncated = tuple(_from_ticks(_ticks(m, precision), precision) for m in moments)
        return DateTimeRule(low=0, high=0, precision=precision, width=width, values=truncated)
    low, high = (_as_datetime(b, where) for b in _require_range(spec, where))
    _ordered(low, high, where)
    _within(head, DATETIME_BOUNDS[head], (low, high), where)
    return DateTimeRule(
        low=_ticks(low, precision), high=_ticks(high, precision), precision=precision, width=width
    )


def _enum_rule(head: str, args: Optional[str], spec: ElementSpec, where: str) -> EnumRule:
    declared: List[str] = []
    for item in split_arguments(args or ""):
        match = _ENUM_ITEM_RE.match(item)
        if not match:
            raise ConfigurationError(f"{where}: malformed enum item {item!r}")
        declared.append(match.group(1).replace("\\'", "'"))
    if not declared:
        raise ConfigurationError(f"{where}: enum declares no labels")
    labels = declared
    values = _check_values(spec, where)
    if values is not None:
        unknown = [v for v in values if v not in declared]
        if unknown:
            raise ConfigurationError(f"{where}: values {unknown!r} are not enum labels")
        labels = [str(v) for v in values]
    return EnumRule(labels=tuple(labels), width=1 if head == "Enum8" else 2)


def _is_nullable(tag: str) -> bool:
    head, args = parse_type(tag)
    if head == "LowCardinality" and args is not None:
        return _is_nullable(args)
    return head == "Nullable"


def _check_probability(spec: ElementSpec, tag: str, where: str) -> None:
    probability = spec.null_probability
    if probability is None:
        return
    if not 0.0 <= probability <= 1.0:
        raise ConfigurationError(f"{where}: null_probability {probability} is outside [0, 1]")
    if probability and not _is_nullable(tag):
        raise ConfigurationError(f"{where}: null_probability requires a Nullable type")


def _build_rule(tag: str, spec: ElementSpec, where: str) -> Rule:
    head, args = parse_type(tag)
    if head == "Nullable":
        if args is None:
            raise ConfigurationError(f"{where}: Nullable requires an inner type")
        inner = _build_rule(args, spec, where)
        return NullableRule(inner=inner, null_probability=spec.null_probability or 0.0)
    if head == "LowCardinality":
        if args is None:
            raise ConfigurationError(f"{where}: LowCardinality requires an inner type")
        return LowCardinalityRule(inner=_build_rule(args, spec, where))
    if head == "Array":
        if args is None:
            raise ConfigurationError(f"{where}: Array requires an item type")
        low, high = _require_range(spec, where)
        if not all(isinstance(b, int) and not isinstance(b, bool) for b in (low, high)) or low < 0:
            raise ConfigurationError(f"{where}: array length bounds must be non-negative integers")
        _ordered(low, high, where)
        element = spec.element or ElementSpec()
        _check_probability(element, args, f"{where}[]")
        inner = _build_rule(args, element, f"{where}[]")
        return ArrayRule(inner=inner, min_length=low, max_length=high)
    if args is not None and head not in ("DateTime64", "DateTime", "Enum8", "Enum16"):
        raise ConfigurationError(f"{where}: unexpected arguments for {head}")
    if head in INTEGER_BOUNDS:
        return _integer_rule(head, spec, where)
    if head in FLOAT_WIDTHS:
        return _float_rule(head, spec, where)
    if head == "String":
        return _string_rule(spec, where)
    if head in ("Date", "Date32"):
        return _date_rule(head, spec, where)
    if head in ("DateTime", "DateTime64"):
        return _datetime_rule(head, args, spec, where)
    if head == "UUID":
        return UUIDRule()
    if head in ("Enum8", "Enum16"):
        return _enum_rule(head, args, spec, where)
    raise ConfigurationError(f"{where}: unsupported column type '{tag}'")


def resolve_column(spec: ColumnSpec) -> ResolvedColumn:
    where = f"column '{spec.name}'"
    if not _IDENTIFIER_RE.match(spec.name):
        raise ConfigurationError(f"{where}: not a valid identifier")
    _check_probability(spec, spec.type, where)
    rule = _build_rule(spec.type, spec, where)
    return ResolvedColumn(name=spec.name, type=spec.type.strip(), rule=rule)


def resolve_dataset(spec: DatasetSpec) -> ResolvedDataset:
    if not spec.columns:
        raise ConfigurationError(f"dataset '{spec.name}' has no columns")
    seen = set()
    columns: List[ResolvedColumn] = []
    for column in spec.columns:
        if column.name in seen:
            raise ConfigurationError(f"dataset '{spec.name}': duplicate column '{column.name}'")
        seen.add(column.name)
        columns.append(resolve_column(column))
    return ResolvedDataset(name=spec.name, columns=tuple(columns))


def is_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name))


__all__ = [
    "Rule",
    "IntegerRule",
    "FloatRule",
    "StringRule",
    "DateRule",
    "DateTimeRule",
    "UUIDRule",
    "EnumRule",
    "NullableRule",
    "ArrayRule",
    "LowCardinalityRule",
    "ResolvedColumn",
    "ResolvedDataset",
    "parse_type",
    "split_arguments",
    "resolve_column",
    "resolve_dataset",
    "is_identifier",
]
