"""Filter predicates for remote store queries.

A filter is one of four closed variants:

- Equals:  column = value (None means IS NULL)
- In:      column IN (values); the values form a set
- Range:   lower <= column <= upper (either bound optional, strict if not inclusive)
- Pattern: column LIKE pattern, with SQL wildcards % and _

Every variant has a canonical tuple form used to build cache keys, and can be
evaluated against a row dict, which is how change subscriptions decide whether a
written row is of interest to a subscriber.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import orjson


@dataclass(frozen=True, slots=True)
class Equals:
    """column = value."""

    column: str
    value: Any


@dataclass(frozen=True, slots=True)
class In:
    """column IN values."""

    column: str
    values: tuple[Any, ...] = field(default=())

    def __post_init__(self) -> None:
        # Accept lists and sets from callers; the dataclass stays hashable
        object.__setattr__(self, "values", tuple(self.values))


@dataclass(frozen=True, slots=True)
class Range:
    """lower <= column <= upper, either bound optional."""

    column: str
    lower: Any = None
    upper: Any = None
    inclusive: bool = True

    def __post_init__(self) -> None:
        if self.lower is None and self.upper is None:
            raise ValueError(f"Range filter on {self.column!r} needs at least one bound")


@dataclass(frozen=True, slots=True)
class Pattern:
    """column LIKE pattern (ILIKE unless case_sensitive)."""

    column: str
    pattern: str
    case_sensitive: bool = False


Filter = Equals | In | Range | Pattern


def _encode(value: Any) -> str:
    # Type name first: Decimal("1.5") and "1.5" encode to the same JSON string
    tagged = [type(value).__name__, value]
    return orjson.dumps(tagged, option=orjson.OPT_SORT_KEYS, default=str).decode()


def canonical(flt: Filter) -> tuple[Any, ...]:
    """Return the canonical, order-independent form of a filter."""
    if isinstance(flt, Equals):
        return ("eq", flt.column, _encode(flt.value))
    if isinstance(flt, In):
        return ("in", flt.column, tuple(sorted({_encode(v) for v in flt.values})))
    if isinstance(flt, Range):
        return ("range", flt.column, _encode(flt.lower), _encode(flt.upper), flt.inclusive)
    if isinstance(flt, Pattern):
        return ("like", flt.column, flt.pattern, flt.case_sensitive)
    raise TypeError(f"Unsupported filter type: {type(flt).__name__}")


def normalize_filters(filters: Iterable[Filter]) -> tuple[tuple[Any, ...], ...]:
    """Canonicalize and sort a filter set.

    Duplicate filters collapse, so `[a, b]`, `[b, a]` and `[a, b, a]` all
    normalize to the same tuple.
    """
    return tuple(sorted(set(canonical(f) for f in filters)))


def filters_from_mapping(criteria: Mapping[str, Any]) -> list[Filter]:
    """Build Equals filters from a {column: value} mapping.

    List, tuple and set values become In filters.
    """
    result: list[Filter] = []
    for column, value in criteria.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            result.append(In(column, tuple(value)))
        else:
            result.append(Equals(column, value))
    return result


@lru_cache(maxsize=256)
def _like_regex(pattern: str, case_sensitive: bool) -> re.Pattern[str]:
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile("^" + "".join(parts) + "$", flags | re.DOTALL)


def matches(flt: Filter, row: Mapping[str, Any]) -> bool:
    """Evaluate a filter against a row dict."""
    value = row.get(flt.column)

    if isinstance(flt, Equals):
        return value == flt.value
    if isinstance(flt, In):
        return value in flt.values
    if isinstance(flt, Range):
        if value is None:
            return False
        try:
            if flt.lower is not None:
                if value < flt.lower or (not flt.inclusive and value == flt.lower):
                    return False
            if flt.upper is not None:
                if value > flt.upper or (not flt.inclusive and value == flt.upper):
                    return False
        except TypeError:
            return False
        return True
    if isinstance(flt, Pattern):
        if value is None:
            return False
        return _like_regex(flt.pattern, flt.case_sensitive).match(str(value)) is not None
    raise TypeError(f"Unsupported filter type: {type(flt).__name__}")


def matches_all(filters: Iterable[Filter], row: Mapping[str, Any]) -> bool:
    """True when the row satisfies every filter."""
    return all(matches(f, row) for f in filters)
