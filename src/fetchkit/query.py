"""Query constraint builders, serialization and in-memory evaluation."""

from __future__ import annotations

import json
import operator
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from fetchkit.types import (
    Constraint,
    FilterOp,
    LimitSpec,
    QueryConstraint,
    SortDirection,
    SortSpec,
)

_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda field_value, value: field_value in value,
    "not-in": lambda field_value, value: field_value not in value,
    "array-contains": lambda field_value, value: (
        isinstance(field_value, list) and value in field_value
    ),
}


def where(field: str, op: FilterOp, value: Any) -> QueryConstraint:
    if op not in _COMPARISONS:
        raise ValueError(f"Unsupported filter operator: {op!r}")
    if op in ("in", "not-in") and not isinstance(value, (list, tuple, set)):
        raise ValueError(f"{op!r} filter on {field!r} needs a sequence")
    return QueryConstraint(field, op, value)


def where_equal(field: str, value: Any) -> QueryConstraint:
    return where(field, "==", value)


def where_in(field: str, values: Sequence[Any]) -> QueryConstraint:
    return where(field, "in", list(values))


def where_greater(field: str, value: Any) -> QueryConstraint:
    return where(field, ">", value)


def where_less(field: str, value: Any) -> QueryConstraint:
    return where(field, "<", value)


def order_by(field: str, direction: SortDirection = "asc") -> SortSpec:
    if direction not in ("asc", "desc"):
        raise ValueError(f"Unsupported sort direction: {direction!r}")
    return SortSpec(field, direction)


def limit_to(count: int) -> LimitSpec:
    if count < 1:
        raise ValueError("limit must be positive")
    return LimitSpec(count)


def build_constraints(
    filters: Iterable[QueryConstraint] = (),
    sort: Iterable[SortSpec] = (),
    limit: int | None = None,
) -> tuple[Constraint, ...]:
    """Filters first, then ordering, then the optional limit."""
    constraints: list[Constraint] = [*filters, *sort]
    if limit is not None:
        constraints.append(limit_to(limit))
    return tuple(constraints)


# -----------------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------------


def constraint_to_dict(constraint: Constraint) -> dict[str, Any]:
    if isinstance(constraint, QueryConstraint):
        return {
            "type": "where",
            "field": constraint.field,
            "op": constraint.op,
            "value": constraint.value,
        }
    if isinstance(constraint, SortSpec):
        return {
            "type": "orderBy",
            "field": constraint.field,
            "direction": constraint.direction,
        }
    if isinstance(constraint, LimitSpec):
        return {"type": "limit", "count": constraint.count}
    raise TypeError(f"Expected a constraint, got {type(constraint)}")


def constraint_from_dict(data: dict[str, Any]) -> Constraint:
    kind = data.get("type")
    if kind == "where":
        return where(data["field"], data["op"], data["value"])
    if kind == "orderBy":
        return order_by(data["field"], data.get("direction", "asc"))
    if kind == "limit":
        return limit_to(data["count"])
    raise ValueError(f"Unknown constraint type: {kind!r}")


def constraints_key(constraints: Sequence[Constraint]) -> str:
    """Stable string form, suitable as part of a cache key."""
    return json.dumps(
        [constraint_to_dict(c) for c in constraints],
        sort_keys=True,
        default=str,
    )


# -----------------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------------


def matches(document: dict[str, Any], constraint: QueryConstraint) -> bool:
    """True if the document satisfies a single filter."""
    if constraint.field not in document:
        return False
    compare = _COMPARISONS[constraint.op]
    try:
        return bool(compare(document[constraint.field], constraint.value))
    except TypeError:
        return False


def apply_constraints(
    documents: Iterable[dict[str, Any]], constraints: Sequence[Constraint]
) -> list[dict[str, Any]]:
    """Filter, sort and limit documents the way the remote store would.

    Documents are ordered by ``id`` unless sort specs say otherwise; a
    document missing a sorted field is excluded.
    """
    filters = [c for c in constraints if isinstance(c, QueryConstraint)]
    sorts = [c for c in constraints if isinstance(c, SortSpec)]
    limits = [c for c in constraints if isinstance(c, LimitSpec)]

    result = [
        doc
        for doc in documents
        if all(matches(doc, f) for f in filters)
        and all(s.field in doc for s in sorts)
    ]
    result.sort(key=lambda doc: str(doc.get("id", "")))
    for spec in reversed(sorts):
        result.sort(
            key=lambda doc, field=spec.field: _sort_key(doc[field]),
            reverse=spec.direction == "desc",
        )
    if limits:
        result = result[: min(limit.count for limit in limits)]
    return result


def _sort_key(value: Any) -> tuple[int, Any]:
    # None sorts first, then numbers, then everything else as text
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    return (2, str(value))
