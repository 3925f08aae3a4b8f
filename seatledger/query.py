"""
Declarative filters for list endpoints.

Callers describe a query as a list of :class:`Filter` values; the builder
validates them against a per-model whitelist and compiles them into
SQLAlchemy predicates, so no service ever concatenates SQL.
"""

import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy import Select
from sqlalchemy.orm import InstrumentedAttribute

from seatledger.exceptions import ValidationError


class Op(str, enum.Enum):
    EQ = "eq"
    NE = "ne"
    IN = "in"
    GTE = "gte"
    LTE = "lte"
    LIKE = "like"


@dataclass(frozen=True)
class Filter:
    field: str
    op: Op
    value: Any


def parse_filters(params: Mapping[str, Any]) -> list[Filter]:
    """
    Turn ``{"status": "pending", "quantity__gte": 2}`` style parameters into filters.

    Comma separated values are split for the ``in`` operator. ``None`` values
    are skipped so optional query parameters can be passed straight through.
    """
    filters = []
    for key, value in params.items():
        if value is None:
            continue
        field, _, op_name = key.partition("__")
        try:
            op = Op(op_name or "eq")
        except ValueError:
            raise ValidationError(f"Unsupported filter operator: {op_name}")
        if op is Op.IN and isinstance(value, str):
            value = [v for v in value.split(",") if v]
        filters.append(Filter(field, op, value))
    return filters


def _coerce(column: InstrumentedAttribute, value: Any) -> Any:
    enum_class = getattr(column.type, "enum_class", None)
    if enum_class is not None and not isinstance(value, enum_class):
        try:
            return enum_class(value)
        except ValueError:
            raise ValidationError(f"Invalid value for {column.key}: {value}")
    if not isinstance(value, str):
        return value

    # Query strings arrive as text
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    try:
        if python_type is bool:
            return value.lower() in ("1", "true", "yes")
        if python_type in (int, Decimal):
            return python_type(value)
        if python_type in (date, datetime):
            return python_type.fromisoformat(value)
    except (ValueError, ArithmeticError):
        raise ValidationError(f"Invalid value for {column.key}: {value}")
    return value


def compile_filters(
    model: type,
    filters: Iterable[Filter],
    allowed: Iterable[str],
) -> list:
    """
    Compile filters into SQLAlchemy boolean clauses.

    Raises:
        ValidationError: If a field is not whitelisted for the model
    """
    allowed = set(allowed)
    clauses = []
    for f in filters:
        if f.field not in allowed:
            raise ValidationError(f"Cannot filter on field: {f.field}")
        column = getattr(model, f.field)

        if f.op is Op.IN:
            values = f.value if isinstance(f.value, (list, tuple, set)) else [f.value]
            clauses.append(column.in_([_coerce(column, v) for v in values]))
            continue

        value = _coerce(column, f.value)
        if f.op is Op.EQ:
            clauses.append(column == value)
        elif f.op is Op.NE:
            clauses.append(column != value)
        elif f.op is Op.GTE:
            clauses.append(column >= value)
        elif f.op is Op.LTE:
            clauses.append(column <= value)
        elif f.op is Op.LIKE:
            clauses.append(column.like(f"%{value}%"))
    return clauses


def apply_filters(
    stmt: Select,
    model: type,
    filters: Iterable[Filter],
    allowed: Iterable[str],
) -> Select:
    """Add compiled filters to a select statement."""
    clauses = compile_filters(model, filters, allowed)
    if clauses:
        stmt = stmt.where(*clauses)
    return stmt
