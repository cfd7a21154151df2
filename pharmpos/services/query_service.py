"""Translate wire filters into parameterized SQL against a registered table.

Only identifiers that passed ``IDENTIFIER_RE`` and the table's column
allow-list are interpolated into SQL text; every value is a bound parameter.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric

from pharmpos.config import settings
from pharmpos.filters import FilterExpression, Operator
from pharmpos.services.table_registry import TableSpec

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[a-z0-9_]+$", re.IGNORECASE)

RESERVED_PARAMS = frozenset({"order", "limit", "select", "offset"})

# 2026-01-05T15:12:54.307Z, 2026-01-05 15:12:54+01:00, 2026-01-05T15:12 ...
ISO_TIMESTAMP_RE = re.compile(
    r"^(?P<date>(?:19|20)\d{2}-\d{2}-\d{2})"
    r"(?:[Tt ](?P<time>\d{2}:\d{2}(?::\d{2})?)(?:\.\d+)?)?"
    r"(?:[Zz]|[+-]\d{2}:?\d{2})?$"
)

# Dialects that only accept OFFSET after a LIMIT, and their "no limit" literal
UNBOUNDED_LIMIT = {
    "sqlite": "-1",
    "mysql": "18446744073709551615",
    "mariadb": "18446744073709551615",
}

SQL_OPERATORS = {
    Operator.EQ: "=",
    Operator.NEQ: "!=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.LIKE: "LIKE",
    Operator.ILIKE: "LIKE",
}


@dataclass
class SqlStatement:
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


def validate_table_name(table: str) -> str:
    if not IDENTIFIER_RE.match(table or ""):
        raise ValueError(f"Invalid table name: {table!r}")
    return table.lower()


def normalize_timestamp(value: Any) -> Any:
    """Turn an ISO-8601 string into the space-separated literal the store expects."""
    if not isinstance(value, str):
        return value
    match = ISO_TIMESTAMP_RE.match(value)
    if not match:
        return value
    if match.group("time"):
        return f"{match.group('date')} {match.group('time')}"
    return match.group("date")


def parse_filters(
    items: Iterable[tuple[str, str]],
    reserved: Iterable[str] = (),
    strict: bool | None = None,
) -> list[FilterExpression]:
    """Decode query-string pairs into filter expressions, skipping reserved keys."""
    if strict is None:
        strict = settings.STRICT_FILTER_OPERATORS
    skip = RESERVED_PARAMS | set(reserved)
    filters = []
    for key, raw in items:
        if key in skip:
            continue
        expr = FilterExpression.from_param(key, raw, strict=strict)
        if expr is None:
            logger.debug("Ignoring filter %s=%s (no operator)", key, raw)
            continue
        filters.append(expr)
    return filters


def parse_order(raw: str | None) -> tuple[str, bool] | None:
    if not raw:
        return None
    column, _, direction = raw.partition(".")
    return column, direction.lower() != "desc"


def parse_columns(raw: str | None) -> list[str] | None:
    if not raw or raw.strip() == "*":
        return None
    return [c.strip() for c in raw.split(",") if c.strip()]


def check_column(spec: TableSpec, column: str) -> str:
    if not IDENTIFIER_RE.match(column) or column not in spec.columns:
        raise ValueError(f"Unknown column '{column}' for table '{spec.name}'")
    return column


def coerce_value(spec: TableSpec, column: str, value: Any) -> Any:
    """Bind a wire string with the Python type of its column, normalizing timestamps."""
    if not isinstance(value, str):
        return value
    col_type = spec.columns[column].type
    if isinstance(col_type, (Date, DateTime)):
        return _coerce_temporal(column, value, date_only=not isinstance(col_type, DateTime))
    try:
        if isinstance(col_type, Boolean):
            lowered = value.lower()
            if lowered in ("true", "t", "1"):
                return True
            if lowered in ("false", "f", "0"):
                return False
            return value
        if isinstance(col_type, Integer):
            return int(value)
        if isinstance(col_type, (Float, Numeric)):
            return float(value)
    except ValueError:
        return value
    return normalize_timestamp(value)


def _coerce_temporal(column: str, value: str, date_only: bool) -> str | None:
    """Empty means NULL; anything else must parse as ISO-8601 or the write is refused."""
    value = value.strip()
    if not value:
        return None
    normalized = normalize_timestamp(value)
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        raise ValueError(f"Invalid date for column '{column}': {value!r}") from None
    if date_only:
        return parsed.date().isoformat()
    return normalized


class _Binder:
    def __init__(self, prefix: str = "p"):
        self.prefix = prefix
        self.params: dict[str, Any] = {}

    def bind(self, value: Any) -> str:
        name = f"{self.prefix}{len(self.params)}"
        self.params[name] = value
        return f":{name}"


def _predicate(spec: TableSpec, expr: FilterExpression, binder: _Binder) -> str:
    column = check_column(spec, expr.column)
    if expr.operator is Operator.IN:
        if not expr.value:
            return "1 = 0"
        placeholders = ", ".join(binder.bind(coerce_value(spec, column, v)) for v in expr.value)
        return f"{column} IN ({placeholders})"
    if expr.operator is Operator.ILIKE:
        return f"LOWER({column}) LIKE LOWER({binder.bind(f'%{expr.value}%')})"
    if expr.operator is Operator.LIKE:
        return f"{column} LIKE {binder.bind(f'%{expr.value}%')}"
    return f"{column} {SQL_OPERATORS[expr.operator]} {binder.bind(coerce_value(spec, column, expr.value))}"


def build_where(
    spec: TableSpec, filters: list[FilterExpression], binder: _Binder, extra: list[str] | None = None
) -> str:
    clauses = list(extra or [])
    clauses.extend(_predicate(spec, f, binder) for f in filters)
    if not clauses:
        return ""
    return " WHERE " + " AND ".join(clauses)


def build_select(
    spec: TableSpec,
    filters: list[FilterExpression],
    columns: list[str] | None = None,
    order: tuple[str, bool] | None = None,
    limit: int | None = None,
    offset: int | None = None,
    options: dict[str, str] | None = None,
    dialect: str = "sqlite",
) -> SqlStatement:
    binder = _Binder()
    projection = ", ".join(check_column(spec, c) for c in columns) if columns else "*"
    extra = []
    if spec.default_predicate:
        predicate = spec.default_predicate(options or {})
        if predicate:
            extra.append(predicate)

    sql = f"SELECT {projection} FROM {spec.name}"
    sql += build_where(spec, filters, binder, extra)

    order = order or spec.default_order
    if order:
        column, ascending = order
        sql += f" ORDER BY {check_column(spec, column)} {'ASC' if ascending else 'DESC'}"
    if limit is not None:
        sql += f" LIMIT {binder.bind(int(limit))}"
    elif offset and dialect in UNBOUNDED_LIMIT:
        sql += f" LIMIT {UNBOUNDED_LIMIT[dialect]}"
    if offset:
        sql += f" OFFSET {binder.bind(int(offset))}"
    return SqlStatement(sql, binder.params)


def build_insert(spec: TableSpec, data: dict[str, Any]) -> SqlStatement:
    binder = _Binder("v")
    columns = [check_column(spec, c) for c in data]
    placeholders = [binder.bind(coerce_value(spec, c, data[c])) for c in columns]
    sql = f"INSERT INTO {spec.name} ({', '.join(columns)}) VALUES ({', '.join(placeholders)})"
    return SqlStatement(sql, binder.params)


def build_update(
    spec: TableSpec, row_id: str, data: dict[str, Any], extra_where: dict[str, Any] | None = None
) -> SqlStatement:
    binder = _Binder("v")
    assignments = [
        f"{check_column(spec, c)} = {binder.bind(coerce_value(spec, c, v))}"
        for c, v in data.items()
        if c != "id"
    ]
    if not assignments:
        raise ValueError("Nothing to update")
    if "updated_at" in spec.columns and "updated_at" not in data:
        assignments.append("updated_at = CURRENT_TIMESTAMP")
    sql = f"UPDATE {spec.name} SET {', '.join(assignments)} WHERE id = {binder.bind(row_id)}"
    for column, value in (extra_where or {}).items():
        sql += f" AND {check_column(spec, column)} = {binder.bind(value)}"
    return SqlStatement(sql, binder.params)


def build_delete(spec: TableSpec, filters: list[FilterExpression]) -> SqlStatement:
    if not filters:
        raise ValueError("No delete condition provided")
    binder = _Binder()
    sql = f"DELETE FROM {spec.name}" + build_where(spec, filters, binder)
    return SqlStatement(sql, binder.params)
