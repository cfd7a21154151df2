import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from pharmpos.services.query_service import (
    build_delete,
    build_insert,
    build_select,
    build_update,
    parse_columns,
    parse_filters,
    parse_order,
    validate_table_name,
)
from pharmpos.services.table_registry import TableSpec, get_table

logger = logging.getLogger(__name__)


class RowNotFoundError(LookupError):
    pass


class ConflictError(ValueError):
    pass


class AppendOnlyError(ValueError):
    pass


@dataclass
class UpdateResult:
    spec: TableSpec
    row_id: str
    values: dict[str, Any]
    side_effect: Any = None


def resolve_table(table: str) -> TableSpec:
    name = validate_table_name(table)
    spec = get_table(name)
    if spec is None:
        raise ValueError(f"Invalid or restricted table: {name}")
    return spec


def _encode(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _int_param(options: dict[str, str], key: str) -> int | None:
    raw = options.get(key)
    if raw in (None, ""):
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"'{key}' must be an integer")
    if value < 0:
        raise ValueError(f"'{key}' must not be negative")
    return value


def _is_missing_table(exc: Exception) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "no such table" in message or "does not exist" in message or "doesn't exist" in message


def describe_integrity_error(spec: TableSpec, exc: IntegrityError, action: str) -> str:
    message = str(exc.orig).lower()
    if "unique" in message or "duplicate" in message:
        return f"{spec.label} already exists"
    if "foreign key" in message:
        if action == "insert":
            return f"{spec.label} references a record that does not exist"
        return f"{spec.label} is referenced by other records"
    return f"{spec.label} violates a database constraint"


def read_rows(db: Session, table: str, params: list[tuple[str, str]]) -> list[dict]:
    """Filtered read. Unregistered or not-yet-created tables read as empty."""
    name = validate_table_name(table)
    spec = get_table(name)
    if spec is None:
        logger.info("Read on unregistered table %s, returning no rows", name)
        return []

    options = dict(params)
    columns = parse_columns(options.get("select"))
    stmt = build_select(
        spec,
        parse_filters(params, reserved=spec.extra_reserved),
        columns=columns,
        order=parse_order(options.get("order")),
        limit=_int_param(options, "limit"),
        offset=_int_param(options, "offset"),
        options=options,
        dialect=db.get_bind().dialect.name,
    )
    types = {c: spec.columns[c].type for c in (columns or spec.columns)}
    logger.debug("SQL: %s PARAMS: %s", stmt.sql, stmt.params)

    try:
        rows = db.execute(text(stmt.sql).columns(**types), stmt.params).mappings().all()
    except (OperationalError, ProgrammingError) as e:
        if not _is_missing_table(e):
            raise
        db.rollback()
        logger.warning("Table %s does not exist yet, returning no rows", name)
        return []
    return [spec.shape(dict(row)) for row in rows]


def insert_rows(db: Session, table: str, body: Any) -> tuple[TableSpec, list[dict]]:
    spec = resolve_table(table)
    rows = body if isinstance(body, list) else [body]
    if not rows or not all(isinstance(r, dict) for r in rows):
        raise ValueError("Body must be an object or a list of objects")

    inserted = []
    try:
        for raw in rows:
            data = spec.map_keys(raw)
            if not data.get("id"):
                data["id"] = str(uuid.uuid4())
                logger.debug("Generated id for %s: %s", spec.name, data["id"])
            if spec.prepare_insert:
                spec.prepare_insert(db, data)
            data = {k: _encode(v) for k, v in data.items()}
            stmt = build_insert(spec, data)
            db.execute(text(stmt.sql), stmt.params)
            inserted.append(data)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Inserted %d row(s) into %s", len(inserted), spec.name)
    return spec, inserted


def update_row(db: Session, table: str, row_id: str | None, body: Any) -> UpdateResult:
    spec = resolve_table(table)
    if spec.append_only:
        raise AppendOnlyError(f"{spec.label} rows cannot be modified")
    if not row_id:
        raise ValueError("Missing ID for patch")
    if not isinstance(body, dict):
        raise ValueError("Body must be an object")

    values = {k: _encode(v) for k, v in spec.map_keys(body).items() if k != "id"}
    guard = spec.update_guard(values) if spec.update_guard else None
    stmt = build_update(spec, row_id, values, extra_where=guard)

    try:
        result = db.execute(text(stmt.sql), stmt.params)
        if result.rowcount == 0:
            exists = db.execute(text(f"SELECT 1 FROM {spec.name} WHERE id = :id"), {"id": row_id}).first()
            if not exists:
                raise RowNotFoundError(f"{spec.label} {row_id} not found")
            expected = ", ".join(f"{k}={v}" for k, v in (guard or {}).items())
            raise ConflictError(f"{spec.label} {row_id} can only change while {expected}")
        side_effect = spec.after_update(db, row_id, values) if spec.after_update else None
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Updated %s %s", spec.name, row_id)
    return UpdateResult(spec=spec, row_id=row_id, values=values, side_effect=side_effect)


def delete_rows(db: Session, table: str, params: list[tuple[str, str]]) -> tuple[TableSpec, int, list]:
    spec = resolve_table(table)
    if spec.append_only:
        raise AppendOnlyError(f"{spec.label} rows cannot be deleted")
    filters = parse_filters(params, reserved=spec.extra_reserved)
    stmt = build_delete(spec, filters)
    try:
        result = db.execute(text(stmt.sql), stmt.params)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Deleted %d row(s) from %s", result.rowcount, spec.name)
    return spec, result.rowcount, filters
