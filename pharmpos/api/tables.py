import dataclasses
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmpos.api.auth import Identity, get_identity, request_meta
from pharmpos.database import get_db
from pharmpos.filters import Operator
from pharmpos.services import table_service
from pharmpos.services.audit_service import log_audit_event
from pharmpos.services.refund_service import RestorationResult
from pharmpos.services.table_registry import TableSpec
from pharmpos.services.table_service import AppendOnlyError, ConflictError, RowNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tables"])


def _raise_http(exc: Exception, table: str, action: str):
    if isinstance(exc, IntegrityError):
        spec = table_service.resolve_table(table)
        logger.warning("Constraint violation on %s %s: %s", action, spec.name, exc.orig)
        raise HTTPException(409, table_service.describe_integrity_error(spec, exc, action))
    if isinstance(exc, AppendOnlyError):
        raise HTTPException(405, str(exc))
    if isinstance(exc, ConflictError):
        raise HTTPException(409, str(exc))
    if isinstance(exc, RowNotFoundError):
        raise HTTPException(404, str(exc))
    if isinstance(exc, ValueError):
        raise HTTPException(400, str(exc))
    raise exc


def _audit(
    spec: TableSpec,
    action: str,
    values: dict[str, Any],
    identity: Identity,
    request: Request,
    resource_id: str | None = None,
    details: Any = None,
):
    event_type = spec.event_type(action, values)
    if not event_type:
        return
    # An explicit user_id in the payload names the acting user more precisely than the token
    user_id = values.get("user_id") or identity.id
    same_user = user_id == identity.id
    log_audit_event(
        event_type,
        f"{action} {spec.name}",
        user_id=user_id,
        user_email=identity.email if same_user else None,
        user_role=identity.role if same_user else None,
        resource_type=spec.name,
        resource_id=resource_id,
        details=details if details is not None else values,
        **request_meta(request),
    )


@router.get("/{table}")
def read_table(table: str, request: Request, db: Session = Depends(get_db)):
    try:
        return table_service.read_rows(db, table, request.query_params.multi_items())
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.post("/{table}", status_code=201)
def insert_into_table(
    table: str,
    request: Request,
    body: Any = Body(default=None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    try:
        spec, rows = table_service.insert_rows(db, table, body)
    except Exception as e:
        _raise_http(e, table, "insert")

    for row in rows:
        _audit(spec, "insert", row, identity, request, resource_id=row["id"])

    result = {"success": True, "id": rows[0]["id"]}
    if isinstance(body, list):
        result["ids"] = [row["id"] for row in rows]
    return result


@router.patch("/{table}")
@router.patch("/{table}/{row_id}")
def update_table_row(
    table: str,
    request: Request,
    row_id: str | None = None,
    body: Any = Body(default=None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    if row_id is None:
        raw = request.query_params.get("id", "")
        row_id = raw[3:] if raw.startswith("eq.") else raw or None
    if row_id is None and isinstance(body, dict):
        row_id = body.get("id")

    try:
        outcome = table_service.update_row(db, table, row_id, body)
    except Exception as e:
        _raise_http(e, table, "update")

    result = {"success": True, "id": outcome.row_id}
    details = dict(outcome.values)
    if isinstance(outcome.side_effect, RestorationResult):
        restoration = dataclasses.asdict(outcome.side_effect)
        result["restoration"] = restoration
        details["restoration"] = restoration
    _audit(outcome.spec, "update", outcome.values, identity, request, resource_id=outcome.row_id, details=details)
    return result


@router.delete("/{table}")
def delete_from_table(
    table: str,
    request: Request,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    try:
        spec, affected, filters = table_service.delete_rows(db, table, request.query_params.multi_items())
    except Exception as e:
        _raise_http(e, table, "delete")

    conditions = dict(f.to_param() for f in filters)
    deleted_id = next((f.value for f in filters if f.column == "id" and f.operator is Operator.EQ), None)
    _audit(
        spec, "delete", {}, identity, request,
        resource_id=deleted_id,
        details={"conditions": conditions, "affectedRows": affected},
    )
    return {"success": True, "affectedRows": affected}
