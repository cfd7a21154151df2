import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import ValidationError

from pharmpos.api.auth import Identity, get_identity, request_meta
from pharmpos.schemas.audit import AuditEventRpc
from pharmpos.services.audit_service import log_audit_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rpc", tags=["RPC"])


def _log_audit_event(params: dict, identity: Identity, request: Request) -> dict:
    try:
        data = AuditEventRpc.model_validate(params)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid audit event: {e.errors()[0]['msg']}")

    meta = request_meta(request)
    # Caller-named user wins; the token only fills in when no user was named
    from_token = not data.p_user_id
    entry_id = log_audit_event(
        data.p_event_type,
        data.p_action,
        user_id=data.p_user_id or identity.id,
        user_email=data.p_user_email or (identity.email if from_token else None),
        user_role=data.p_user_role or (identity.role if from_token else None),
        status=data.p_status,
        resource_type=data.p_resource_type,
        resource_id=data.p_resource_id,
        details=data.p_details,
        error_message=data.p_error_message,
        ip_address=data.p_ip_address or meta["ip_address"],
        user_agent=data.p_user_agent or meta["user_agent"],
    )
    return {"success": entry_id is not None, "id": entry_id}


@router.post("/{name}")
def call_rpc(
    name: str,
    request: Request,
    params: Any = Body(default=None),
    identity: Identity = Depends(get_identity),
):
    params = params if isinstance(params, dict) else {}
    if name == "log_audit_event":
        return _log_audit_event(params, identity, request)
    logger.info("RPC %s acknowledged without a handler", name)
    return {"success": True, "message": f"RPC {name} acknowledged"}
