from typing import Any

from pydantic import BaseModel


class AuditEventRpc(BaseModel):
    """Parameters of the ``log_audit_event`` RPC, prefixed the way the client sends them."""

    p_event_type: str
    p_action: str = ""
    p_user_id: str | None = None
    p_user_email: str | None = None
    p_user_role: str | None = None
    p_status: str = "success"
    p_resource_type: str | None = None
    p_resource_id: str | None = None
    p_details: Any = None
    p_error_message: str | None = None
    p_ip_address: str | None = None
    p_user_agent: str | None = None
