import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from pharmpos.database import SessionLocal
from pharmpos.models.audit_log import AuditLog
from pharmpos.models.user import User

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"
SENTINEL_USER_IDS = {"system", "unknown"}


def _lookup_identity(db: Session, user_id: str) -> tuple[str | None, str | None]:
    try:
        user = db.query(User).filter(User.id == user_id).first()
    except Exception as e:
        db.rollback()
        logger.warning("Audit identity lookup failed for %s: %s", user_id, e)
        return None, None
    if not user:
        return None, None
    return user.email, user.role


def _serialize_details(details: Any) -> Any:
    if isinstance(details, (dict, list)):
        return json.dumps(details, default=str)
    return details


def log_audit_event(
    event_type: str,
    action: str,
    *,
    user_id: str | None = None,
    user_email: str | None = None,
    user_role: str | None = None,
    status: str | None = "success",
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: Any = None,
    error_message: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> str | None:
    """Append one audit entry in a session of its own.

    Failures are logged and swallowed so the triggering operation is never
    affected. Returns the new entry id, or None when nothing was written.
    """
    db = None
    try:
        db = SessionLocal()
        user_id = user_id or SYSTEM_USER
        if user_id not in SENTINEL_USER_IDS and (not user_email or not user_role):
            found_email, found_role = _lookup_identity(db, user_id)
            user_email = user_email or found_email
            user_role = user_role or found_role

        if not user_email:
            user_email = "System" if user_id == SYSTEM_USER else "Unknown"
        if not user_role:
            user_role = "SYSTEM" if user_id == SYSTEM_USER else "UNKNOWN"

        entry = AuditLog(
            user_id=user_id,
            user_email=user_email,
            user_role=user_role,
            event_type=event_type,
            action=action or "",
            status=status or "success",
            resource_type=resource_type,
            resource_id=resource_id,
            error_message=error_message,
            details=_serialize_details(details),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(entry)
        db.commit()
        logger.info("Audit %s by %s (%s)", event_type, user_email, user_role)
        return entry.id
    except Exception:
        if db is not None:
            db.rollback()
        logger.exception("Audit log write failed for %s", event_type)
        return None
    finally:
        if db is not None:
            db.close()
