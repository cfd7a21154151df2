from dataclasses import dataclass

from fastapi import Header, Request

from pharmpos.services import auth_service
from pharmpos.services.audit_service import SYSTEM_USER


@dataclass
class Identity:
    id: str
    email: str | None = None
    role: str | None = None

    @property
    def is_system(self) -> bool:
        return self.id == SYSTEM_USER


def get_identity(authorization: str | None = Header(default=None)) -> Identity:
    """Dependency: identity from an optional bearer token.

    A missing, malformed or expired token is not an error; the request simply
    runs as the anonymous system identity.
    """
    if not authorization:
        return Identity(id=SYSTEM_USER)
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return Identity(id=SYSTEM_USER)
    payload = auth_service.decode_token(token.strip())
    if not payload or not payload.get("sub"):
        return Identity(id=SYSTEM_USER)
    return Identity(id=payload["sub"], email=payload.get("email") or None, role=payload.get("role") or None)


def request_meta(request: Request) -> dict[str, str | None]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
