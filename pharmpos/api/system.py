import time
from datetime import datetime, timezone

from fastapi import APIRouter

from pharmpos.config import settings

router = APIRouter(tags=["System"])

STARTED_AT = time.monotonic()


@router.get("/health")
def health():
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "mode": settings.APP_MODE,
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
