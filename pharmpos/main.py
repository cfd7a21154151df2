import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pharmpos.config import DEFAULT_SECRET_KEY, settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from pharmpos.api import rpc, sales, system, tables
from pharmpos.database import init_db

# Lets clients notice a restart between two responses
SERVER_INSTANCE_ID = str(uuid.uuid4())
SERVER_START_TIME = datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SECRET_KEY == DEFAULT_SECRET_KEY:
        logger.warning("SECRET_KEY is the built-in default; set SECRET_KEY in the environment")
    init_db()
    logger.info(
        "%s %s started (mode=%s, instance=%s)",
        settings.APP_NAME, settings.APP_VERSION, settings.APP_MODE, SERVER_INSTANCE_ID,
    )
    yield


app = FastAPI(
    title="PharmPOS API",
    description="Pharmacy point of sale: generic table access, sale pipeline, refunds and audit trail",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return JSON for unhandled exceptions so the client can parse the error."""
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc)},
        headers={"X-Server-Instance-ID": SERVER_INSTANCE_ID, "X-Server-Start-Time": SERVER_START_TIME},
    )


@app.middleware("http")
async def instance_headers(request: Request, call_next):
    start = time.monotonic()
    response = await call_next(request)
    response.headers["X-Server-Instance-ID"] = SERVER_INSTANCE_ID
    response.headers["X-Server-Start-Time"] = SERVER_START_TIME
    logger.info(
        "%s %s -> %d (%.0fms)",
        request.method, request.url.path, response.status_code, (time.monotonic() - start) * 1000,
    )
    return response


# Fixed routes first: /api/sales and /api/health would otherwise match /api/{table}
app.include_router(system.router, prefix="/api")
app.include_router(sales.router, prefix="/api")
app.include_router(rpc.router, prefix="/api")
app.include_router(tables.router, prefix="/api")
