import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from .config import get_settings
from .db import init_db
from .routes_auth import router as auth_router
from .routes_folders import router as folders_router
from .routes_qr import router as qr_router
from .scanning import router as scan_router
from .storage import StorageFailure

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables
    try:
        init_db()
        logger.info("Database initialized")
    except Exception:
        logger.exception("Database initialization failed")
        raise
    yield


app = FastAPI(title="QR Track API", lifespan=lifespan)

app.include_router(auth_router)
app.include_router(folders_router)
app.include_router(scan_router)
app.include_router(qr_router)


@app.exception_handler(StorageFailure)
async def storage_failure_handler(request: Request, exc: StorageFailure):
    # Surface the failure: a scan that was not recorded must not look like a success
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Storage unavailable"})


@app.get("/health")
async def health_check():
    return {"status": "ok"}
