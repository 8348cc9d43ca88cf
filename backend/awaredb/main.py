# backend/awaredb/main.py
import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import Base, engine
from .errors import TrackingError

from .apps.content.router import router as launch_router
from .apps.tracking.router import router as tracking_router
from .client_bridge.router import router as client_bridge_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "info").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, content is only served
    same-origin and no cross-origin caller is allowed.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


if os.getenv("AWAREDB_CREATE_TABLES", "false").lower() in {"1", "true", "yes", "on"}:
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="AwareDB Training Tracker", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TrackingError)
async def tracking_error_handler(request: Request, exc: TrackingError):
    if exc.status_code >= 500:
        logger.error("Tracking request failed", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc)},
    )


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "AwareDB tracker is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(launch_router)
app.include_router(tracking_router)
app.include_router(client_bridge_router)
