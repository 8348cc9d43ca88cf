from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter
from fastapi.responses import FileResponse

STATIC_DIR = Path(__file__).resolve().parent / "static"

router = APIRouter(tags=["client-bridge"])


@router.get("/js/tracker.js", include_in_schema=False)
def tracker_script():
    return FileResponse(
        STATIC_DIR / "tracker.js",
        media_type="application/javascript",
        headers={"Cache-Control": "public, max-age=300"},
    )
