from __future__ import annotations

import html as html_lib
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from awaredb import config
from awaredb.apps.tracking.sessions import resolve_identifiers
from awaredb.database import get_db
from awaredb.errors import SessionNotFound, TrackingError

from . import launch

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/launch",
    tags=["launch"],
)


def _error_page(status_code: int, message: str, detail: Optional[str] = None) -> HTMLResponse:
    body = f"<h1>Error: {html_lib.escape(message)}</h1>"
    if detail and config.debug_enabled():
        body += f"<pre>{html_lib.escape(detail)}</pre>"
    return HTMLResponse(
        "<!DOCTYPE html>\n<html><head><title>Error</title></head>"
        f"<body>{body}</body></html>\n",
        status_code=status_code,
    )


def _serve(
    db: Session,
    *,
    path_param: Optional[str],
    path_info: Optional[str],
    tracking_param: Optional[str],
    content_param: Optional[str],
):
    try:
        identifiers = resolve_identifiers(
            path_param=path_param,
            path_info=path_info,
            tracking_param=tracking_param,
            content_param=content_param,
        )
        result = launch.launch_content(db, identifiers)
        db.commit()
    except TrackingError as exc:
        db.rollback()
        detail = exc.detail if isinstance(exc, SessionNotFound) else None
        return _error_page(exc.status_code, str(exc), detail)
    except Exception as exc:
        db.rollback()
        logger.exception("Launch failed")
        return _error_page(500, "An error occurred while loading the content", repr(exc))

    if result.redirect_url:
        return RedirectResponse(result.redirect_url, status_code=302)
    return HTMLResponse(result.html or "")


@router.get("", response_class=HTMLResponse)
def launch_by_query(
    path: Optional[str] = Query(None),
    trackingId: Optional[str] = Query(None),
    content: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    return _serve(
        db,
        path_param=path,
        path_info=None,
        tracking_param=trackingId,
        content_param=content,
    )


@router.get("/{extra_path:path}", response_class=HTMLResponse)
def launch_by_path(
    extra_path: str,
    path: Optional[str] = Query(None),
    trackingId: Optional[str] = Query(None),
    content: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    return _serve(
        db,
        path_param=path,
        path_info=extra_path,
        tracking_param=trackingId,
        content_param=content,
    )
