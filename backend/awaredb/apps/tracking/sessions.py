"""Launch identifier parsing and tracking-session validation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from awaredb.errors import InvalidIdentifier, MissingIdentifier, SessionNotFound
from awaredb.utils.dates import as_utc
from awaredb.utils.identifiers import restore_uuid_dashes

from . import models

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LaunchIdentifiers:
    content_id: str
    tracking_link_id: str


def _path_segments(raw: str) -> list[str]:
    return [segment for segment in raw.split("/") if segment]


def _restore_or_passthrough(value: str) -> str:
    # Legacy query parameters may carry dashed, dashless or opaque ids.
    try:
        return restore_uuid_dashes(value)
    except InvalidIdentifier:
        return value


def resolve_identifiers(
    *,
    path_param: Optional[str] = None,
    path_info: Optional[str] = None,
    tracking_param: Optional[str] = None,
    content_param: Optional[str] = None,
) -> LaunchIdentifiers:
    """
    Parse the three supported launch request shapes.

    1. ?path=/any/prefix/<content-id>/<tracking-id>
    2. /launch/any/prefix/<content-id>/<tracking-id>
    3. ?trackingId=<tracking-id>&content=<content-id>

    Ids in path forms are dash-stripped UUIDs; only the last two segments
    are used. The `path` query parameter wins over the extra path segment.
    """
    raw_path = path_param or path_info
    if raw_path:
        segments = _path_segments(raw_path)
        if len(segments) < 2:
            raise InvalidIdentifier("Invalid URL format")
        return LaunchIdentifiers(
            content_id=restore_uuid_dashes(segments[-2]),
            tracking_link_id=restore_uuid_dashes(segments[-1]),
        )

    if tracking_param:
        if not content_param:
            raise MissingIdentifier("Missing content ID for legacy format")
        return LaunchIdentifiers(
            content_id=_restore_or_passthrough(content_param.strip()),
            tracking_link_id=_restore_or_passthrough(tracking_param.strip()),
        )

    raise MissingIdentifier()


def validate_session(
    db: Session,
    tracking_link_id: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> models.TrackingSession:
    """
    Load an authorised tracking session or raise SessionNotFound.

    Unknown and expired sessions look the same to the caller.
    """
    if not tracking_link_id:
        raise SessionNotFound("empty tracking id")
    session = (
        db.query(models.TrackingSession)
        .filter(models.TrackingSession.tracking_link_id == tracking_link_id)
        .first()
    )
    if session is None:
        logger.info("Invalid tracking session", extra={"tracking_link_id": tracking_link_id})
        raise SessionNotFound("unknown tracking id")

    now = now or datetime.now(timezone.utc)
    if session.expires_at is not None and as_utc(session.expires_at) <= now:
        logger.info("Expired tracking session", extra={"tracking_link_id": tracking_link_id})
        raise SessionNotFound("expired tracking session")
    return session
