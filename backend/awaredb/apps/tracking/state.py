"""Monotonic per-session tracking state.

Every mutator is set-if-null: it writes its timestamp column only while the
column is NULL, through a single conditional UPDATE, so concurrent or
repeated calls settle on the first winner and later calls are silent no-ops.
Mutators return True when the call was the winning write.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from awaredb.apps.content.models import ScenarioRole

from . import models

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_state(db: Session, tracking_link_id: str) -> Optional[models.TrackingState]:
    return (
        db.query(models.TrackingState)
        .filter(models.TrackingState.tracking_link_id == tracking_link_id)
        .populate_existing()
        .first()
    )


def ensure_state_row(db: Session, tracking_link_id: str) -> None:
    exists = (
        db.query(models.TrackingState.tracking_link_id)
        .filter(models.TrackingState.tracking_link_id == tracking_link_id)
        .first()
    )
    if exists:
        return
    try:
        with db.begin_nested():
            db.add(models.TrackingState(tracking_link_id=tracking_link_id))
    except IntegrityError:
        # A concurrent request created the row first.
        pass


def _set_if_null(db: Session, tracking_link_id: str, field: str, now: Optional[datetime]) -> bool:
    if field not in models.STATE_FIELDS:
        raise ValueError(f"Unknown tracking state field: {field}")
    now = now or _utcnow()
    ensure_state_row(db, tracking_link_id)
    column = getattr(models.TrackingState, field)
    result = db.execute(
        update(models.TrackingState)
        .where(
            models.TrackingState.tracking_link_id == tracking_link_id,
            column.is_(None),
        )
        .values({field: now, "last_action_at": now})
        .execution_options(synchronize_session=False)
    )
    won = result.rowcount == 1
    if not won:
        logger.debug(
            "Tracking state already set",
            extra={"tracking_link_id": tracking_link_id, "field": field},
        )
    return won


def mark_viewed(
    db: Session,
    tracking_link_id: str,
    *,
    role: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Role-aware view marking: follow-on content has its own view column."""
    if role == ScenarioRole.FOLLOW_ON.value:
        return mark_follow_on_viewed(db, tracking_link_id, now=now)
    now = now or _utcnow()
    _set_if_null(db, tracking_link_id, "url_clicked_at", now)
    return _set_if_null(db, tracking_link_id, "training_viewed_at", now)


def mark_completed(db: Session, tracking_link_id: str, *, now: Optional[datetime] = None) -> bool:
    return _set_if_null(db, tracking_link_id, "training_completed_at", now)


def mark_reported(db: Session, tracking_link_id: str, *, now: Optional[datetime] = None) -> bool:
    return _set_if_null(db, tracking_link_id, "training_reported_at", now)


def mark_follow_on_viewed(db: Session, tracking_link_id: str, *, now: Optional[datetime] = None) -> bool:
    return _set_if_null(db, tracking_link_id, "follow_on_viewed_at", now)


def mark_follow_on_completed(db: Session, tracking_link_id: str, *, now: Optional[datetime] = None) -> bool:
    return _set_if_null(db, tracking_link_id, "follow_on_completed_at", now)


def mark_data_entered(db: Session, tracking_link_id: str, *, now: Optional[datetime] = None) -> bool:
    return _set_if_null(db, tracking_link_id, "data_entered_at", now)


def mark_role_completed(
    db: Session,
    tracking_link_id: str,
    *,
    role: str,
    now: Optional[datetime] = None,
) -> bool:
    if role == ScenarioRole.FOLLOW_ON.value:
        return mark_follow_on_completed(db, tracking_link_id, now=now)
    return mark_completed(db, tracking_link_id, now=now)
