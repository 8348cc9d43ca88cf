from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_outbound_message_by_key(db: Session, idempotency_key: str) -> Optional[models.OutboundMessage]:
    return (
        db.query(models.OutboundMessage)
        .filter(models.OutboundMessage.idempotency_key == idempotency_key)
        .first()
    )


def enqueue_outbound_message(
    db: Session,
    *,
    tracking_link_id: str,
    event_type: str,
    payload_json: Dict[str, Any],
    idempotency_key: str,
    next_attempt_at: Optional[datetime] = None,
) -> models.OutboundMessage:
    """
    Durably queue one message. A repeated key returns the existing row.

    Flushes, never commits.
    """
    existing = get_outbound_message_by_key(db, idempotency_key)
    if existing:
        return existing

    message = models.OutboundMessage(
        tracking_link_id=tracking_link_id,
        event_type=event_type,
        payload_json=payload_json,
        idempotency_key=idempotency_key,
        status=models.OutboundStatus.PENDING,
        attempt_count=0,
        next_attempt_at=next_attempt_at or _utcnow(),
    )
    try:
        with db.begin_nested():
            db.add(message)
    except IntegrityError:
        existing = get_outbound_message_by_key(db, idempotency_key)
        if existing is None:
            raise
        return existing
    return message


def requeue_dead_letters(db: Session, *, now: Optional[datetime] = None, limit: int = 100) -> int:
    """Move dead-lettered messages back to PENDING with a fresh attempt budget."""
    now = now or _utcnow()
    ids = [
        row[0]
        for row in db.query(models.OutboundMessage.id)
        .filter(models.OutboundMessage.status == models.OutboundStatus.DEAD_LETTER)
        .order_by(models.OutboundMessage.created_at.asc())
        .limit(limit)
        .all()
    ]
    if not ids:
        return 0
    result = db.execute(
        update(models.OutboundMessage)
        .where(
            models.OutboundMessage.id.in_(ids),
            models.OutboundMessage.status == models.OutboundStatus.DEAD_LETTER,
        )
        .values(
            status=models.OutboundStatus.PENDING,
            attempt_count=0,
            next_attempt_at=now,
            escalated_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    logger.info("Requeued dead-lettered messages", extra={"count": result.rowcount})
    return result.rowcount
