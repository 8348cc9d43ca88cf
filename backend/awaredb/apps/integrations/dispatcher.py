from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from awaredb.errors import PublishTransportFailure

from . import models
from .transports import EventTransport, NoopTransport, get_event_transport

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = int(os.getenv("OUTBOX_DISPATCH_LIMIT", "50"))
DEFAULT_INTERVAL_SEC = int(os.getenv("OUTBOX_DISPATCH_INTERVAL_SEC", "5"))
BASE_BACKOFF_SEC = int(os.getenv("OUTBOX_BACKOFF_SEC", "5"))
MAX_BACKOFF_SEC = int(os.getenv("OUTBOX_MAX_BACKOFF_SEC", "3600"))
ALERT_AFTER_ATTEMPTS = int(os.getenv("OUTBOX_ALERT_AFTER_ATTEMPTS", "5"))
# 0 keeps retrying forever.
DEAD_LETTER_AFTER_ATTEMPTS = int(os.getenv("OUTBOX_DEAD_LETTER_AFTER_ATTEMPTS", "0"))
CLAIM_LEASE_SEC = int(os.getenv("OUTBOX_CLAIM_LEASE_SEC", "60"))

DELIVERY_SENT = "sent"
DELIVERY_ALREADY_SENT = "already_sent"
DELIVERY_FAILED = "failed"
DELIVERY_NOT_CLAIMED = "not_claimed"
DELIVERY_SKIPPED = "skipped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _compute_next_attempt(now: datetime, attempt: int) -> datetime:
    backoff = BASE_BACKOFF_SEC * (2 ** max(attempt - 1, 0))
    return now + timedelta(seconds=min(backoff, MAX_BACKOFF_SEC))


def _resolve_transport(transport: Optional[EventTransport]) -> Tuple[EventTransport, bool]:
    if transport is not None:
        return transport, True
    try:
        return get_event_transport()
    except ValueError as exc:
        logger.error("Event transport misconfigured", extra={"error": str(exc)})
        return NoopTransport(), False


def _claim(db: Session, message_id: str, *, expected_attempts: int, now: datetime) -> bool:
    result = db.execute(
        update(models.OutboundMessage)
        .where(
            models.OutboundMessage.id == message_id,
            models.OutboundMessage.status == models.OutboundStatus.PENDING,
            models.OutboundMessage.attempt_count == expected_attempts,
        )
        .values(
            attempt_count=expected_attempts + 1,
            next_attempt_at=now + timedelta(seconds=CLAIM_LEASE_SEC),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _record_failure(
    db: Session,
    message: models.OutboundMessage,
    *,
    attempt: int,
    error: str,
    now: datetime,
) -> None:
    values = {
        "last_error": error[:500] if error else "Transport failure",
        "next_attempt_at": _compute_next_attempt(now, attempt),
    }
    log_extra = {
        "message_id": message.id,
        "idempotency_key": message.idempotency_key,
        "attempt": attempt,
        "error": values["last_error"],
    }

    if ALERT_AFTER_ATTEMPTS > 0 and attempt >= ALERT_AFTER_ATTEMPTS and message.escalated_at is None:
        values["escalated_at"] = now
        logger.error("Outbound message delivery escalated", extra=log_extra)

    if DEAD_LETTER_AFTER_ATTEMPTS > 0 and attempt >= DEAD_LETTER_AFTER_ATTEMPTS:
        values["status"] = models.OutboundStatus.DEAD_LETTER
        values["next_attempt_at"] = None
        logger.error("Outbound message dead-lettered", extra=log_extra)
    else:
        logger.warning("Outbound message delivery failed", extra=log_extra)

    db.execute(
        update(models.OutboundMessage)
        .where(
            models.OutboundMessage.id == message.id,
            models.OutboundMessage.attempt_count == attempt,
        )
        .values(values)
        .execution_options(synchronize_session=False)
    )


def deliver_message(
    db: Session,
    message: models.OutboundMessage,
    *,
    transport: Optional[EventTransport] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Claim, publish and settle one message. Commits.

    A message that is no longer PENDING, or whose claim is taken by another
    worker, is left alone.
    """
    now = now or _utcnow()
    transport, configured = _resolve_transport(transport)
    if not configured:
        logger.warning(
            "No event transport configured; message left pending",
            extra={"message_id": message.id},
        )
        return DELIVERY_SKIPPED

    db.refresh(message)
    if message.status == models.OutboundStatus.SENT:
        return DELIVERY_ALREADY_SENT
    if message.status != models.OutboundStatus.PENDING:
        return DELIVERY_NOT_CLAIMED

    message_id = message.id
    attempt = message.attempt_count + 1
    if not _claim(db, message_id, expected_attempts=message.attempt_count, now=now):
        db.rollback()
        return DELIVERY_NOT_CLAIMED
    db.commit()

    try:
        transport_message_id = transport.publish(message)
    except PublishTransportFailure as exc:
        _record_failure(db, message, attempt=attempt, error=str(exc), now=now)
        db.commit()
        return DELIVERY_FAILED

    db.execute(
        update(models.OutboundMessage)
        .where(
            models.OutboundMessage.id == message_id,
            models.OutboundMessage.attempt_count == attempt,
        )
        .values(
            status=models.OutboundStatus.SENT,
            sent_at=now,
            last_error=None,
            next_attempt_at=None,
            transport_message_id=transport_message_id,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info(
        "Outbound message sent",
        extra={"message_id": message_id, "transport": transport.name, "attempt": attempt},
    )
    return DELIVERY_SENT


def dispatch_due_messages(
    db: Session,
    *,
    now: Optional[datetime] = None,
    limit: int = DEFAULT_LIMIT,
    transport: Optional[EventTransport] = None,
) -> int:
    now = now or _utcnow()
    transport, configured = _resolve_transport(transport)
    if not configured:
        pending = (
            db.query(models.OutboundMessage.id)
            .filter(models.OutboundMessage.status == models.OutboundStatus.PENDING)
            .count()
        )
        if pending:
            logger.warning("No event transport configured", extra={"pending": pending})
        return 0

    query = (
        db.query(models.OutboundMessage)
        .filter(
            models.OutboundMessage.status == models.OutboundStatus.PENDING,
            or_(
                models.OutboundMessage.next_attempt_at.is_(None),
                models.OutboundMessage.next_attempt_at <= now,
            ),
        )
        .order_by(models.OutboundMessage.next_attempt_at.asc())
        .populate_existing()
    )

    try:
        query = query.with_for_update(skip_locked=True)
    except Exception:
        pass

    messages = query.limit(limit).all()
    if not messages:
        return 0

    attempted = 0
    for message in messages:
        outcome = deliver_message(db, message, transport=transport, now=now)
        if outcome in {DELIVERY_SENT, DELIVERY_FAILED}:
            attempted += 1
    return attempted
