"""
Completion events for winning score commits.

Each winning commit queues exactly one outbox row, keyed by
(tracking link, role, commit sequence), in the same transaction as the
score itself. Delivery is attempted right after the commit; failures are
left to the outbox sweep, which also recreates any row whose write failed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import String, cast, literal
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from awaredb.apps.tracking import models as tracking_models
from awaredb.apps.tracking.scoring import ScoreOutcome
from awaredb.database import WriteSessionLocal
from awaredb.utils.dates import as_utc, isoformat_utc

from . import dispatcher, models, services
from .transports import EventTransport

logger = logging.getLogger(__name__)

EVENT_TYPE_TRAINING_COMPLETED = "training.completed"


@dataclass
class PublicationResult:
    queued: bool
    delivered: bool = False
    message_id: Optional[str] = None
    idempotency_key: Optional[str] = None


def completion_idempotency_key(tracking_link_id: str, content_role: str, commit_seq: int) -> str:
    return f"score:{tracking_link_id}:{content_role}:{commit_seq}"


def build_timeline(db: Session, tracking_link_id: str) -> List[Dict[str, Any]]:
    """Status timestamps and recorded interactions for a session, oldest first."""
    entries: List[tuple] = []
    tracking_state = (
        db.query(tracking_models.TrackingState)
        .filter(tracking_models.TrackingState.tracking_link_id == tracking_link_id)
        .populate_existing()
        .first()
    )
    if tracking_state is not None:
        for field in tracking_models.STATE_FIELDS:
            value = as_utc(getattr(tracking_state, field))
            if value is not None:
                entries.append((value, 0, {"event": field[: -len("_at")], "at": value.isoformat()}))

    interactions = (
        db.query(tracking_models.InteractionEvent)
        .filter(tracking_models.InteractionEvent.tracking_link_id == tracking_link_id)
        .order_by(
            tracking_models.InteractionEvent.occurred_at.asc(),
            tracking_models.InteractionEvent.id.asc(),
        )
        .all()
    )
    for index, event in enumerate(interactions, start=1):
        occurred = as_utc(event.occurred_at)
        entries.append(
            (
                occurred,
                index,
                {
                    "event": "interaction",
                    "at": occurred.isoformat(),
                    "tag_name": event.tag_name,
                    "interaction_type": event.interaction_type,
                    "interaction_value": event.interaction_value,
                    "success": event.success,
                },
            )
        )

    entries.sort(key=lambda item: (item[0], item[1]))
    return [entry for _, _, entry in entries]


def build_completion_payload(db: Session, outcome: ScoreOutcome) -> Dict[str, Any]:
    session = (
        db.query(tracking_models.TrackingSession)
        .filter(tracking_models.TrackingSession.tracking_link_id == outcome.tracking_link_id)
        .first()
    )
    return {
        "event_type": EVENT_TYPE_TRAINING_COMPLETED,
        "tracking_link_id": outcome.tracking_link_id,
        "training_id": session.training_id if session else None,
        "recipient_id": session.recipient_id if session else None,
        "recipient_email": session.recipient_email if session else None,
        "content_id": outcome.content_id,
        "content_role": outcome.content_role,
        "score": outcome.score,
        "commit_seq": outcome.commit_seq,
        "completed_at": isoformat_utc(outcome.recorded_at),
        "timeline": build_timeline(db, outcome.tracking_link_id),
        "submitted_interactions": outcome.submitted_interactions,
    }


def queue_score_commit(
    db: Session,
    outcome: ScoreOutcome,
    *,
    now: Optional[datetime] = None,
) -> Optional[models.OutboundMessage]:
    """
    Add the completion event for a winning commit to the caller's transaction.

    Flushes, never commits, so the row normally commits together with the
    score. The insert runs in a savepoint: a storage failure is logged and
    returns None without touching the score, and `queue_missing_completion_events`
    recreates the row on the next sweep.
    """
    if not outcome.committed or outcome.commit_seq is None:
        return None

    now = now or datetime.now(timezone.utc)
    key = completion_idempotency_key(outcome.tracking_link_id, outcome.content_role, outcome.commit_seq)
    try:
        with db.begin_nested():
            return services.enqueue_outbound_message(
                db,
                tracking_link_id=outcome.tracking_link_id,
                event_type=EVENT_TYPE_TRAINING_COMPLETED,
                payload_json=build_completion_payload(db, outcome),
                idempotency_key=key,
                next_attempt_at=now,
            )
    except SQLAlchemyError:
        logger.exception(
            "Failed to queue completion event",
            extra={"tracking_link_id": outcome.tracking_link_id, "idempotency_key": key},
        )
        return None


def _completion_key_expr():
    record = tracking_models.ScoreRecord
    return (
        literal("score:")
        + record.tracking_link_id
        + literal(":")
        + record.content_role
        + literal(":")
        + cast(record.commit_seq, String)
    )


def queue_missing_completion_events(
    db: Session,
    *,
    now: Optional[datetime] = None,
    limit: int = dispatcher.DEFAULT_LIMIT,
) -> int:
    """
    Queue events for committed scores whose outbox row was never written.

    Only the current commit of each score record is considered. Flushes,
    never commits; returns the number of rows queued.
    """
    now = now or datetime.now(timezone.utc)
    records = (
        db.query(tracking_models.ScoreRecord)
        .outerjoin(
            models.OutboundMessage,
            models.OutboundMessage.idempotency_key == _completion_key_expr(),
        )
        .filter(models.OutboundMessage.id.is_(None))
        .order_by(tracking_models.ScoreRecord.recorded_at.asc())
        .limit(limit)
        .all()
    )
    queued = 0
    for record in records:
        outcome = ScoreOutcome(
            success=True,
            tracking_link_id=record.tracking_link_id,
            content_role=record.content_role,
            content_id=record.content_id,
            score=record.score,
            committed=True,
            commit_seq=record.commit_seq,
            recorded_at=record.recorded_at,
        )
        if queue_score_commit(db, outcome, now=now) is not None:
            queued += 1
            logger.warning(
                "Recreated missing completion event",
                extra={
                    "tracking_link_id": record.tracking_link_id,
                    "content_role": record.content_role,
                    "commit_seq": record.commit_seq,
                },
            )
    return queued


def deliver_queued(
    db: Session,
    message: models.OutboundMessage,
    *,
    transport: Optional[EventTransport] = None,
    now: Optional[datetime] = None,
) -> PublicationResult:
    """Try to send a committed outbox row now; failures stay with the dispatcher."""
    result = PublicationResult(queued=True, message_id=message.id, idempotency_key=message.idempotency_key)
    try:
        delivery = dispatcher.deliver_message(db, message, transport=transport, now=now)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Immediate delivery bookkeeping failed; dispatcher will retry",
            extra={"message_id": result.message_id},
        )
        return result
    result.delivered = delivery in {dispatcher.DELIVERY_SENT, dispatcher.DELIVERY_ALREADY_SENT}
    return result


def publish_score_commit(
    db: Session,
    outcome: ScoreOutcome,
    *,
    transport: Optional[EventTransport] = None,
    now: Optional[datetime] = None,
) -> PublicationResult:
    """Queue, commit and try to deliver the completion event for a winning commit."""
    message = queue_score_commit(db, outcome, now=now)
    if message is None:
        return PublicationResult(queued=False)
    db.commit()
    return deliver_queued(db, message, transport=transport, now=now)


def sweep_outbox(
    db: Session,
    *,
    now: Optional[datetime] = None,
    limit: int = dispatcher.DEFAULT_LIMIT,
    transport: Optional[EventTransport] = None,
) -> int:
    """One outbox pass: recreate missing events, then deliver everything due."""
    now = now or datetime.now(timezone.utc)
    if queue_missing_completion_events(db, now=now, limit=limit):
        db.commit()
    return dispatcher.dispatch_due_messages(db, now=now, limit=limit, transport=transport)


def run_outbox_loop(*, once: bool = False) -> int:
    total = 0
    while True:
        db = WriteSessionLocal()
        try:
            dispatched = sweep_outbox(db)
        except Exception:
            logger.exception("Outbox sweep failed")
            db.rollback()
            dispatched = 0
        finally:
            db.close()
        total += dispatched
        if once:
            return total
        time.sleep(dispatcher.DEFAULT_INTERVAL_SEC if dispatched == 0 else 0)
