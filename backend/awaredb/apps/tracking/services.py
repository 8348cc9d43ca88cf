from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from awaredb import config
from awaredb.apps.content import services as content_services
from awaredb.apps.content.models import TrainingScenario
from awaredb.apps.integrations import publisher

from . import models, scoring, state
from .sessions import validate_session

logger = logging.getLogger(__name__)

TRAINING_ENDED = "training_ended"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ended(scenario: TrainingScenario, tracking_link_id: str, *, action: str, now: datetime) -> bool:
    if not content_services.scenario_ended(scenario, now=now):
        return False
    logger.info(
        "Tracking call after training end",
        extra={"tracking_link_id": tracking_link_id, "action": action},
    )
    return True


def _ended_response() -> dict[str, Any]:
    return {"success": False, "reason": TRAINING_ENDED}


def record_view(
    db: Session,
    *,
    session: models.TrackingSession,
    scenario: TrainingScenario,
    role: Optional[str],
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Mark a role-aware view. Viewing non-scorable training content completes it.
    """
    now = now or _utcnow()
    link = session.tracking_link_id
    if _ended(scenario, link, action="view", now=now):
        return _ended_response()

    first_view = state.mark_viewed(db, link, role=role, now=now)
    auto_completed = False
    if role == config.ROLE_TRAINING and scenario.training_content_id:
        training = content_services.get_content(db, scenario.training_content_id)
        if not training.scorable:
            auto_completed = state.mark_completed(db, link, now=now)
    return {
        "success": True,
        "already_marked": not first_view,
        "auto_completed": auto_completed,
    }


def track_view(
    db: Session,
    tracking_link_id: Optional[str],
    *,
    content_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or _utcnow()
    session = validate_session(db, tracking_link_id, now=now)
    scenario = content_services.get_scenario(db, session.training_id)
    role = content_services.classify_role(scenario, content_id)
    return record_view(db, session=session, scenario=scenario, role=role, now=now)


def track_follow_on_view(
    db: Session,
    tracking_link_id: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or _utcnow()
    session = validate_session(db, tracking_link_id, now=now)
    scenario = content_services.get_scenario(db, session.training_id)
    if _ended(scenario, session.tracking_link_id, action="follow_on_view", now=now):
        return _ended_response()
    first_view = state.mark_follow_on_viewed(db, session.tracking_link_id, now=now)
    return {"success": True, "already_marked": not first_view}


def report_phishing(
    db: Session,
    tracking_link_id: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or _utcnow()
    session = validate_session(db, tracking_link_id, now=now)
    scenario = content_services.get_scenario(db, session.training_id)
    if _ended(scenario, session.tracking_link_id, action="report", now=now):
        return _ended_response()
    first_report = state.mark_reported(db, session.tracking_link_id, now=now)
    return {"success": True, "already_marked": not first_report}


def track_data_entry(
    db: Session,
    tracking_link_id: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or _utcnow()
    session = validate_session(db, tracking_link_id, now=now)
    scenario = content_services.get_scenario(db, session.training_id)
    if _ended(scenario, session.tracking_link_id, action="data_entry", now=now):
        return _ended_response()
    first_entry = state.mark_data_entered(db, session.tracking_link_id, now=now)
    return {"success": True, "already_marked": not first_entry}


def track_interaction(
    db: Session,
    tracking_link_id: Optional[str],
    *,
    tag_name: str,
    interaction_type: Optional[str] = None,
    interaction_value: Optional[str] = None,
    success: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> models.InteractionEvent:
    """Append one interaction. Interactions are kept even after training end."""
    now = now or _utcnow()
    session = validate_session(db, tracking_link_id, now=now)
    event = models.InteractionEvent(
        tracking_link_id=session.tracking_link_id,
        tag_name=tag_name,
        interaction_type=interaction_type,
        interaction_value=interaction_value,
        success=success,
        occurred_at=now,
    )
    db.add(event)
    db.flush()
    return event


def submit_score(
    db: Session,
    tracking_link_id: Optional[str],
    score: float,
    *,
    role_hint: Optional[str] = None,
    content_id: Optional[str] = None,
    interactions: Optional[list[dict[str, Any]]] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Reconcile a score and commit it together with its completion event.

    Only a winning commit queues an event. If the event row cannot be written
    the score still commits and `event_queued` is false; the outbox sweep
    recreates the row. A failed send leaves the row pending.
    """
    now = now or _utcnow()
    outcome = scoring.record_score(
        db,
        tracking_link_id,
        score,
        role_hint=role_hint,
        content_id=content_id,
        interactions=interactions,
        now=now,
    )
    message = publisher.queue_score_commit(db, outcome, now=now)
    db.commit()

    response: dict[str, Any] = {
        "success": outcome.success,
        "score": outcome.score,
        "content_role": outcome.content_role,
        "already_recorded": outcome.already_recorded,
    }
    if outcome.reason:
        response["reason"] = outcome.reason
    if outcome.committed:
        response["event_queued"] = message is not None
    if message is not None:
        publisher.deliver_queued(db, message, now=now)
    return response
