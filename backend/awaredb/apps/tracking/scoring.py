"""
Score reconciliation.

A session holds at most one canonical score per content role. The first
submission wins; a stored 0 may be replaced exactly once by a later
submission (any value). Every decision is taken by the database:

- the first write is an INSERT guarded by the (tracking_link_id, content_role)
  unique constraint;
- the zero replacement is a conditional UPDATE matching
  `score = 0 AND zero_replaced = false`.

Whichever request's statement affects the row wins; every other concurrent
request observes the winner and reports `already_recorded`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from awaredb import config
from awaredb.apps.content import services as content_services
from awaredb.apps.content.models import TrainingScenario

from . import models, state
from .sessions import validate_session

logger = logging.getLogger(__name__)

SCORABLE_ROLES = (config.ROLE_TRAINING, config.ROLE_FOLLOW_ON)


@dataclass
class ScoreOutcome:
    success: bool
    tracking_link_id: str
    content_role: Optional[str] = None
    content_id: Optional[str] = None
    score: Optional[float] = None
    already_recorded: bool = False
    committed: bool = False
    replaced_zero: bool = False
    commit_seq: Optional[int] = None
    recorded_at: Optional[datetime] = None
    reason: Optional[str] = None
    submitted_interactions: list[dict[str, Any]] = field(default_factory=list)


def score_is_final(record: models.ScoreRecord) -> bool:
    return record.score != 0 or bool(record.zero_replaced)


def resolve_score_role(
    scenario: TrainingScenario,
    *,
    role_hint: Optional[str] = None,
    content_id: Optional[str] = None,
    tracking_state: Optional[models.TrackingState] = None,
) -> str:
    """
    Decide which role a score submission belongs to.

    An explicit hint wins, then the role of the submitted content id. Without
    either, a session that has finished training and opened the follow-on is
    scoring the follow-on; anything else falls back to SCORE_ROLE_FALLBACK.
    """
    if role_hint in SCORABLE_ROLES:
        return role_hint

    role = content_services.classify_role(scenario, content_id)
    if role in SCORABLE_ROLES:
        return role

    if (
        scenario.follow_on_content_id
        and tracking_state is not None
        and tracking_state.follow_on_viewed_at is not None
        and tracking_state.training_completed_at is not None
    ):
        return config.ROLE_FOLLOW_ON
    return config.score_role_fallback()


def _content_for_role(scenario: TrainingScenario, role: str) -> Optional[str]:
    if role == config.ROLE_FOLLOW_ON:
        return scenario.follow_on_content_id
    return scenario.training_content_id


def _load_record(db: Session, tracking_link_id: str, role: str) -> Optional[models.ScoreRecord]:
    return (
        db.query(models.ScoreRecord)
        .filter(
            models.ScoreRecord.tracking_link_id == tracking_link_id,
            models.ScoreRecord.content_role == role,
        )
        .populate_existing()
        .first()
    )


def _insert_first(
    db: Session,
    *,
    tracking_link_id: str,
    role: str,
    content_id: Optional[str],
    score: float,
    now: datetime,
) -> bool:
    try:
        with db.begin_nested():
            db.add(
                models.ScoreRecord(
                    tracking_link_id=tracking_link_id,
                    content_role=role,
                    content_id=content_id,
                    score=score,
                    zero_replaced=False,
                    commit_seq=1,
                    recorded_at=now,
                )
            )
        return True
    except IntegrityError:
        return False


def _replace_zero(
    db: Session,
    *,
    tracking_link_id: str,
    role: str,
    content_id: Optional[str],
    score: float,
    now: datetime,
) -> bool:
    values: dict[str, Any] = {
        "score": score,
        "zero_replaced": True,
        "commit_seq": models.ScoreRecord.commit_seq + 1,
        "recorded_at": now,
    }
    if content_id:
        values["content_id"] = content_id
    result = db.execute(
        update(models.ScoreRecord)
        .where(
            models.ScoreRecord.tracking_link_id == tracking_link_id,
            models.ScoreRecord.content_role == role,
            models.ScoreRecord.score == 0,
            models.ScoreRecord.zero_replaced.is_(False),
        )
        .values(values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _credit_recipient_tags(
    db: Session,
    *,
    recipient_id: str,
    content_id: Optional[str],
    now: datetime,
) -> int:
    if not content_id:
        return 0
    tags = content_services.list_content_tags(db, content_id)
    for tag in tags:
        bump = (
            update(models.RecipientTagScore)
            .where(
                models.RecipientTagScore.recipient_id == recipient_id,
                models.RecipientTagScore.tag_name == tag,
            )
            .values(
                score_count=models.RecipientTagScore.score_count + 1,
                total_attempts=models.RecipientTagScore.total_attempts + 1,
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )
        if db.execute(bump).rowcount:
            continue
        try:
            with db.begin_nested():
                db.add(
                    models.RecipientTagScore(
                        recipient_id=recipient_id,
                        tag_name=tag,
                        score_count=1,
                        total_attempts=1,
                        last_updated=now,
                    )
                )
        except IntegrityError:
            db.execute(bump)
    return len(tags)


def record_score(
    db: Session,
    tracking_link_id: Optional[str],
    score: float,
    *,
    role_hint: Optional[str] = None,
    content_id: Optional[str] = None,
    interactions: Optional[list[dict[str, Any]]] = None,
    now: Optional[datetime] = None,
) -> ScoreOutcome:
    """
    Reconcile one score submission. Flushes, never commits.

    A committed outcome marks the role completed and, on a passing score,
    credits the recipient's tag counters.
    """
    now = now or datetime.now(timezone.utc)
    session = validate_session(db, tracking_link_id, now=now)
    link = session.tracking_link_id
    scenario = content_services.get_scenario(db, session.training_id)

    role = resolve_score_role(
        scenario,
        role_hint=role_hint,
        content_id=content_id,
        tracking_state=state.get_state(db, link),
    )
    effective_content_id = content_id or _content_for_role(scenario, role)
    outcome = ScoreOutcome(
        success=True,
        tracking_link_id=link,
        content_role=role,
        content_id=effective_content_id,
        submitted_interactions=list(interactions or []),
    )

    if content_services.scenario_ended(scenario, now=now):
        logger.info(
            "Score rejected after training end",
            extra={"tracking_link_id": link, "content_role": role},
        )
        outcome.success = False
        outcome.reason = "training_ended"
        return outcome

    won = _insert_first(
        db,
        tracking_link_id=link,
        role=role,
        content_id=effective_content_id,
        score=score,
        now=now,
    )
    if not won:
        won = _replace_zero(
            db,
            tracking_link_id=link,
            role=role,
            content_id=content_id,
            score=score,
            now=now,
        )
        outcome.replaced_zero = won

    record = _load_record(db, link, role)
    if record is None:
        # Insert lost and the row is gone: only possible if the session was
        # deleted underneath us.
        raise RuntimeError(f"Score record vanished for tracking link {link}")

    outcome.score = record.score
    outcome.commit_seq = record.commit_seq
    outcome.recorded_at = record.recorded_at
    outcome.content_id = record.content_id or effective_content_id

    if not won:
        logger.info(
            "Score submission discarded",
            extra={
                "tracking_link_id": link,
                "content_role": role,
                "submitted_score": score,
                "stored_score": record.score,
            },
        )
        outcome.already_recorded = True
        return outcome

    outcome.committed = True
    state.mark_role_completed(db, link, role=role, now=now)
    if score >= config.passing_score():
        _credit_recipient_tags(
            db,
            recipient_id=session.recipient_id,
            content_id=outcome.content_id,
            now=now,
        )
    db.flush()
    logger.info(
        "Score committed",
        extra={
            "tracking_link_id": link,
            "content_role": role,
            "score": score,
            "commit_seq": record.commit_seq,
        },
    )
    return outcome
