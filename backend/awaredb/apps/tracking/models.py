from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from awaredb.database import Base
from awaredb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackingSession(Base):
    """Per-recipient tracking link. Created by the external link generator."""

    __tablename__ = "tracking_sessions"

    tracking_link_id = Column(String(36), primary_key=True)
    training_id = Column(
        String(36),
        ForeignKey("training_scenarios.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    recipient_id = Column(String(64), nullable=False, index=True)
    recipient_email = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<TrackingSession id={self.tracking_link_id} recipient={self.recipient_id}>"


# Status columns of TrackingState. Presence of a timestamp is the status.
STATE_FIELDS = (
    "url_clicked_at",
    "training_viewed_at",
    "training_completed_at",
    "training_reported_at",
    "follow_on_viewed_at",
    "follow_on_completed_at",
    "data_entered_at",
)


class TrackingState(Base):
    """
    One row per session. Every status column is set-if-null and never cleared.
    """

    __tablename__ = "tracking_state"

    tracking_link_id = Column(
        String(36),
        ForeignKey("tracking_sessions.tracking_link_id", ondelete="CASCADE"),
        primary_key=True,
    )
    url_clicked_at = Column(DateTime(timezone=True), nullable=True)
    training_viewed_at = Column(DateTime(timezone=True), nullable=True)
    training_completed_at = Column(DateTime(timezone=True), nullable=True)
    training_reported_at = Column(DateTime(timezone=True), nullable=True)
    follow_on_viewed_at = Column(DateTime(timezone=True), nullable=True)
    follow_on_completed_at = Column(DateTime(timezone=True), nullable=True)
    data_entered_at = Column(DateTime(timezone=True), nullable=True)
    # Bookkeeping only; moves forward with every recorded action.
    last_action_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<TrackingState id={self.tracking_link_id}>"


class InteractionEvent(Base):
    __tablename__ = "interaction_events"
    __table_args__ = (
        Index("ix_interaction_events_link_occurred", "tracking_link_id", "occurred_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_link_id = Column(
        String(36),
        ForeignKey("tracking_sessions.tracking_link_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag_name = Column(String(128), nullable=False, index=True)
    interaction_type = Column(String(32), nullable=True)
    interaction_value = Column(Text, nullable=True)
    success = Column(Boolean, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<InteractionEvent id={self.id} tag={self.tag_name} type={self.interaction_type}>"


class ScoreRecord(Base):
    """
    Canonical score per (session, role).

    Rows are written by `apps.tracking.scoring` only; see
    `score_is_final` for the first-write-wins-except-zero rule.
    """

    __tablename__ = "score_records"
    __table_args__ = (
        UniqueConstraint("tracking_link_id", "content_role", name="uq_score_records_link_role"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    tracking_link_id = Column(
        String(36),
        ForeignKey("tracking_sessions.tracking_link_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content_role = Column(String(16), nullable=False)
    content_id = Column(String(36), nullable=True)
    score = Column(Float, nullable=False)
    zero_replaced = Column(Boolean, nullable=False, default=False)
    # Incremented on each winning commit; part of the outbox idempotency key.
    commit_seq = Column(Integer, nullable=False, default=1)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<ScoreRecord link={self.tracking_link_id} role={self.content_role} score={self.score}>"


class RecipientTagScore(Base):
    __tablename__ = "recipient_tag_scores"
    __table_args__ = (
        UniqueConstraint("recipient_id", "tag_name", name="uq_recipient_tag_scores_recipient_tag"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(String(64), nullable=False, index=True)
    tag_name = Column(String(128), nullable=False)
    score_count = Column(Integer, nullable=False, default=0)
    total_attempts = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
