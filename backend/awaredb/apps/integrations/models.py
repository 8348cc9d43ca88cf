from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from awaredb.database import Base
from awaredb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboundStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DEAD_LETTER = "DEAD_LETTER"


class OutboundMessage(Base):
    """
    Completion event waiting for (or done with) downstream delivery.

    `idempotency_key` identifies the winning score commit that produced the
    row; the unique constraint keeps one row per commit.
    """

    __tablename__ = "outbound_messages"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_outbound_messages_idempotency"),
        Index("ix_outbound_messages_status_next_attempt", "status", "next_attempt_at"),
        Index("ix_outbound_messages_created_at", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    tracking_link_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(128), nullable=False, index=True)
    payload_json = Column(JSON, nullable=False)
    idempotency_key = Column(String(160), nullable=False)
    status = Column(
        SAEnum(OutboundStatus, name="outbound_status", native_enum=False),
        nullable=False,
        default=OutboundStatus.PENDING,
        index=True,
    )
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    transport_message_id = Column(String(128), nullable=True)
    escalated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<OutboundMessage id={self.id} type={self.event_type} status={self.status}>"
