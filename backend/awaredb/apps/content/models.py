from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)

from awaredb.database import Base
from awaredb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentType(str, enum.Enum):
    SCORM = "scorm"
    HTML = "html"
    TRAINING = "training"
    LANDING = "landing"
    EMAIL = "email"
    DIRECT = "direct"
    VIDEO = "video"


# Content types whose body is an HTML document served through placeholder substitution.
HTML_CONTENT_TYPES = {
    ContentType.SCORM.value,
    ContentType.HTML.value,
    ContentType.TRAINING.value,
    ContentType.LANDING.value,
    ContentType.EMAIL.value,
    ContentType.DIRECT.value,
}


class ScenarioRole(str, enum.Enum):
    LANDING = "landing"
    TRAINING = "training"
    FOLLOW_ON = "follow_on"
    EMAIL = "email"


class ContentRecord(Base):
    __tablename__ = "content"
    __table_args__ = (
        Index("ix_content_company_type", "company_id", "content_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_id = Column(String(64), nullable=True, index=True)
    title = Column(String(255), nullable=True)
    content_type = Column(String(32), nullable=False, index=True)
    # Remote (http/https) object-storage URL or a path relative to CONTENT_UPLOAD_DIR.
    content_url = Column(Text, nullable=True)
    entry_body_html = Column(Text, nullable=True)
    email_from_address = Column(String(255), nullable=True)
    email_from_name = Column(String(255), nullable=True)
    scorable = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<ContentRecord id={self.id} type={self.content_type}>"


class ContentTag(Base):
    __tablename__ = "content_tags"
    __table_args__ = (
        UniqueConstraint("content_id", "tag_name", name="uq_content_tags_content_tag"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    content_id = Column(
        String(36),
        ForeignKey("content.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag_name = Column(String(128), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TrainingScenario(Base):
    """
    One campaign delivery: which content record plays which role.

    Role membership lives here, not on the content record.
    """

    __tablename__ = "training_scenarios"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    name = Column(String(255), nullable=True)
    landing_content_id = Column(String(36), ForeignKey("content.id", ondelete="SET NULL"), nullable=True)
    training_content_id = Column(String(36), ForeignKey("content.id", ondelete="SET NULL"), nullable=True)
    follow_on_content_id = Column(String(36), ForeignKey("content.id", ondelete="SET NULL"), nullable=True)
    email_content_id = Column(String(36), ForeignKey("content.id", ondelete="SET NULL"), nullable=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<TrainingScenario id={self.id}>"


class OrganizationProfile(Base):
    __tablename__ = "organization_profiles"

    company_id = Column(String(64), primary_key=True)
    logo_url = Column(Text, nullable=True)
    program_contact_details = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
