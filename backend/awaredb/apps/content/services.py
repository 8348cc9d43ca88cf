from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from awaredb import config
from awaredb.errors import ContentNotFound, ScenarioNotFound
from awaredb.utils.dates import as_utc
from awaredb.utils.identifiers import strip_uuid_dashes

from . import models

logger = logging.getLogger(__name__)

# Evaluation order for role matching. A content record is referenced at most
# once per scenario, so the first hit decides.
_ROLE_SLOTS = (
    (models.ScenarioRole.LANDING, "landing_content_id"),
    (models.ScenarioRole.FOLLOW_ON, "follow_on_content_id"),
    (models.ScenarioRole.TRAINING, "training_content_id"),
    (models.ScenarioRole.EMAIL, "email_content_id"),
)

NO_NEXT_STEP = "#"


def get_content(db: Session, content_id: str) -> models.ContentRecord:
    content = db.query(models.ContentRecord).filter(models.ContentRecord.id == content_id).first()
    if content is None:
        logger.warning("Content not found", extra={"content_id": content_id})
        raise ContentNotFound()
    return content


def get_scenario(db: Session, training_id: str) -> models.TrainingScenario:
    scenario = (
        db.query(models.TrainingScenario)
        .filter(models.TrainingScenario.id == training_id)
        .first()
    )
    if scenario is None:
        logger.error(
            "Training scenario missing for tracking session",
            extra={"training_id": training_id},
        )
        raise ScenarioNotFound()
    return scenario


def classify_role(scenario: models.TrainingScenario, content_id: Optional[str]) -> Optional[str]:
    """Role the content plays in the scenario, or None when it is not referenced."""
    if not content_id:
        return None
    for role, attr in _ROLE_SLOTS:
        if getattr(scenario, attr) == content_id:
            return role.value
    return None


def next_step_url(
    scenario: models.TrainingScenario,
    role: Optional[str],
    tracking_link_id: str,
) -> str:
    """
    Launch URL of the scenario's training content for a landing page.

    Uses the dash-stripped path form and the same tracking link.
    """
    if role != models.ScenarioRole.LANDING.value or not scenario.training_content_id:
        return NO_NEXT_STEP
    return "{base}/launch/{content}/{tracking}".format(
        base=config.base_path(),
        content=strip_uuid_dashes(scenario.training_content_id),
        tracking=strip_uuid_dashes(tracking_link_id),
    )


def scenario_ended(scenario: models.TrainingScenario, *, now: Optional[datetime] = None) -> bool:
    if scenario.ends_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now > as_utc(scenario.ends_at)


def get_email_content(db: Session, scenario: models.TrainingScenario) -> Optional[models.ContentRecord]:
    if not scenario.email_content_id:
        return None
    return (
        db.query(models.ContentRecord)
        .filter(models.ContentRecord.id == scenario.email_content_id)
        .first()
    )


def get_organization_profile(
    db: Session,
    company_id: Optional[str],
) -> Optional[models.OrganizationProfile]:
    if not company_id:
        return None
    return (
        db.query(models.OrganizationProfile)
        .filter(models.OrganizationProfile.company_id == company_id)
        .first()
    )


def list_content_tags(db: Session, content_id: str) -> list[str]:
    rows = (
        db.query(models.ContentTag.tag_name)
        .filter(models.ContentTag.content_id == content_id)
        .distinct()
        .all()
    )
    return sorted(row[0] for row in rows)
