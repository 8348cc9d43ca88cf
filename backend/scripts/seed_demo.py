"""Seed a demo scenario and tracking session, then print launch URLs.

Usage (from backend/):
    DATABASE_URL=sqlite+pysqlite:///./awaredb-demo.db python -m scripts.seed_demo
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from awaredb import config
from awaredb.database import Base, WriteSessionLocal, write_engine
from awaredb.apps.content import models as content_models
from awaredb.apps.tracking import models as tracking_models
from awaredb.utils.identifiers import generate_uuid7, strip_uuid_dashes

DEMO_COMPANY_ID = "demo-co"

LANDING_HTML = """<!DOCTYPE html>
<html><head><title>Password expiry notice</title></head>
<body>
<img class="logo" src="placeholder.png" alt="Company logo">
<p>Hello <span data-basename="RECIPIENT_EMAIL_ADDRESS">colleague</span>,</p>
<form><input name="password" type="password"><button>Keep my password</button></form>
<p><a href="{{{trainingURL}}}">Continue</a></p>
</body></html>
"""

TRAINING_HTML = """<!DOCTYPE html>
<html><head><title>Spotting phishing</title></head>
<body>
<h1>That was a simulated phishing page</h1>
<p>Questions? Contact <span data-basename="PROGRAM_CONTACT_DETAILS">security</span>.</p>
<button data-tag="acknowledge" onclick="RecordTest(100)">I understand</button>
<footer>&copy; <span data-basename="CURRENT_YEAR">2024</span></footer>
</body></html>
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_or_create_content(db, title: str, content_type: str, **kwargs) -> content_models.ContentRecord:
    content = (
        db.query(content_models.ContentRecord)
        .filter(
            content_models.ContentRecord.company_id == DEMO_COMPANY_ID,
            content_models.ContentRecord.title == title,
        )
        .first()
    )
    if content:
        return content
    content = content_models.ContentRecord(
        company_id=DEMO_COMPANY_ID,
        title=title,
        content_type=content_type,
        **kwargs,
    )
    db.add(content)
    db.commit()
    return content


def _get_or_create_scenario(db, landing, training, email) -> content_models.TrainingScenario:
    scenario = (
        db.query(content_models.TrainingScenario)
        .filter(content_models.TrainingScenario.name == "Demo phishing scenario")
        .first()
    )
    if scenario:
        return scenario
    scenario = content_models.TrainingScenario(
        name="Demo phishing scenario",
        landing_content_id=landing.id,
        training_content_id=training.id,
        email_content_id=email.id,
        scheduled_at=_utcnow(),
    )
    db.add(scenario)
    db.commit()
    return scenario


def run() -> dict:
    Base.metadata.create_all(bind=write_engine)
    db = WriteSessionLocal()
    try:
        landing = _get_or_create_content(db, "Password expiry landing", "landing", entry_body_html=LANDING_HTML)
        training = _get_or_create_content(
            db,
            "Spotting phishing",
            "training",
            entry_body_html=TRAINING_HTML,
            scorable=True,
        )
        email = _get_or_create_content(
            db,
            "Password expiry email",
            "email",
            email_from_address="it-helpdesk@demo-co.example",
            email_from_name="IT Helpdesk",
        )
        scenario = _get_or_create_scenario(db, landing, training, email)

        session = tracking_models.TrackingSession(
            tracking_link_id=generate_uuid7(),
            training_id=scenario.id,
            recipient_id="demo-recipient",
            recipient_email="recipient@demo-co.example",
            expires_at=_utcnow() + timedelta(days=14),
        )
        db.add(session)
        db.commit()

        link = strip_uuid_dashes(session.tracking_link_id)
        base = config.base_url().rstrip("/")
        return {
            "tracking_link_id": session.tracking_link_id,
            "landing_url": f"{base}/launch/{strip_uuid_dashes(landing.id)}/{link}",
            "training_url": f"{base}/launch/{strip_uuid_dashes(training.id)}/{link}",
        }
    finally:
        db.close()


if __name__ == "__main__":
    result = run()
    print("Demo data seeded:", result)
