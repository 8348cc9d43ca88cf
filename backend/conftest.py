from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("APP_BASE_URL", "https://training.example.com/tracker")
os.environ.setdefault("EVENTS_TRANSPORT", "none")

from awaredb.database import Base, enable_sqlite_savepoints  # noqa: E402
from awaredb.apps.content import models as content_models  # noqa: E402
from awaredb.apps.tracking import models as tracking_models  # noqa: E402
from awaredb.apps.integrations import models as integration_models  # noqa: E402,F401


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(db_engine):
    TestingSession = sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient

    from awaredb.database import get_db
    from awaredb.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _content(db_session, content_type: str, **kwargs) -> content_models.ContentRecord:
    record = content_models.ContentRecord(content_type=content_type, **kwargs)
    db_session.add(record)
    db_session.flush()
    return record


@pytest.fixture()
def scenario_setup(db_session):
    """
    A full scenario (landing, SCORM training, follow-on quiz, email) and one
    live tracking session for it.
    """
    landing = _content(
        db_session,
        "landing",
        company_id="acme",
        title="Password reset",
        entry_body_html=(
            "<html><head><title>Reset</title></head><body>"
            '<img class="brand logo" src="/old.png">'
            '<form action="/steal"><input name="password"></form>'
            '<a href="{{{trainingURL}}}">Continue</a>'
            "</body></html>"
        ),
    )
    training = _content(
        db_session,
        "scorm",
        company_id="acme",
        title="Phishing 101",
        scorable=True,
        entry_body_html="<html><head></head><body><h1>Lesson</h1></body></html>",
    )
    follow_on = _content(
        db_session,
        "training",
        company_id="acme",
        title="Refresher quiz",
        scorable=True,
        entry_body_html="<html><head></head><body><h1>Quiz</h1></body></html>",
    )
    email = _content(
        db_session,
        "email",
        company_id="acme",
        title="Your password expires",
        email_from_address="it-support@acme-security.example",
        email_from_name="IT Support",
    )
    scenario = content_models.TrainingScenario(
        name="Q4 phishing",
        landing_content_id=landing.id,
        training_content_id=training.id,
        follow_on_content_id=follow_on.id,
        email_content_id=email.id,
        scheduled_at=datetime(2026, 10, 18, 9, 5, tzinfo=timezone.utc),
    )
    db_session.add(scenario)
    db_session.flush()

    session = tracking_models.TrackingSession(
        tracking_link_id="0190a7c2-5b1e-7d3f-9a4b-1c2d3e4f5a6b",
        training_id=scenario.id,
        recipient_id="recipient-1",
        recipient_email="jordan@acme.example",
        expires_at=datetime.now(timezone.utc) + timedelta(days=30),
    )
    db_session.add(session)
    db_session.commit()

    return SimpleNamespace(
        landing=landing,
        training=training,
        follow_on=follow_on,
        email=email,
        scenario=scenario,
        session=session,
        link=session.tracking_link_id,
    )
