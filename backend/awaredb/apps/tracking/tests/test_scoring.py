from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from awaredb.apps.content.models import ContentTag
from awaredb.apps.integrations import models as integration_models
from awaredb.apps.tracking import models, scoring, services, state
from awaredb.errors import SessionNotFound


def _score_rows(db_session, link):
    db_session.expire_all()
    return db_session.query(models.ScoreRecord).filter(models.ScoreRecord.tracking_link_id == link).all()


def _outbox_rows(db_session):
    db_session.expire_all()
    return db_session.query(integration_models.OutboundMessage).all()


def test_first_submission_commits(db_session, scenario_setup):
    outcome = scoring.record_score(db_session, scenario_setup.link, 85)
    db_session.commit()

    assert outcome.success is True
    assert outcome.committed is True
    assert outcome.already_recorded is False
    assert outcome.content_role == "training"
    assert outcome.content_id == scenario_setup.training.id
    assert outcome.commit_seq == 1

    [row] = _score_rows(db_session, scenario_setup.link)
    assert row.score == 85
    assert state.get_state(db_session, scenario_setup.link).training_completed_at is not None


def test_zero_is_replaced_exactly_once(db_session, scenario_setup):
    link = scenario_setup.link
    first = scoring.record_score(db_session, link, 0)
    second = scoring.record_score(db_session, link, 42)
    third = scoring.record_score(db_session, link, 99)
    db_session.commit()

    assert first.committed and first.score == 0
    assert second.committed and second.replaced_zero and second.score == 42
    assert second.commit_seq == 2
    assert third.already_recorded and not third.committed
    assert third.score == 42

    [row] = _score_rows(db_session, link)
    assert row.score == 42
    assert row.zero_replaced is True


def test_zero_may_be_replaced_by_zero_once(db_session, scenario_setup):
    link = scenario_setup.link
    scoring.record_score(db_session, link, 0)
    replacement = scoring.record_score(db_session, link, 0)
    late = scoring.record_score(db_session, link, 70)

    assert replacement.committed is True
    assert late.already_recorded is True
    assert late.score == 0


def test_non_zero_score_is_final(db_session, scenario_setup):
    link = scenario_setup.link
    scoring.record_score(db_session, link, 7)
    duplicate = scoring.record_score(db_session, link, 99)

    assert duplicate.success is True
    assert duplicate.already_recorded is True
    assert duplicate.score == 7
    [row] = _score_rows(db_session, link)
    assert row.score == 7


def test_scores_are_kept_per_role(db_session, scenario_setup):
    link = scenario_setup.link
    training = scoring.record_score(db_session, link, 90, content_id=scenario_setup.training.id)
    follow_on = scoring.record_score(db_session, link, 60, content_id=scenario_setup.follow_on.id)
    db_session.commit()

    assert training.content_role == "training"
    assert follow_on.content_role == "follow_on"
    assert follow_on.committed is True
    row = state.get_state(db_session, link)
    assert row.training_completed_at is not None
    assert row.follow_on_completed_at is not None


def test_role_heuristic_without_hint(db_session, scenario_setup, monkeypatch):
    link = scenario_setup.link
    scenario = scenario_setup.scenario

    assert scoring.resolve_score_role(scenario) == "training"
    assert scoring.resolve_score_role(scenario, role_hint="follow_on") == "follow_on"

    state.mark_completed(db_session, link)
    state.mark_follow_on_viewed(db_session, link)
    tracking_state = state.get_state(db_session, link)
    assert scoring.resolve_score_role(scenario, tracking_state=tracking_state) == "follow_on"

    monkeypatch.setenv("SCORE_ROLE_FALLBACK", "follow_on")
    assert scoring.resolve_score_role(scenario) == "follow_on"


def test_score_after_training_end_records_nothing(db_session, scenario_setup):
    scenario_setup.scenario.ends_at = datetime.now(timezone.utc) - timedelta(hours=1)
    db_session.commit()

    outcome = scoring.record_score(db_session, scenario_setup.link, 100)

    assert outcome.success is False
    assert outcome.reason == "training_ended"
    assert _score_rows(db_session, scenario_setup.link) == []


def test_unknown_session_is_rejected(db_session, scenario_setup):
    with pytest.raises(SessionNotFound):
        scoring.record_score(db_session, "0190a7c2-ffff-7fff-8fff-ffffffffffff", 50)


def test_passing_score_credits_recipient_tags(db_session, scenario_setup):
    for tag in ("urgency", "spoofed-sender"):
        db_session.add(ContentTag(content_id=scenario_setup.training.id, tag_name=tag))
    db_session.commit()

    scoring.record_score(db_session, scenario_setup.link, 95)
    scoring.record_score(db_session, scenario_setup.link, 100)
    db_session.commit()

    db_session.expire_all()
    rows = (
        db_session.query(models.RecipientTagScore)
        .filter(models.RecipientTagScore.recipient_id == "recipient-1")
        .order_by(models.RecipientTagScore.tag_name)
        .all()
    )
    assert [(row.tag_name, row.score_count, row.total_attempts) for row in rows] == [
        ("spoofed-sender", 1, 1),
        ("urgency", 1, 1),
    ]


def test_failing_score_does_not_credit_tags(db_session, scenario_setup):
    db_session.add(ContentTag(content_id=scenario_setup.training.id, tag_name="urgency"))
    db_session.commit()

    scoring.record_score(db_session, scenario_setup.link, 40)
    db_session.commit()

    assert db_session.query(models.RecipientTagScore).count() == 0


def test_submit_score_publishes_once_per_winning_commit(db_session, scenario_setup):
    link = scenario_setup.link

    first = services.submit_score(db_session, link, 0)
    second = services.submit_score(db_session, link, 42)
    third = services.submit_score(db_session, link, 99)

    assert first["event_queued"] is True
    assert second["event_queued"] is True
    assert "event_queued" not in third
    assert third["already_recorded"] is True
    assert third["score"] == 42

    keys = sorted(row.idempotency_key for row in _outbox_rows(db_session))
    assert keys == [f"score:{link}:training:1", f"score:{link}:training:2"]
