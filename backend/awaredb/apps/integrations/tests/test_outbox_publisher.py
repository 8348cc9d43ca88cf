from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError

from awaredb.apps.integrations import models, publisher, services
from awaredb.apps.integrations.transports import EventTransport
from awaredb.apps.tracking import scoring, state
from awaredb.apps.tracking import services as tracking_services
from awaredb.apps.tracking.models import ScoreRecord


class RecordingTransport(EventTransport):
    name = "recording"

    def __init__(self):
        self.published = []

    def publish(self, message):
        self.published.append(message.idempotency_key)
        return f"msg-{len(self.published)}"


def _messages(db_session):
    db_session.expire_all()
    return db_session.query(models.OutboundMessage).order_by(models.OutboundMessage.created_at).all()


def test_enqueue_is_idempotent_per_key(db_session):
    first = services.enqueue_outbound_message(
        db_session,
        tracking_link_id="link-1",
        event_type="training.completed",
        payload_json={"score": 1},
        idempotency_key="score:link-1:training:1",
    )
    second = services.enqueue_outbound_message(
        db_session,
        tracking_link_id="link-1",
        event_type="training.completed",
        payload_json={"score": 2},
        idempotency_key="score:link-1:training:1",
    )
    db_session.commit()

    assert first.id == second.id
    [row] = _messages(db_session)
    assert row.payload_json == {"score": 1}
    assert row.status == models.OutboundStatus.PENDING


def test_winning_commit_is_published_and_marked_sent(db_session, scenario_setup):
    link = scenario_setup.link
    state.mark_viewed(db_session, link, now=datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc))
    tracking_services.track_interaction(
        db_session,
        link,
        tag_name="q1",
        interaction_type="choice",
        interaction_value="b",
        success=True,
        now=datetime(2026, 10, 18, 9, 1, tzinfo=timezone.utc),
    )
    outcome = scoring.record_score(
        db_session,
        link,
        88,
        interactions=[{"tag": "q1", "type": "choice", "value": "b"}],
        now=datetime(2026, 10, 18, 9, 2, tzinfo=timezone.utc),
    )
    db_session.commit()
    transport = RecordingTransport()

    result = publisher.publish_score_commit(db_session, outcome, transport=transport)

    assert result.queued is True
    assert result.delivered is True
    assert transport.published == [f"score:{link}:training:1"]

    [message] = _messages(db_session)
    assert message.status == models.OutboundStatus.SENT
    assert message.transport_message_id == "msg-1"
    assert message.attempt_count == 1

    payload = message.payload_json
    assert payload["tracking_link_id"] == link
    assert payload["recipient_id"] == "recipient-1"
    assert payload["recipient_email"] == "jordan@acme.example"
    assert payload["content_id"] == scenario_setup.training.id
    assert payload["content_role"] == "training"
    assert payload["score"] == 88
    assert payload["completed_at"].startswith("2026-10-18T09:02:00")
    assert [entry["event"] for entry in payload["timeline"]] == [
        "url_clicked",
        "training_viewed",
        "interaction",
        "training_completed",
    ]
    assert payload["submitted_interactions"] == [{"tag": "q1", "type": "choice", "value": "b"}]


def test_republishing_the_same_commit_sends_nothing_new(db_session, scenario_setup):
    outcome = scoring.record_score(db_session, scenario_setup.link, 91)
    db_session.commit()
    transport = RecordingTransport()

    publisher.publish_score_commit(db_session, outcome, transport=transport)
    again = publisher.publish_score_commit(db_session, outcome, transport=transport)

    assert again.queued is True
    assert len(transport.published) == 1
    assert len(_messages(db_session)) == 1


def test_discarded_submission_is_not_published(db_session, scenario_setup):
    scoring.record_score(db_session, scenario_setup.link, 91)
    duplicate = scoring.record_score(db_session, scenario_setup.link, 50)
    db_session.commit()

    result = publisher.publish_score_commit(db_session, duplicate, transport=RecordingTransport())

    assert result.queued is False
    assert _messages(db_session) == []


def test_failed_enqueue_keeps_the_score_and_the_sweep_publishes_it(db_session, scenario_setup, monkeypatch):
    link = scenario_setup.link
    real_enqueue = services.enqueue_outbound_message
    calls = {"count": 0}

    def flaky_enqueue(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("INSERT INTO outbound_messages", {}, Exception("disk I/O error"))
        return real_enqueue(*args, **kwargs)

    monkeypatch.setattr(services, "enqueue_outbound_message", flaky_enqueue)

    response = tracking_services.submit_score(db_session, link, 88)

    assert response["success"] is True
    assert response["already_recorded"] is False
    assert response["event_queued"] is False
    assert _messages(db_session) == []
    record = db_session.query(ScoreRecord).filter(ScoreRecord.tracking_link_id == link).one()
    assert record.score == 88

    transport = RecordingTransport()
    assert publisher.sweep_outbox(db_session, transport=transport) == 1
    assert publisher.sweep_outbox(db_session, transport=transport) == 0

    assert transport.published == [f"score:{link}:training:1"]
    [message] = _messages(db_session)
    assert message.status == models.OutboundStatus.SENT
    assert message.payload_json["score"] == 88
    assert message.payload_json["content_role"] == "training"



def test_score_and_event_are_committed_together(db_session, scenario_setup):
    response = tracking_services.submit_score(db_session, scenario_setup.link, 91)

    assert response["event_queued"] is True
    [message] = _messages(db_session)
    assert message.idempotency_key == f"score:{scenario_setup.link}:training:1"
    assert message.status == models.OutboundStatus.PENDING
    record = db_session.query(ScoreRecord).filter(ScoreRecord.tracking_link_id == scenario_setup.link).one()
    assert record.score == 91


def test_replacement_event_carries_its_own_completion_time(db_session, scenario_setup):
    link = scenario_setup.link
    zero = scoring.record_score(db_session, link, 0, now=datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc))
    replaced = scoring.record_score(db_session, link, 42, now=datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc))
    db_session.commit()

    first = publisher.build_completion_payload(db_session, zero)
    second = publisher.build_completion_payload(db_session, replaced)

    assert first["completed_at"].startswith("2026-10-18T09:00:00")
    assert second["completed_at"].startswith("2026-10-18T09:30:00")
    assert second["commit_seq"] == 2



def test_failed_immediate_delivery_stays_pending(db_session, scenario_setup):
    class FailingTransport(EventTransport):
        def publish(self, message):
            from awaredb.errors import PublishTransportFailure

            raise PublishTransportFailure("topic unavailable")

    outcome = scoring.record_score(db_session, scenario_setup.link, 91)
    db_session.commit()

    result = publisher.publish_score_commit(db_session, outcome, transport=FailingTransport())

    assert result.queued is True
    assert result.delivered is False
    [message] = _messages(db_session)
    assert message.status == models.OutboundStatus.PENDING
    assert message.last_error == "topic unavailable"
    assert message.next_attempt_at is not None
