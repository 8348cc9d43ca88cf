from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from awaredb.apps.integrations import dispatcher, models, services
from awaredb.apps.integrations.transports import EventTransport
from awaredb.errors import PublishTransportFailure


class FlakyTransport(EventTransport):
    name = "flaky"

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def publish(self, message):
        self.calls += 1
        if self.calls <= self.failures:
            raise PublishTransportFailure(f"attempt {self.calls} failed")
        return "sns-message-id"


def _create_message(db_session, key: str = "score:link-1:training:1", attempt_count: int = 0):
    message = models.OutboundMessage(
        tracking_link_id="link-1",
        event_type="training.completed",
        payload_json={"score": 90},
        idempotency_key=key,
        status=models.OutboundStatus.PENDING,
        attempt_count=attempt_count,
        next_attempt_at=datetime.now(timezone.utc) - timedelta(seconds=1),
    )
    db_session.add(message)
    db_session.commit()
    return message


def test_backoff_doubles_and_is_capped(monkeypatch):
    monkeypatch.setattr(dispatcher, "BASE_BACKOFF_SEC", 5)
    monkeypatch.setattr(dispatcher, "MAX_BACKOFF_SEC", 60)
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)

    delays = [(dispatcher._compute_next_attempt(now, attempt) - now).total_seconds() for attempt in range(1, 7)]

    assert delays == [5, 10, 20, 40, 60, 60]


def test_failed_message_is_retried_until_sent(db_session):
    message = _create_message(db_session)
    transport = FlakyTransport(failures=1)
    now = datetime.now(timezone.utc)

    assert dispatcher.dispatch_due_messages(db_session, now=now, transport=transport) == 1
    db_session.refresh(message)
    assert message.status == models.OutboundStatus.PENDING
    assert message.attempt_count == 1
    assert message.last_error == "attempt 1 failed"

    # Not due yet.
    assert dispatcher.dispatch_due_messages(db_session, now=now, transport=transport) == 0

    later = now + timedelta(hours=2)
    assert dispatcher.dispatch_due_messages(db_session, now=later, transport=transport) == 1
    db_session.refresh(message)
    assert message.status == models.OutboundStatus.SENT
    assert message.attempt_count == 2
    assert message.last_error is None
    assert message.transport_message_id == "sns-message-id"


def test_sent_message_is_never_delivered_again(db_session):
    message = _create_message(db_session)
    transport = FlakyTransport(failures=0)

    dispatcher.dispatch_due_messages(db_session, transport=transport)
    outcome = dispatcher.deliver_message(db_session, message, transport=transport)

    assert outcome == dispatcher.DELIVERY_ALREADY_SENT
    assert transport.calls == 1


def test_stale_claim_is_not_published(db_session):
    message = _create_message(db_session)
    transport = FlakyTransport(failures=0)

    # Another worker claims the row first.
    assert dispatcher._claim(db_session, message.id, expected_attempts=0, now=datetime.now(timezone.utc))
    db_session.commit()

    assert dispatcher._claim(db_session, message.id, expected_attempts=0, now=datetime.now(timezone.utc)) is False
    assert transport.calls == 0


def test_stuck_message_is_escalated_once(db_session, monkeypatch, caplog):
    monkeypatch.setattr(dispatcher, "ALERT_AFTER_ATTEMPTS", 2)
    monkeypatch.setattr(dispatcher, "DEAD_LETTER_AFTER_ATTEMPTS", 0)
    message = _create_message(db_session)
    transport = FlakyTransport(failures=10)
    now = datetime.now(timezone.utc)

    with caplog.at_level(logging.ERROR, logger="awaredb.apps.integrations.dispatcher"):
        for step in range(4):
            dispatcher.dispatch_due_messages(db_session, now=now + timedelta(days=step), transport=transport)

    db_session.refresh(message)
    assert message.status == models.OutboundStatus.PENDING
    assert message.attempt_count == 4
    assert message.escalated_at is not None
    escalations = [r for r in caplog.records if r.getMessage() == "Outbound message delivery escalated"]
    assert len(escalations) == 1


def test_dead_letter_threshold_and_requeue(db_session, monkeypatch):
    monkeypatch.setattr(dispatcher, "DEAD_LETTER_AFTER_ATTEMPTS", 3)
    message = _create_message(db_session, attempt_count=2)
    transport = FlakyTransport(failures=1)

    dispatcher.dispatch_due_messages(db_session, transport=transport)
    db_session.refresh(message)
    assert message.status == models.OutboundStatus.DEAD_LETTER
    assert message.next_attempt_at is None

    assert services.requeue_dead_letters(db_session) == 1
    db_session.commit()
    db_session.refresh(message)
    assert message.status == models.OutboundStatus.PENDING
    assert message.attempt_count == 0

    dispatcher.dispatch_due_messages(db_session, now=datetime.now(timezone.utc) + timedelta(seconds=1), transport=transport)
    db_session.refresh(message)
    assert message.status == models.OutboundStatus.SENT


def test_without_transport_messages_stay_pending(db_session, monkeypatch, caplog):
    monkeypatch.setenv("EVENTS_TRANSPORT", "none")
    monkeypatch.delenv("EVENTS_SNS_TOPIC_ARN", raising=False)
    message = _create_message(db_session)

    with caplog.at_level(logging.WARNING, logger="awaredb.apps.integrations.dispatcher"):
        assert dispatcher.dispatch_due_messages(db_session) == 0

    db_session.refresh(message)
    assert message.status == models.OutboundStatus.PENDING
    assert message.attempt_count == 0
    assert any(r.getMessage() == "No event transport configured" for r in caplog.records)
