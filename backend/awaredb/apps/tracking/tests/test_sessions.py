from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from awaredb.apps.tracking import models
from awaredb.apps.tracking.sessions import resolve_identifiers, validate_session
from awaredb.errors import InvalidIdentifier, MissingIdentifier, SessionNotFound

CONTENT = "0190a7c2-0000-7000-8000-00000000c0de"
TRACKING = "0190a7c2-5b1e-7d3f-9a4b-1c2d3e4f5a6b"


def _dashless(value: str) -> str:
    return value.replace("-", "")


def test_path_parameter_uses_last_two_segments():
    ids = resolve_identifiers(path_param=f"/academy/launch/x/{_dashless(CONTENT)}/{_dashless(TRACKING)}/")
    assert ids.content_id == CONTENT
    assert ids.tracking_link_id == TRACKING


def test_path_parameter_wins_over_extra_path():
    ids = resolve_identifiers(
        path_param=f"{_dashless(CONTENT)}/{_dashless(TRACKING)}",
        path_info="ffffffffffffffffffffffffffffffff/eeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
    )
    assert ids.content_id == CONTENT


def test_extra_path_form():
    ids = resolve_identifiers(path_info=f"{_dashless(CONTENT)}/{_dashless(TRACKING)}")
    assert (ids.content_id, ids.tracking_link_id) == (CONTENT, TRACKING)


def test_legacy_form_accepts_dashed_and_opaque_ids():
    ids = resolve_identifiers(tracking_param=TRACKING, content_param=_dashless(CONTENT))
    assert (ids.content_id, ids.tracking_link_id) == (CONTENT, TRACKING)

    ids = resolve_identifiers(tracking_param="legacy-token-42", content_param=CONTENT)
    assert ids.tracking_link_id == "legacy-token-42"


def test_resolver_errors():
    with pytest.raises(InvalidIdentifier):
        resolve_identifiers(path_param=_dashless(CONTENT))
    with pytest.raises(InvalidIdentifier):
        resolve_identifiers(path_info=f"{_dashless(CONTENT)}/not-a-uuid")
    with pytest.raises(MissingIdentifier):
        resolve_identifiers(tracking_param=TRACKING)
    with pytest.raises(MissingIdentifier):
        resolve_identifiers()


def test_validate_session_returns_recipient(db_session, scenario_setup):
    session = validate_session(db_session, scenario_setup.link)
    assert session.recipient_id == "recipient-1"
    assert session.recipient_email == "jordan@acme.example"


def test_unknown_empty_and_expired_sessions_look_alike(db_session, scenario_setup):
    expired = models.TrackingSession(
        tracking_link_id="0190a7c2-5b1e-7d3f-9a4b-00000000dead",
        training_id=scenario_setup.scenario.id,
        recipient_id="recipient-2",
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=5),
    )
    db_session.add(expired)
    db_session.commit()

    messages = set()
    for link in ("", None, "0190a7c2-ffff-7fff-8fff-ffffffffffff", expired.tracking_link_id):
        with pytest.raises(SessionNotFound) as exc:
            validate_session(db_session, link)
        assert exc.value.status_code == 403
        messages.add(str(exc.value))
    assert messages == {"Invalid or expired tracking session"}
