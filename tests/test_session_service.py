"""Tests for anonymous sessions and the session → account merge."""

import json

import pytest

from db.models import Owner
from services import emission_recorder, session_service, verification_service
from services.exceptions import MergeIncomplete, OwnershipMismatch, SessionNotFound

FINGERPRINT = "fp-3f9a1c-chrome-linux"


@pytest.fixture
async def session_with_data(database, make_scorer, score_json):
    session = session_service.create_session(FINGERPRINT)
    owner = Owner(session_id=session.id)
    records = [
        emission_recorder.record_manual("diesel", owner, quantity=10),
        emission_recorder.record_manual("lpg", owner, quantity=4),
    ]
    await verification_service.verify_batch([r.id for r in records], owner, make_scorer(score_json()))
    return session


def test_create_and_get_session(database):
    session = session_service.create_session(FINGERPRINT)

    loaded = session_service.get_session(session.id)

    assert loaded.device_fingerprint == FINGERPRINT
    assert session_service.get_session("nope") is None


def test_merge_moves_everything(session_with_data, query):
    merged = session_service.merge_session(
        session_with_data.id, FINGERPRINT, "user-7", {"ip_address": "10.0.0.1", "user_agent": "pytest"}
    )

    assert merged == {"documents": 0, "emissions": 2, "verifications": 1, "pathways": 0}
    assert emission_recorder.list_emissions(Owner(session_id=session_with_data.id)) == []
    assert len(emission_recorder.list_emissions(Owner(user_id="user-7"))) == 2

    [(event, ip, details)] = query("SELECT event_type, ip_address, details FROM security_audit_log")
    assert event == "SESSION_MERGE_SUCCESS"
    assert ip == "10.0.0.1"
    assert json.loads(details)["merged_counts"]["emissions"] == 2


def test_rows_have_exactly_one_owner_after_merge(session_with_data, query):
    session_service.merge_session(session_with_data.id, FINGERPRINT, "user-7")

    for table in session_service.OWNED_TABLES:
        rows = query(f"SELECT session_id, user_id FROM {table}")
        assert all((s is None) != (u is None) for s, u in rows)


def test_fingerprint_mismatch_is_audited(session_with_data, query):
    with pytest.raises(OwnershipMismatch):
        session_service.merge_session(session_with_data.id, "someone-else", "user-7")

    assert len(emission_recorder.list_emissions(Owner(session_id=session_with_data.id))) == 2
    [(event, user_id)] = query("SELECT event_type, user_id FROM security_audit_log")
    assert (event, user_id) == ("SESSION_MERGE_FINGERPRINT_MISMATCH", "user-7")


def test_unknown_session(database):
    with pytest.raises(SessionNotFound):
        session_service.merge_session("missing", FINGERPRINT, "user-7")


def test_failed_table_rolls_back_whole_merge(session_with_data, monkeypatch, query):
    monkeypatch.setattr(
        session_service,
        "OWNED_TABLES",
        {**session_service.OWNED_TABLES, "no_such_table": "missing"},
    )

    with pytest.raises(MergeIncomplete) as exc_info:
        session_service.merge_session(session_with_data.id, FINGERPRINT, "user-7")

    assert exc_info.value.details["table"] == "no_such_table"
    assert len(emission_recorder.list_emissions(Owner(session_id=session_with_data.id))) == 2
    assert query("SELECT COUNT(*) FROM security_audit_log") == [(0,)]
