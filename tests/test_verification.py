"""
Tests for the verification engine: local checks, status policy and
batch persistence.
"""

import threading

import pytest

from agents.verification_agent import GeminiScorer
from db.models import GreenwashingRisk, VerificationStatus
from services import emission_recorder, verification_service
from services.exceptions import EmissionsNotFound, ServiceUnavailable, VerificationNotFound
from services.verification_service import decide_status, validate_emission


@pytest.fixture
def diesel_records(database, session_owner):
    return [
        emission_recorder.record_manual("diesel", session_owner, quantity=100, unit="litre"),
        emission_recorder.record_manual("electricity", session_owner, quantity=500, unit="kWh"),
    ]


class TestDecideStatus:
    @pytest.mark.parametrize(
        "score,risk,blocking,expected",
        [
            (0.95, GreenwashingRisk.LOW, [], VerificationStatus.VERIFIED),
            (0.80, GreenwashingRisk.MEDIUM, [], VerificationStatus.VERIFIED),
            (0.79, GreenwashingRisk.LOW, [], VerificationStatus.NEEDS_REVIEW),
            (0.95, GreenwashingRisk.HIGH, [], VerificationStatus.NEEDS_REVIEW),
            (0.99, GreenwashingRisk.LOW, ["Vendor does not exist"], VerificationStatus.REJECTED),
            (0.10, GreenwashingRisk.HIGH, ["Totals inconsistent"], VerificationStatus.REJECTED),
        ],
    )
    def test_policy(self, score, risk, blocking, expected):
        assert decide_status(score, risk, blocking, threshold=0.8) == expected


class TestValidateEmission:
    def test_complete_record_is_valid(self, session_owner):
        record = emission_recorder.build_record("diesel", session_owner, quantity=10, unit="litre")

        result = validate_emission(record)

        assert result == {"valid": True, "flags": [], "confidence": 100}

    def test_deductions_accumulate(self, session_owner):
        record = emission_recorder.build_record(
            "mystery", session_owner, estimated_co2_kg=5, known=False
        )

        result = validate_emission(record)

        # no activity data, no unit, no factor, unknown category
        assert result["confidence"] == 100 - 20 - 15 - 10 - 20
        assert result["valid"] is False

    def test_abnormal_quantity(self, session_owner):
        record = emission_recorder.build_record("coal", session_owner, quantity=2_000_000)

        assert "Abnormally high quantity - requires verification" in validate_emission(record)["flags"]


class TestVerifyBatch:
    async def test_verified_batch_marks_records(self, diesel_records, session_owner, make_scorer, score_json):
        ids = [r.id for r in diesel_records]

        batch = await verification_service.verify_batch(ids, session_owner, make_scorer(score_json()))

        assert batch.status == VerificationStatus.VERIFIED
        assert batch.ccts_eligible is True
        assert batch.verified_at is not None
        assert batch.total_co2_kg == pytest.approx(268.0 + 354.0)
        assert batch.analysis["scoringFallback"] is False
        assert batch.analysis["creditEligibility"]["qualityGrade"] == "A"
        assert all(r.verified for r in emission_recorder.list_emissions(session_owner))

    async def test_malformed_score_degrades_to_needs_review(
        self, diesel_records, session_owner, make_scorer
    ):
        batch = await verification_service.verify_batch(
            [r.id for r in diesel_records], session_owner, make_scorer("score: very good")
        )

        assert batch.status == VerificationStatus.NEEDS_REVIEW
        assert batch.score == 0.7
        assert batch.greenwashing_risk == GreenwashingRisk.MEDIUM
        assert batch.ccts_eligible is False
        assert batch.analysis["scoringFallback"] is True
        assert not any(r.verified for r in emission_recorder.list_emissions(session_owner))

    async def test_blocking_flag_rejects(self, diesel_records, session_owner, make_scorer, score_json):
        scorer = make_scorer(score_json(score=0.99, blocking=["Invoice totals do not add up"]))

        batch = await verification_service.verify_batch([r.id for r in diesel_records], session_owner, scorer)

        assert batch.status == VerificationStatus.REJECTED
        assert batch.ccts_eligible is False

    async def test_eligibility_dropped_when_not_verified(
        self, diesel_records, session_owner, make_scorer, score_json
    ):
        scorer = make_scorer(score_json(score=0.6, ccts=True, cbam=True))

        batch = await verification_service.verify_batch([r.id for r in diesel_records], session_owner, scorer)

        assert batch.status == VerificationStatus.NEEDS_REVIEW
        assert (batch.ccts_eligible, batch.cbam_compliant) == (False, False)

    async def test_other_owners_records_are_not_found(
        self, diesel_records, user_owner, make_scorer, score_json
    ):
        with pytest.raises(EmissionsNotFound):
            await verification_service.verify_batch(
                [diesel_records[0].id], user_owner, make_scorer(score_json())
            )

    async def test_empty_request(self, database, session_owner, make_scorer, score_json):
        with pytest.raises(EmissionsNotFound):
            await verification_service.verify_batch([], session_owner, make_scorer(score_json()))

    async def test_outage_writes_no_batch(self, diesel_records, session_owner, mock_llm, query):
        scorer = GeminiScorer(mock_llm(error=ConnectionError("unreachable")))

        with pytest.raises(ServiceUnavailable):
            await verification_service.verify_batch([r.id for r in diesel_records], session_owner, scorer)

        assert query("SELECT COUNT(*) FROM carbon_verifications") == [(0,)]

    async def test_resubmission_creates_a_new_batch(
        self, diesel_records, session_owner, make_scorer, score_json
    ):
        ids = [r.id for r in diesel_records]
        first = await verification_service.verify_batch(ids, session_owner, make_scorer("garbage"))

        second = await verification_service.verify_batch(ids, session_owner, make_scorer(score_json()))

        assert first.id != second.id
        assert verification_service.get_verification(first.id, session_owner).status == VerificationStatus.NEEDS_REVIEW
        assert verification_service.get_verification(second.id, session_owner).status == VerificationStatus.VERIFIED

    async def test_get_verification_checks_owner(
        self, diesel_records, session_owner, user_owner, make_scorer, score_json
    ):
        batch = await verification_service.verify_batch(
            [r.id for r in diesel_records], session_owner, make_scorer(score_json())
        )

        loaded = verification_service.get_verification(batch.id, session_owner)
        assert loaded.emission_ids == batch.emission_ids
        assert loaded.analysis["scopeBreakdown"]["scope1"] == pytest.approx(268.0)

        with pytest.raises(VerificationNotFound):
            verification_service.get_verification(batch.id, user_owner)


async def test_database_work_runs_off_the_event_loop(
    diesel_records, session_owner, make_scorer, score_json, monkeypatch
):
    loop_thread = threading.get_ident()
    seen: list[int] = []
    load, persist = verification_service._load_owned_records, verification_service._persist_batch

    def tracking_load(*args):
        seen.append(threading.get_ident())
        return load(*args)

    def tracking_persist(*args):
        seen.append(threading.get_ident())
        return persist(*args)

    monkeypatch.setattr(verification_service, "_load_owned_records", tracking_load)
    monkeypatch.setattr(verification_service, "_persist_batch", tracking_persist)

    await verification_service.verify_batch([r.id for r in diesel_records], session_owner, make_scorer(score_json()))

    assert len(seen) == 2
    assert loop_thread not in seen
