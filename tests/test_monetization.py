"""
Tests for monetization pathway derivation, idempotent storage and
forward-only pathway status.
"""

import pytest

from db.models import PathwayStatus, PathwayType, VerificationStatus
from services import emission_recorder, monetization_service, verification_service
from services.exceptions import (
    InvalidStatusTransition,
    NotVerifiedError,
    PathwayNotFound,
    VerificationNotFound,
)


@pytest.fixture
def verify(database, make_scorer, score_json):
    """Record a manual emission of ``co2_kg`` and verify it."""

    async def run(owner, co2_kg, reply=None):
        record = emission_recorder.record_manual("diesel", owner, co2_kg=co2_kg)
        scorer = make_scorer(reply or score_json())
        return await verification_service.verify_batch([record.id], owner, scorer)

    return run


class TestDerivePathways:
    async def test_small_batch(self, verify, session_owner):
        batch = await verify(session_owner, 120)

        pathways = {p.pathway_type: p for p in monetization_service.derive_pathways(batch)}

        assert set(pathways) == {PathwayType.CREDIT_SALE, PathwayType.GREEN_FINANCING}
        assert pathways[PathwayType.CREDIT_SALE].estimated_value == 90.0
        assert pathways[PathwayType.GREEN_FINANCING].estimated_value == 2500.0

    async def test_large_batch_gets_best_government_scheme(self, verify, session_owner):
        batch = await verify(session_owner, 100_000)

        pathways = {p.pathway_type: p for p in monetization_service.derive_pathways(batch)}

        incentive = pathways[PathwayType.GOVERNMENT_INCENTIVE]
        assert pathways[PathwayType.CREDIT_SALE].estimated_value == 75000.0
        assert incentive.name == "State Green Manufacturing Incentive"
        assert incentive.estimated_value == 112500

    async def test_no_credit_sale_without_ccts(self, verify, session_owner, score_json):
        batch = await verify(session_owner, 500, reply=score_json(ccts=False))

        types = [p.pathway_type for p in monetization_service.derive_pathways(batch)]

        assert types == [PathwayType.GREEN_FINANCING]

    async def test_unverified_batch_is_refused(self, verify, session_owner):
        batch = await verify(session_owner, 500, reply="not json")
        assert batch.status == VerificationStatus.NEEDS_REVIEW

        with pytest.raises(NotVerifiedError):
            monetization_service.derive_pathways(batch)


class TestCalculateMonetization:
    async def test_repeat_call_updates_same_rows(self, verify, session_owner, query):
        batch = await verify(session_owner, 120)

        _, first = monetization_service.calculate_monetization(batch.id, session_owner)
        _, second = monetization_service.calculate_monetization(batch.id, session_owner)

        assert sorted(p.id for p in first) == sorted(p.id for p in second)
        assert [(p.pathway_type, p.estimated_value) for p in first] == [
            (p.pathway_type, p.estimated_value) for p in second
        ]
        assert query("SELECT COUNT(*) FROM monetization_pathways") == [(2,)]

    async def test_status_survives_recalculation(self, verify, session_owner):
        batch = await verify(session_owner, 120)
        _, pathways = monetization_service.calculate_monetization(batch.id, session_owner)
        loan = next(p for p in pathways if p.pathway_type == PathwayType.GREEN_FINANCING)

        monetization_service.advance_pathway(loan.id, PathwayStatus.APPLIED, session_owner)
        _, again = monetization_service.calculate_monetization(batch.id, session_owner)

        assert next(p for p in again if p.id == loan.id).status == PathwayStatus.APPLIED

    async def test_foreign_batch(self, verify, session_owner, user_owner):
        batch = await verify(session_owner, 120)

        with pytest.raises(VerificationNotFound):
            monetization_service.calculate_monetization(batch.id, user_owner)


class TestAdvancePathway:
    @pytest.fixture
    async def pathway(self, verify, session_owner):
        batch = await verify(session_owner, 120)
        _, pathways = monetization_service.calculate_monetization(batch.id, session_owner)
        return pathways[0]

    async def test_moves_forward(self, pathway, session_owner):
        applied = monetization_service.advance_pathway(pathway.id, PathwayStatus.APPLIED, session_owner)
        done = monetization_service.advance_pathway(pathway.id, PathwayStatus.COMPLETED, session_owner)

        assert applied.status == PathwayStatus.APPLIED
        assert done.status == PathwayStatus.COMPLETED

    @pytest.mark.parametrize("target", [PathwayStatus.AVAILABLE, PathwayStatus.APPLIED])
    async def test_never_moves_backwards(self, pathway, session_owner, target):
        monetization_service.advance_pathway(pathway.id, PathwayStatus.APPLIED, session_owner)

        with pytest.raises(InvalidStatusTransition):
            monetization_service.advance_pathway(pathway.id, target, session_owner)

    async def test_other_owner_cannot_see_pathway(self, pathway, user_owner):
        with pytest.raises(PathwayNotFound):
            monetization_service.advance_pathway(pathway.id, PathwayStatus.APPLIED, user_owner)

    def test_unknown_pathway(self, database, session_owner):
        with pytest.raises(PathwayNotFound):
            monetization_service.advance_pathway("missing", PathwayStatus.APPLIED, session_owner)
