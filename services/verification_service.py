"""
Verification Engine
===================
Scores a batch of emission records and moves it from the implicit
``pending`` state to ``verified``, ``needs_review`` or ``rejected``.
Batches are insert-only: a status, once written, is never changed. A
batch that did not verify can only be resubmitted as a new batch.
"""

import asyncio
import math
import uuid
from typing import Any, Optional

from agents.verification_agent import CarbonScorer, ScoreResult
from config.settings import settings
from db.models import (
    EmissionRecord,
    GreenwashingRisk,
    Owner,
    VerificationBatch,
    VerificationStatus,
)
from db.snowflake_client import fetch_one_dict, transaction
from services import emission_recorder
from services.exceptions import EmissionsNotFound, MalformedScore, VerificationNotFound
from utils.helpers import from_json, get_logger, to_json, utc_now

logger = get_logger("verification")

ABNORMAL_QUANTITY = 1_000_000
LOW_OCR_CONFIDENCE = 70.0

METHODOLOGY = emission_recorder.load_carbon_index()["methodology"]


# ── Local checks ──────────────────────────────────────────
def validate_emission(record: EmissionRecord) -> dict[str, Any]:
    """Deterministic per-record checks, reported to the scorer and in the analysis."""
    flags: list[str] = []
    confidence = 100

    if not record.activity_data or record.activity_data <= 0:
        flags.append("Missing or invalid activity data")
        confidence -= 20
    if not record.activity_unit:
        flags.append("Missing activity unit")
        confidence -= 15
    if record.emission_factor is None:
        flags.append("Missing emission factor")
        confidence -= 10
    if record.activity_data and record.activity_data > ABNORMAL_QUANTITY:
        flags.append("Abnormally high quantity - requires verification")
        confidence -= 25
    if record.document_confidence is not None and record.document_confidence < LOW_OCR_CONFIDENCE:
        flags.append("Low OCR confidence on source document")
        confidence -= 15
    if record.data_quality == emission_recorder.UNVERIFIED_CATEGORY:
        flags.append(f"Unrecognised emission category: {record.category}")
        confidence -= 20

    confidence = max(0, min(100, confidence))
    return {"valid": confidence >= 80, "flags": flags, "confidence": confidence}


def scope_breakdown(records: list[EmissionRecord]) -> dict[str, float]:
    summary = emission_recorder.summarize(records)
    return {"scope1": summary["scope1"], "scope2": summary["scope2"], "scope3": summary["scope3"]}


def green_score(breakdown: dict[str, float], reductions: float, gross: float) -> int:
    """0-100; penalises scope 1 most, rewards green benefits up to 30 points."""
    if gross <= 0:
        return 0
    score = 100.0
    for scope, weight in (("scope1", 50), ("scope2", 30), ("scope3", 20)):
        score -= max(breakdown[scope], 0.0) / gross * weight
    score += min(reductions / gross, 0.3) * 100
    return max(0, min(100, round(score)))


def quality_grade(score: float, risk: GreenwashingRisk) -> str:
    if score >= 0.9 and risk == GreenwashingRisk.LOW:
        return "A"
    if score >= 0.75:
        return "B"
    if score >= 0.5:
        return "C"
    return "D"


def build_context(records: list[EmissionRecord], checks: dict[str, dict[str, Any]]) -> dict[str, Any]:
    breakdown = scope_breakdown(records)
    gross = sum(r.co2_kg for r in records if r.co2_kg > 0)
    reductions = -sum(r.co2_kg for r in records if r.co2_kg < 0)
    net = max(0.0, gross - reductions)
    valid = sum(1 for c in checks.values() if c["valid"])
    return {
        "recordCount": len(records),
        "validRecords": valid,
        "scopeBreakdown": breakdown,
        "grossEmissions": gross,
        "greenBenefits": reductions,
        "netEmissions": net,
        "greenScore": green_score(breakdown, reductions, gross),
        "validationFlags": {rid: c["flags"] for rid, c in checks.items() if c["flags"]},
    }


# ── Policy ────────────────────────────────────────────────
def conservative_default() -> ScoreResult:
    """Used when the scorer's answer cannot be parsed."""
    return ScoreResult(
        score=0.7,
        greenwashing_risk=GreenwashingRisk.MEDIUM,
        ccts_eligible=False,
        cbam_compliant=False,
        data_quality="Automated scoring unavailable",
        methodology_compliance="Pending manual review",
        recommendations=["Manual review recommended for complete verification"],
        flags=["Automated scoring response could not be parsed"],
    )


def decide_status(
    score: float,
    risk: GreenwashingRisk,
    blocking_flags: list[str],
    threshold: float = settings.VERIFIED_SCORE_THRESHOLD,
) -> VerificationStatus:
    """
    Blocking flag → rejected, whatever the score.
    score ≥ threshold with low/medium risk → verified.
    Anything else → needs_review.
    """
    if blocking_flags:
        return VerificationStatus.REJECTED
    if score >= threshold and risk in (GreenwashingRisk.LOW, GreenwashingRisk.MEDIUM):
        return VerificationStatus.VERIFIED
    return VerificationStatus.NEEDS_REVIEW


# ── Engine ────────────────────────────────────────────────
def _load_owned_records(emission_ids: list[str], owner: Owner) -> list[EmissionRecord]:
    with transaction() as cur:
        records = emission_recorder.load_records(cur, emission_ids)
    found = {r.id for r in records if r.owner == owner}
    missing = [i for i in emission_ids if i not in found]
    if missing:
        raise EmissionsNotFound(
            f"{len(missing)} emission(s) not found for this owner", missing=missing
        )
    return records


def _insert_batch(cur: Any, batch: VerificationBatch) -> None:
    cur.execute(
        """
        INSERT INTO carbon_verifications
            (id, emission_ids, total_co2_kg, verification_status, verification_score,
             greenwashing_risk, ccts_eligible, cbam_compliant, ai_analysis,
             verified_at, session_id, user_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            batch.id, to_json(batch.emission_ids), batch.total_co2_kg, batch.status.value,
            batch.score, batch.greenwashing_risk.value, batch.ccts_eligible,
            batch.cbam_compliant, to_json(batch.analysis),
            batch.verified_at.isoformat() if batch.verified_at else None,
            batch.owner.session_id, batch.owner.user_id, batch.created_at.isoformat(),
        ),
    )


def _mark_verified(cur: Any, batch: VerificationBatch) -> None:
    placeholders = ", ".join("?" for _ in batch.emission_ids)
    cur.execute(
        f"UPDATE emissions SET verified = ?, verification_notes = ? WHERE id IN ({placeholders})",
        (True, f"Verified with score {batch.score * 100:.0f}% (batch {batch.id})", *batch.emission_ids),
    )


def _persist_batch(batch: VerificationBatch) -> None:
    """Insert the batch and, when verified, flag its emissions in the same transaction."""
    with transaction() as cur:
        _insert_batch(cur, batch)
        if batch.status == VerificationStatus.VERIFIED:
            _mark_verified(cur, batch)


async def verify_batch(emission_ids: list[str], owner: Owner, scorer: CarbonScorer) -> VerificationBatch:
    """
    Score the given records and persist the resulting batch.

    All ids must exist and belong to ``owner``. A malformed scorer answer
    degrades to ``needs_review``; a service outage propagates.
    """
    emission_ids = list(dict.fromkeys(emission_ids))
    if not emission_ids:
        raise EmissionsNotFound("No emissions to verify")

    # Warehouse round-trips run off the event loop.
    records = await asyncio.to_thread(_load_owned_records, emission_ids, owner)
    checks = {r.id: validate_emission(r) for r in records}
    context = build_context(records, checks)

    used_fallback = False
    try:
        result = await scorer.score(records, context)
    except MalformedScore as exc:
        logger.warning("Scoring output malformed, falling back to needs_review: %s", exc.message)
        result = conservative_default()
        used_fallback = True

    status = decide_status(result.score, result.greenwashing_risk, result.blocking_flags)
    verified = status == VerificationStatus.VERIFIED
    grade = quality_grade(result.score, result.greenwashing_risk)
    net_tonnes = context["netEmissions"] / 1000
    credits = math.floor(net_tonnes)

    local_flags = [f for c in checks.values() for f in c["flags"]]
    analysis = {
        "dataQuality": result.data_quality
        or f"{context['validRecords']}/{len(records)} records passed validation",
        "methodologyCompliance": result.methodology_compliance
        or "GHG Protocol / ISO 14064 compliant emission factors applied",
        "recommendations": result.recommendations,
        "flags": list(dict.fromkeys(result.flags + local_flags)),
        "blockingFlags": result.blocking_flags,
        "scopeBreakdown": context["scopeBreakdown"],
        "greenScore": context["greenScore"],
        "netEmissions": context["netEmissions"],
        "creditEligibility": {
            "eligibleCredits": credits,
            "carryForward": net_tonnes - credits,
            "qualityGrade": grade,
        },
        "methodology": METHODOLOGY,
        "scoringFallback": used_fallback,
    }

    now = utc_now()
    batch = VerificationBatch(
        id=str(uuid.uuid4()),
        emission_ids=emission_ids,
        total_co2_kg=sum(r.co2_kg for r in records),
        status=status,
        score=result.score,
        greenwashing_risk=result.greenwashing_risk,
        ccts_eligible=verified and result.ccts_eligible,
        cbam_compliant=verified and result.cbam_compliant,
        analysis=analysis,
        verified_at=now if verified else None,
        owner=owner,
        created_at=now,
    )

    await asyncio.to_thread(_persist_batch, batch)

    logger.info(
        "Batch %s: %s (score %.2f, risk %s, %d records, %.2f kg CO2e)",
        batch.id, status.value, batch.score, batch.greenwashing_risk.value,
        len(records), batch.total_co2_kg,
    )
    return batch


def _row_to_batch(row: dict[str, Any]) -> VerificationBatch:
    return VerificationBatch(
        id=row["id"],
        emission_ids=from_json(row["emission_ids"], []),
        total_co2_kg=row["total_co2_kg"],
        status=row["verification_status"],
        score=row["verification_score"],
        greenwashing_risk=row["greenwashing_risk"],
        ccts_eligible=bool(row["ccts_eligible"]),
        cbam_compliant=bool(row["cbam_compliant"]),
        analysis=from_json(row["ai_analysis"], {}),
        verified_at=row["verified_at"],
        owner=Owner(session_id=row["session_id"], user_id=row["user_id"]),
        created_at=row["created_at"],
    )


def load_batch(cur: Any, verification_id: str) -> Optional[VerificationBatch]:
    cur.execute("SELECT * FROM carbon_verifications WHERE id = ?", (verification_id,))
    row = fetch_one_dict(cur)
    return _row_to_batch(row) if row else None


def get_verification(verification_id: str, owner: Owner) -> VerificationBatch:
    with transaction() as cur:
        batch = load_batch(cur, verification_id)
    if batch is None or batch.owner != owner:
        raise VerificationNotFound("Verification not found")
    return batch
