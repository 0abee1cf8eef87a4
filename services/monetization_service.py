"""
Monetization Deriver
====================
Deterministic monetization offers for a verified batch: carbon-credit
sale, green financing and a government incentive. Same batch in, same
pathways out; values never depend on time or randomness.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from config.settings import settings
from db.models import (
    MonetizationPathway,
    Owner,
    PathwayStatus,
    PathwayType,
    VerificationBatch,
    VerificationStatus,
)
from db.snowflake_client import fetch_dicts, fetch_one_dict, transaction
from services import verification_service
from services.exceptions import (
    InvalidStatusTransition,
    NotVerifiedError,
    PathwayNotFound,
    VerificationNotFound,
)
from utils.helpers import from_json, get_logger, to_json, utc_now

logger = get_logger("monetization")

CARBON_BUYER = "IEX Green Market"
GREEN_LOAN_PARTNER = "SIDBI Green Loan"
GOVERNMENT_PARTNER = "Government of India"
MIN_INCENTIVE_VALUE = 10000


@dataclass(frozen=True)
class GovernmentScheme:
    name: str
    max_subsidy: float
    subsidy_rate: float  # multiple of the carbon-credit value
    description: str
    eligibility: str


GOVERNMENT_SCHEMES = (
    GovernmentScheme(
        "MSME ZED Certification Subsidy", 500000, 0.8,
        "Up to 80% subsidy for ZED certification",
        "MSMEs with verified carbon data",
    ),
    GovernmentScheme(
        "BEE Energy Audit Subsidy", 250000, 0.5,
        "Subsidy for energy efficiency improvements",
        "Energy-intensive MSMEs",
    ),
    GovernmentScheme(
        "State Green Manufacturing Incentive", 1000000, 1.5,
        "Capital subsidy for clean technology adoption",
        "Manufacturing units with carbon verification",
    ),
)


def credit_value(batch: VerificationBatch) -> float:
    return round(batch.total_co2_kg / 1000 * settings.CARBON_CREDIT_RATE, 2)


def derive_pathways(batch: VerificationBatch) -> list[MonetizationPathway]:
    """
    Compute the applicable pathways for a verified batch.

    Raises ``NotVerifiedError`` for any other status. Returned pathways
    carry fresh ids; ``calculate_monetization`` reconciles them with
    stored rows.
    """
    if batch.status != VerificationStatus.VERIFIED:
        raise NotVerifiedError(
            f"Only verified emissions can be monetized (batch is {batch.status.value})"
        )

    currency = settings.MONETIZATION_CURRENCY
    tonnes = batch.total_co2_kg / 1000
    carbon_value = credit_value(batch)
    pathways: list[MonetizationPathway] = []

    def pathway(kind: PathwayType, **fields: Any) -> MonetizationPathway:
        return MonetizationPathway(
            id=str(uuid.uuid4()),
            verification_id=batch.id,
            pathway_type=kind,
            currency=currency,
            owner=batch.owner,
            **fields,
        )

    if batch.ccts_eligible and carbon_value > 0:
        pathways.append(
            pathway(
                PathwayType.CREDIT_SALE,
                name="Carbon Credit Sale",
                partner_name=CARBON_BUYER,
                estimated_value=carbon_value,
                description=f"Sell {tonnes:.2f} tons of verified carbon credits through an exchange",
                eligibility="CCTS eligible",
                timeline="2-4 weeks for listing, 1-2 months for sale",
                requirements=[
                    "Verified emission data",
                    "CCTS registration",
                    "Business documentation",
                    "CBAM compliant" if batch.cbam_compliant else "CBAM certification pending",
                ],
            )
        )

    interest_savings = round(
        settings.GREEN_LOAN_PRINCIPAL * settings.GREEN_LOAN_RATE_REDUCTION_PCT / 100, 2
    )
    pathways.append(
        pathway(
            PathwayType.GREEN_FINANCING,
            name="Green Loan Benefits",
            partner_name=GREEN_LOAN_PARTNER,
            estimated_value=interest_savings,
            description=(
                f"{settings.GREEN_LOAN_RATE_REDUCTION_PCT}% lower interest on a "
                f"{settings.GREEN_LOAN_PRINCIPAL:,.0f} business loan"
            ),
            eligibility="Based on verified carbon footprint",
            timeline="Standard loan processing time",
            requirements=[
                "Carbon verification certificate",
                "Standard loan documentation",
                "Business financials",
            ],
        )
    )

    best = _best_scheme(carbon_value)
    if best is not None:
        scheme, benefit = best
        pathways.append(
            pathway(
                PathwayType.GOVERNMENT_INCENTIVE,
                name=scheme.name,
                partner_name=GOVERNMENT_PARTNER,
                estimated_value=benefit,
                description=scheme.description,
                eligibility=scheme.eligibility,
                timeline="1-3 months processing",
                requirements=[
                    "Carbon verification certificate",
                    "MSME registration",
                    "Bank account details",
                    "Application form submission",
                ],
            )
        )

    return pathways


def _best_scheme(carbon_value: float) -> Optional[tuple[GovernmentScheme, float]]:
    """Highest-benefit scheme above the minimum; ties keep list order."""
    best = None
    for scheme in GOVERNMENT_SCHEMES:
        benefit = min(scheme.max_subsidy, round(carbon_value * scheme.subsidy_rate))
        if benefit > MIN_INCENTIVE_VALUE and (best is None or benefit > best[1]):
            best = (scheme, benefit)
    return best


# ── Persistence ───────────────────────────────────────────
def _row_to_pathway(row: dict[str, Any]) -> MonetizationPathway:
    details = from_json(row["details"], {})
    return MonetizationPathway(
        id=row["id"],
        verification_id=row["verification_id"],
        pathway_type=row["pathway_type"],
        name=row["name"],
        partner_name=row["partner_name"],
        estimated_value=row["estimated_value"],
        currency=row["currency"],
        status=row["status"],
        description=details.get("description", ""),
        eligibility=details.get("eligibility", ""),
        timeline=details.get("timeline", ""),
        requirements=details.get("requirements", []),
        owner=Owner(session_id=row["session_id"], user_id=row["user_id"]),
    )


def _details(p: MonetizationPathway) -> str:
    return to_json(
        {
            "description": p.description,
            "eligibility": p.eligibility,
            "timeline": p.timeline,
            "requirements": p.requirements,
        }
    )


def _upsert(cur: Any, p: MonetizationPathway) -> None:
    """Update the (batch, type) row in place, inserting only when absent. Status is kept."""
    now = utc_now().isoformat()
    cur.execute(
        """
        UPDATE monetization_pathways
        SET name = ?, partner_name = ?, estimated_value = ?, currency = ?,
            details = ?, updated_at = ?
        WHERE verification_id = ? AND pathway_type = ?
        """,
        (
            p.name, p.partner_name, p.estimated_value, p.currency, _details(p), now,
            p.verification_id, p.pathway_type.value,
        ),
    )
    if cur.rowcount:
        return
    cur.execute(
        """
        INSERT INTO monetization_pathways
            (id, verification_id, pathway_type, name, partner_name, estimated_value,
             currency, status, details, session_id, user_id, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            p.id, p.verification_id, p.pathway_type.value, p.name, p.partner_name,
            p.estimated_value, p.currency, p.status.value, _details(p),
            p.owner.session_id, p.owner.user_id, now, now,
        ),
    )


def _list_for_batch(cur: Any, verification_id: str) -> list[MonetizationPathway]:
    cur.execute(
        "SELECT * FROM monetization_pathways WHERE verification_id = ? ORDER BY created_at, pathway_type",
        (verification_id,),
    )
    return [_row_to_pathway(row) for row in fetch_dicts(cur)]


def calculate_monetization(verification_id: str, owner: Owner) -> tuple[VerificationBatch, list[MonetizationPathway]]:
    """
    Derive and store the pathways of one of the owner's batches.

    Idempotent: calling it again for the same batch updates the same rows.
    """
    with transaction() as cur:
        batch = verification_service.load_batch(cur, verification_id)
        if batch is None or batch.owner != owner:
            raise VerificationNotFound("Verification not found")
        derived = derive_pathways(batch)
        for p in derived:
            _upsert(cur, p)
        stored = _list_for_batch(cur, verification_id)

    wanted = {p.pathway_type for p in derived}
    pathways = [p for p in stored if p.pathway_type in wanted]
    logger.info(
        "Monetization for %s: %d pathways, total %.2f %s",
        verification_id, len(pathways), sum(p.estimated_value for p in pathways),
        settings.MONETIZATION_CURRENCY,
    )
    return batch, pathways


def advance_pathway(pathway_id: str, target: PathwayStatus, owner: Owner) -> MonetizationPathway:
    """Move a pathway forward (available → applied → processing → completed)."""
    with transaction() as cur:
        cur.execute("SELECT * FROM monetization_pathways WHERE id = ?", (pathway_id,))
        row = fetch_one_dict(cur)
        if row is None:
            raise PathwayNotFound("Pathway not found")
        pathway = _row_to_pathway(row)
        if pathway.owner != owner:
            raise PathwayNotFound("Pathway not found")
        if target.rank <= pathway.status.rank:
            raise InvalidStatusTransition(
                f"Cannot move pathway from {pathway.status.value} to {target.value}"
            )
        cur.execute(
            "UPDATE monetization_pathways SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (target.value, utc_now().isoformat(), pathway_id, pathway.status.value),
        )
        if cur.rowcount == 0:
            raise InvalidStatusTransition("Pathway status changed concurrently, reload and retry")

    logger.info("Pathway %s: %s → %s", pathway_id, pathway.status.value, target.value)
    return pathway.model_copy(update={"status": target})
