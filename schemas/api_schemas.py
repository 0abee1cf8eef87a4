"""
API Schemas
===========
Pydantic models for request / response validation on API endpoints.
JSON keys are camelCase.
"""

from typing import Any, Optional

from pydantic import Field

from db.models import (
    EmissionRecord,
    GreenwashingRisk,
    MonetizationPathway,
    PathwayStatus,
    VerificationBatch,
    VerificationStatus,
)
from schemas.base import CamelModel
from schemas.extraction import ExtractionData


# ── Extraction ────────────────────────────────────────────
class ExtractRequest(CamelModel):
    """One document, base64 encoded."""

    document_bytes: str
    mime_type: str = "image/jpeg"


class ExtractResponse(CamelModel):
    success: bool
    is_duplicate: bool = False
    cached: bool = False
    document_hash: Optional[str] = None
    data: Optional[ExtractionData] = None
    document_id: Optional[str] = None
    emission_ids: list[str] = []
    error: Optional[str] = None


class FileResult(CamelModel):
    """Outcome for one file of a bulk upload."""

    filename: str
    status: str  # success | duplicate | error
    message: str
    document_hash: Optional[str] = None
    data: Optional[ExtractionData] = None
    emission_ids: list[str] = []


class BulkUploadResponse(CamelModel):
    files: list[FileResult]
    processed: int = 0
    duplicates: int = 0
    errors: int = 0


# ── Emissions ─────────────────────────────────────────────
class ManualEmissionRequest(CamelModel):
    category: str
    quantity: Optional[float] = Field(default=None, gt=0)
    unit: Optional[str] = None
    co2_kg: Optional[float] = None


class EmissionOut(CamelModel):
    id: str
    document_id: Optional[str] = None
    scope: int
    category: str
    activity_data: Optional[float] = None
    activity_unit: Optional[str] = None
    emission_factor: Optional[float] = None
    co2_kg: float
    is_green_benefit: bool
    data_quality: Optional[str] = None
    verified: bool

    @classmethod
    def from_record(cls, record: EmissionRecord) -> "EmissionOut":
        return cls.model_validate(record.model_dump(include=set(cls.model_fields)))


class EmissionsResponse(CamelModel):
    emissions: list[EmissionOut]
    summary: dict[str, Any]


class ResetResponse(CamelModel):
    deleted: int


# ── Verification ──────────────────────────────────────────
class VerifyRequest(CamelModel):
    emission_ids: list[str]
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class VerifyResponse(CamelModel):
    verification_id: str
    status: VerificationStatus
    score: float
    greenwashing_risk: GreenwashingRisk
    analysis: dict[str, Any]
    ccts_eligible: bool
    cbam_compliant: bool
    total_co2_kg: float = Field(alias="totalCO2Kg")

    @classmethod
    def from_batch(cls, batch: VerificationBatch) -> "VerifyResponse":
        return cls(
            verification_id=batch.id,
            status=batch.status,
            score=batch.score,
            greenwashing_risk=batch.greenwashing_risk,
            analysis=batch.analysis,
            ccts_eligible=batch.ccts_eligible,
            cbam_compliant=batch.cbam_compliant,
            total_co2_kg=batch.total_co2_kg,
        )


# ── Monetization ──────────────────────────────────────────
class MonetizationRequest(CamelModel):
    verification_id: str


class PathwayDetails(CamelModel):
    description: str
    eligibility: str
    timeline: str
    requirements: list[str]


class PathwayOut(CamelModel):
    id: str
    type: str
    name: str
    estimated_value: float
    currency: str
    partner: str
    status: PathwayStatus
    details: PathwayDetails

    @classmethod
    def from_pathway(cls, p: MonetizationPathway) -> "PathwayOut":
        return cls(
            id=p.id,
            type=p.pathway_type.value,
            name=p.name,
            estimated_value=p.estimated_value,
            currency=p.currency,
            partner=p.partner_name,
            status=p.status,
            details=PathwayDetails(
                description=p.description,
                eligibility=p.eligibility,
                timeline=p.timeline,
                requirements=p.requirements,
            ),
        )


class MonetizationResponse(CamelModel):
    pathways: list[PathwayOut]
    total_potential_value: float
    currency: str
    verification_score: float
    co2_tons: float


class AdvancePathwayRequest(CamelModel):
    status: PathwayStatus


# ── Sessions ──────────────────────────────────────────────
class SessionCreateRequest(CamelModel):
    device_fingerprint: str = Field(min_length=1)


class SessionCreateResponse(CamelModel):
    session_id: str


class MergeRequest(CamelModel):
    session_id: str = Field(min_length=1)
    device_fingerprint: str = Field(min_length=1)


class MergeCounts(CamelModel):
    """Rows moved per owned table. ``reports`` stays in the wire format for
    older clients; report rows are not stored by this service, so it is 0."""

    documents: int = 0
    emissions: int = 0
    verifications: int = 0
    pathways: int = 0
    reports: int = 0


class MergeResponse(CamelModel):
    merged: MergeCounts
