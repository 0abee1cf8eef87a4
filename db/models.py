"""
Database Models
===============
Pydantic models representing rows in Snowflake tables.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from utils.helpers import utc_now


# ── Ownership ─────────────────────────────────────────────
class Owner(BaseModel):
    """
    The identity a row belongs to.

    Exactly one of ``session_id`` (anonymous visitor) and ``user_id``
    (authenticated account) is set.
    """

    session_id: Optional[str] = None
    user_id: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "Owner":
        if (self.session_id is None) == (self.user_id is None):
            raise ValueError("exactly one of session_id and user_id must be set")
        return self

    @property
    def column(self) -> str:
        return "user_id" if self.user_id is not None else "session_id"

    @property
    def value(self) -> str:
        return self.user_id if self.user_id is not None else self.session_id

    def where(self, alias: str = "") -> tuple[str, str]:
        """SQL predicate + parameter selecting rows owned by this identity."""
        prefix = f"{alias}." if alias else ""
        return f"{prefix}{self.column} = ?", self.value


# ── Status enums ──────────────────────────────────────────
class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"


class GreenwashingRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PathwayType(str, Enum):
    CREDIT_SALE = "credit-sale"
    GREEN_FINANCING = "green-financing"
    GOVERNMENT_INCENTIVE = "government-incentive"


class PathwayStatus(str, Enum):
    AVAILABLE = "available"
    APPLIED = "applied"
    PROCESSING = "processing"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return list(PathwayStatus).index(self)


# ── Rows ──────────────────────────────────────────────────
class Session(BaseModel):
    """An anonymous visitor session bound to a device fingerprint."""

    id: str
    device_fingerprint: str
    created_at: datetime = Field(default_factory=utc_now)


class Document(BaseModel):
    """A single uploaded invoice, bill or receipt."""

    id: str
    document_hash: str
    mime_type: str
    document_type: str = "unknown"
    vendor: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    confidence: float = 0.0
    owner: Owner
    created_at: datetime = Field(default_factory=utc_now)


class EmissionRecord(BaseModel):
    """One scope-classified CO2e quantity, optionally tied to a document."""

    id: str
    document_id: Optional[str] = None
    scope: int
    category: str
    activity_data: Optional[float] = None
    activity_unit: Optional[str] = None
    emission_factor: Optional[float] = None
    factor_source: Optional[str] = None
    co2_kg: float
    is_green_benefit: bool = False
    data_quality: Optional[str] = None
    verified: bool = False
    verification_notes: Optional[str] = None
    document_confidence: Optional[float] = None
    document_invoice_number: Optional[str] = None
    owner: Owner
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("scope")
    @classmethod
    def _scope_in_range(cls, v: int) -> int:
        if v not in (1, 2, 3):
            raise ValueError(f"scope must be 1, 2 or 3, got {v}")
        return v

    @model_validator(mode="after")
    def _sign_matches_benefit(self) -> "EmissionRecord":
        if self.is_green_benefit and self.co2_kg > 0:
            raise ValueError("green-benefit records must carry a non-positive co2_kg")
        if not self.is_green_benefit and self.co2_kg < 0:
            raise ValueError("negative co2_kg is reserved for green-benefit records")
        return self


class VerificationBatch(BaseModel):
    """A scored, immutable set of emission records from one owner."""

    id: str
    emission_ids: list[str]
    total_co2_kg: float
    status: VerificationStatus
    score: float = Field(ge=0.0, le=1.0)
    greenwashing_risk: GreenwashingRisk
    ccts_eligible: bool = False
    cbam_compliant: bool = False
    analysis: dict[str, Any] = {}
    verified_at: Optional[datetime] = None
    owner: Owner
    created_at: datetime = Field(default_factory=utc_now)


class MonetizationPathway(BaseModel):
    """One monetization offer derived from a verified batch."""

    id: str
    verification_id: str
    pathway_type: PathwayType
    name: str
    partner_name: str
    estimated_value: float
    currency: str
    status: PathwayStatus = PathwayStatus.AVAILABLE
    description: str = ""
    eligibility: str = ""
    timeline: str = ""
    requirements: list[str] = []
    owner: Owner
