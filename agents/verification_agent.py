"""
Verification Agent
==================
Asks Gemini to score a batch of emission records for data quality,
methodology compliance and greenwashing risk. The agent only scores;
the status policy lives in ``services.verification_service``.
"""

import json
from typing import Any, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import Field, ValidationError, field_validator

from db.models import EmissionRecord, GreenwashingRisk
from schemas.base import CamelModel
from services.exceptions import MalformedScore, ServiceUnavailable
from utils.helpers import get_logger, message_text, parse_model_json, to_json

logger = get_logger("verification_agent")


class ScoreResult(CamelModel):
    """What a scorer reports about one batch."""

    score: float = Field(ge=0.0, le=1.0)
    greenwashing_risk: GreenwashingRisk
    ccts_eligible: bool = False
    cbam_compliant: bool = False
    data_quality: str = ""
    methodology_compliance: str = ""
    recommendations: list[str] = []
    flags: list[str] = []
    blocking_flags: list[str] = []

    @field_validator("greenwashing_risk", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("recommendations", "flags", "blocking_flags", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return v or []


class CarbonScorer(Protocol):
    """Anything that can score a batch of emission records."""

    async def score(self, records: list[EmissionRecord], context: dict[str, Any]) -> ScoreResult:
        ...


SYSTEM_PROMPT = (
    "You are a carbon MRV (measurement, reporting, verification) auditor. "
    "Given a batch of emission records extracted from invoices, score the batch "
    "against this rubric:\n"
    "1. Data quality: activity data, units and emission factors present and "
    "plausible; source documents readable.\n"
    "2. Methodology compliance: GHG Protocol scope classification (Scope 1 direct "
    "fuel, Scope 2 purchased energy, Scope 3 value chain) and ISO 14064 style "
    "factor use.\n"
    "3. Greenwashing risk: suspiciously round numbers, missing documentation, "
    "identical factors everywhere, green benefits without evidence.\n\n"
    "Put a problem in blockingFlags ONLY if it makes the batch unusable "
    "(e.g. fabricated vendor, internally inconsistent totals); otherwise use flags.\n"
    "cctsEligible: the batch could back a Carbon Credit Trading Scheme listing.\n"
    "cbamCompliant: the batch meets CBAM embedded-emissions reporting quality.\n\n"
    "Return ONLY valid JSON with this structure:\n"
    "{\n"
    '  "score": <0.0-1.0>,\n'
    '  "greenwashingRisk": "<low|medium|high>",\n'
    '  "cctsEligible": <true|false>,\n'
    '  "cbamCompliant": <true|false>,\n'
    '  "dataQuality": "<one sentence>",\n'
    '  "methodologyCompliance": "<one sentence>",\n'
    '  "recommendations": ["<3-5 specific recommendations>"],\n'
    '  "flags": ["<non-blocking issues>"],\n'
    '  "blockingFlags": ["<blocking issues>"]\n'
    "}"
)


def _record_payload(record: EmissionRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "scope": record.scope,
        "category": record.category,
        "activityData": record.activity_data,
        "activityUnit": record.activity_unit,
        "emissionFactor": record.emission_factor,
        "factorSource": record.factor_source,
        "co2Kg": record.co2_kg,
        "greenBenefit": record.is_green_benefit,
        "dataQuality": record.data_quality,
        "documentConfidence": record.document_confidence,
        "hasInvoiceNumber": bool(record.document_invoice_number),
    }


class GeminiScorer:
    """``CarbonScorer`` backed by a chat model."""

    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    async def score(self, records: list[EmissionRecord], context: dict[str, Any]) -> ScoreResult:
        user_prompt = (
            f"## Emission Records\n```json\n"
            f"{json.dumps([_record_payload(r) for r in records], indent=2)}\n```\n\n"
            f"## Pre-computed Checks\n```json\n{to_json(context, pretty=True)}\n```\n\n"
            "Score this batch."
        )
        messages = [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=user_prompt)]

        try:
            response = await self.llm.ainvoke(messages)
        except Exception as exc:
            logger.error("Completion service error during scoring: %s", exc)
            raise ServiceUnavailable("verification failed, try again") from exc

        raw = message_text(response.content)
        try:
            return ScoreResult.model_validate(parse_model_json(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise MalformedScore(f"Unparseable scoring output: {exc}", raw_response=raw) from exc
