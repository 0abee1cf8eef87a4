"""
Extraction Schema
=================
Structured fields the vision model returns for one document. The model
is asked for camelCase keys, which is also the wire format of the
``/extract`` response.
"""

import re
from typing import Any, Optional

from pydantic import Field, field_validator

from schemas.base import CamelModel

DOCUMENT_TYPES = ("invoice", "bill", "receipt", "certificate", "unknown")
_NUMBER_RE = re.compile(r"[-+]?\d[\d,]*\.?\d*")


def _coerce_number(value: Any) -> Any:
    """
    Read the first number out of text like '1,234.50', 'Rs 9,450.00', '9,450/-'
    or '100 L'. Text with no number in it becomes ``None``.
    """
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if match is None:
            return None
        return float(match.group().replace(",", ""))
    return value


class LineItem(CamelModel):
    """One line of an invoice."""

    description: str = ""
    hsn_code: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    total: Optional[float] = None

    _numbers = field_validator("quantity", "total", mode="before")(_coerce_number)

    @field_validator("hsn_code", mode="before")
    @classmethod
    def _hsn_as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class ExtractionData(CamelModel):
    """Fields extracted from an invoice, bill or receipt."""

    document_type: str = "unknown"
    vendor: Optional[str] = None
    date: Optional[str] = None
    invoice_number: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "INR"
    emission_category: Optional[str] = None
    activity_quantity: Optional[float] = None
    activity_unit: Optional[str] = None
    estimated_co2_kg: Optional[float] = Field(default=None, alias="estimatedCO2Kg")
    line_items: list[LineItem] = []
    confidence: float = 0.0
    validation_flags: list[str] = []

    _numbers = field_validator(
        "amount", "activity_quantity", "estimated_co2_kg", mode="before"
    )(_coerce_number)

    @field_validator("document_type", mode="before")
    @classmethod
    def _known_type(cls, v: Any) -> str:
        v = str(v or "unknown").lower()
        return v if v in DOCUMENT_TYPES else "unknown"

    @field_validator("emission_category", mode="before")
    @classmethod
    def _normalize_category(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower().replace(" ", "_").replace("-", "_")
            return v or None
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def _default_currency(cls, v: Any) -> str:
        return v or "INR"

    @field_validator("confidence", mode="before")
    @classmethod
    def _percent(cls, v: Any) -> float:
        v = float(_coerce_number(v) or 0)
        # Some models answer on a 0-1 scale despite the instructions.
        if 0 < v <= 1:
            v *= 100
        return max(0.0, min(100.0, v))

    @field_validator("line_items", "validation_flags", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return v or []
