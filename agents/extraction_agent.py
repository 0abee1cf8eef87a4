"""
Extraction Agent
================
Uses Gemini (vision-capable) to read an invoice, bill or receipt.
PDFs are rendered to page images locally; images are sent as-is. The
model answers with a fixed JSON schema which is validated into
``ExtractionData``.
"""

import base64
import json
from typing import Any, Optional

import fitz  # PyMuPDF, renders PDF pages as images
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError

from config.settings import settings
from schemas.extraction import ExtractionData
from services.emission_recorder import category_taxonomy
from services.exceptions import ExtractionParseError, ServiceUnavailable
from utils.helpers import get_logger, message_text, parse_model_json

logger = get_logger("extraction_agent")

PDF_MIME_TYPE = "application/pdf"
MAX_PDF_PAGES = 5


def _render_pdf_pages(pdf_bytes: bytes) -> list[str]:
    """Render each PDF page to a PNG and return as base64-encoded strings."""
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except RuntimeError as exc:
        raise ExtractionParseError(f"Unreadable PDF: {exc}") from exc
    images: list[str] = []
    try:
        for page in doc:
            if len(images) == MAX_PDF_PAGES:
                break
            pix = page.get_pixmap(dpi=200)
            img_bytes = pix.tobytes(output="png")
            images.append(base64.b64encode(img_bytes).decode("utf-8"))
    finally:
        doc.close()
    return images


def document_images(document_bytes: bytes, mime_type: str) -> list[tuple[str, str]]:
    """Return ``(base64, mime)`` pairs to attach to the model request."""
    if mime_type == PDF_MIME_TYPE:
        return [(img, "image/png") for img in _render_pdf_pages(document_bytes)]
    if mime_type.startswith("image/"):
        return [(base64.b64encode(document_bytes).decode("utf-8"), mime_type)]
    raise ExtractionParseError(f"Unsupported document type: {mime_type}")


def _system_prompt() -> str:
    return (
        "You are an OCR document analyzer for invoices, bills and receipts. "
        "Extract the fields below with maximum accuracy, even from faded or "
        "unclear documents. Normalise dates to YYYY-MM-DD and amounts to plain "
        "numbers without currency symbols or thousands separators.\n\n"
        "emissionCategory and lineItems[].category MUST be one of: "
        f"{json.dumps(category_taxonomy())}, or null if none applies.\n\n"
        "Return ONLY valid JSON with this structure:\n"
        "{\n"
        '  "documentType": "invoice|bill|receipt|certificate|unknown",\n'
        '  "vendor": "<supplier name>",\n'
        '  "date": "YYYY-MM-DD",\n'
        '  "invoiceNumber": "<invoice or bill number>",\n'
        '  "amount": <total amount>,\n'
        '  "currency": "INR",\n'
        '  "emissionCategory": "<category>",\n'
        '  "activityQuantity": <consumed quantity, e.g. litres or kWh>,\n'
        '  "activityUnit": "<litre|kWh|kg|scm|tonne-km>",\n'
        '  "estimatedCO2Kg": <your CO2e estimate in kg or null>,\n'
        '  "lineItems": [\n'
        '    {"description": "<text>", "hsnCode": "<HSN/SAC or null>", '
        '"category": "<category>", "quantity": <number>, "unit": "<unit>", "total": <number>}\n'
        "  ],\n"
        '  "confidence": <0-100, your confidence in the extraction>,\n'
        '  "validationFlags": ["<anything suspicious or unreadable>"]\n'
        "}"
    )


def build_message(images: list[tuple[str, str]]) -> list[Any]:
    content: list[dict[str, Any]] = [
        {
            "type": "text",
            "text": (
                "Extract ALL data from this document. Pay special attention to "
                "HSN codes, quantities and units."
            ),
        }
    ]
    for img_b64, mime in images:
        content.append(
            {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{img_b64}"}}
        )
    return [SystemMessage(content=_system_prompt()), HumanMessage(content=content)]


def apply_rule_flags(data: ExtractionData) -> ExtractionData:
    """Add deterministic validation flags on top of the model's own."""
    flags = list(data.validation_flags)
    if not data.invoice_number:
        flags.append("Missing invoice number")
    if not data.date:
        flags.append("Missing invoice date")
    quantities = [item.quantity for item in data.line_items] or [data.activity_quantity]
    if any(q is None or q <= 0 for q in quantities):
        flags.append("Missing or invalid quantities")
    return data.model_copy(update={"validation_flags": list(dict.fromkeys(flags))})


class ExtractionAdapter:
    """
    Sends document bytes to the completion service and returns typed fields.

    When the primary model's answer is unusable or under-confident and a
    fallback model is configured, the fallback is asked once.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        fallback_llm: Optional[BaseChatModel] = None,
        min_confidence: float = settings.EXTRACTION_MIN_CONFIDENCE,
    ):
        self.llm = llm
        self.fallback_llm = fallback_llm
        self.min_confidence = min_confidence

    async def extract(self, document_bytes: bytes, mime_type: str) -> ExtractionData:
        messages = build_message(document_images(document_bytes, mime_type))

        data, raw = await self._ask(self.llm, messages)

        if self.fallback_llm is not None and (data is None or data.confidence < self.min_confidence):
            logger.info("Primary extraction unusable or low confidence, retrying with fallback model")
            try:
                fallback_data, fallback_raw = await self._ask(self.fallback_llm, messages)
            except ServiceUnavailable:
                if data is None:
                    raise
                logger.warning("Fallback model unavailable, keeping primary extraction")
            else:
                if fallback_data is not None:
                    data, raw = fallback_data, fallback_raw

        if data is None:
            raise ExtractionParseError("processing failed", raw_response=raw)
        return apply_rule_flags(data)

    async def _ask(self, llm: BaseChatModel, messages: list[Any]) -> tuple[Optional[ExtractionData], str]:
        try:
            response = await llm.ainvoke(messages)
        except Exception as exc:
            logger.error("Completion service error during extraction: %s", exc)
            raise ServiceUnavailable("processing failed, try again") from exc

        raw = message_text(response.content)
        try:
            payload = parse_model_json(raw)
            if not isinstance(payload, dict):
                raise ValueError("expected a JSON object")
            return ExtractionData.model_validate(payload), raw
        except (json.JSONDecodeError, ValueError, ValidationError) as exc:
            logger.warning("Unparseable extraction output: %s", exc)
            return None, raw
