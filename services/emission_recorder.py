"""
Emission Recorder
=================
Turns extracted document fields into scope-classified emission records
using the carbon-emission-factor index in ``data/carbon_index.json``,
and owns the rest of the emission-row lifecycle (listing, manual entry,
bulk reset).
"""

import json
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from db.models import EmissionRecord, Owner
from db.snowflake_client import fetch_dicts, transaction
from schemas.extraction import ExtractionData, LineItem
from utils.helpers import get_logger

logger = get_logger("emission_recorder")

CARBON_INDEX_PATH = Path(__file__).resolve().parent.parent / "data" / "carbon_index.json"

UNVERIFIED_CATEGORY = "unverified_category"
FALLBACK_SCOPE = 3


@lru_cache(maxsize=1)
def load_carbon_index() -> dict[str, Any]:
    """Load the carbon emission factor reference data."""
    with open(CARBON_INDEX_PATH, "r") as f:
        return json.load(f)


def category_taxonomy() -> list[str]:
    return list(load_carbon_index()["categories"])


def classify_by_hsn(hsn_code: Optional[str]) -> Optional[str]:
    """Match the 4-digit, then 2-digit HSN/SAC prefix."""
    if not hsn_code:
        return None
    prefixes = load_carbon_index()["hsn_prefixes"]
    code = hsn_code.strip()
    return prefixes.get(code[:4]) or prefixes.get(code[:2])


def classify_by_keyword(text: Optional[str]) -> Optional[str]:
    """First keyword (in index order) contained in the text wins."""
    if not text:
        return None
    lowered = text.lower()
    for keyword, category in load_carbon_index()["keywords"].items():
        if keyword in lowered:
            return category
    return None


def resolve_category(
    declared: Optional[str], hsn_code: Optional[str] = None, text: Optional[str] = None
) -> tuple[str, bool]:
    """
    Pick the category for one emission line.

    Returns ``(category, known)``. An unknown category is kept as
    declared (or ``"unclassified"``) so nothing is dropped.
    """
    categories = load_carbon_index()["categories"]
    if declared in categories:
        return declared, True
    for candidate in (classify_by_hsn(hsn_code), classify_by_keyword(text)):
        if candidate:
            return candidate, True
    return declared or "unclassified", False


def build_record(
    category: str,
    owner: Owner,
    quantity: Optional[float] = None,
    unit: Optional[str] = None,
    estimated_co2_kg: Optional[float] = None,
    document_id: Optional[str] = None,
    known: bool = True,
) -> EmissionRecord:
    """Apply the category's factor (or fall back to the estimate) and fix the sign."""
    entry = load_carbon_index()["categories"].get(category) if known else None

    if entry is None:
        scope, factor, source, green = FALLBACK_SCOPE, None, None, False
        default_unit = None
    else:
        scope, factor, source = entry["scope"], entry["factor"], entry["source"]
        green = entry.get("green", False)
        default_unit = entry["unit"]

    if quantity is not None and quantity > 0 and factor is not None:
        co2_kg = quantity * factor
        quality = "measured"
    elif estimated_co2_kg is not None:
        co2_kg = estimated_co2_kg
        quality = "estimated"
    else:
        co2_kg = 0.0
        quality = "missing_activity_data"
    if entry is None:
        quality = UNVERIFIED_CATEGORY

    co2_kg = -abs(co2_kg) if green else abs(co2_kg)

    return EmissionRecord(
        id=str(uuid.uuid4()),
        document_id=document_id,
        scope=scope,
        category=category,
        activity_data=quantity,
        activity_unit=unit or default_unit,
        emission_factor=factor,
        factor_source=source,
        co2_kg=round(co2_kg, 4),
        is_green_benefit=green,
        data_quality=quality,
        owner=owner,
    )


def _line_record(item: LineItem, owner: Owner, document_id: Optional[str]) -> EmissionRecord:
    category, known = resolve_category(item.category, item.hsn_code, item.description)
    return build_record(
        category, owner, quantity=item.quantity, unit=item.unit,
        document_id=document_id, known=known,
    )


def records_from_extraction(
    data: ExtractionData, owner: Owner, document_id: Optional[str] = None
) -> list[EmissionRecord]:
    """
    Convert one extraction result into emission records.

    One record per line item when the model returned line items, else a
    single record from the document-level fields. Unrecognised
    categories become scope-3 records marked ``unverified_category``.
    """
    if data.line_items:
        records = [_line_record(item, owner, document_id) for item in data.line_items]
        if data.estimated_co2_kg is not None and all(r.data_quality != "measured" for r in records):
            # Only the document-level estimate is usable; keep it on the first line.
            first = records[0]
            records[0] = build_record(
                first.category, owner, estimated_co2_kg=data.estimated_co2_kg,
                unit=first.activity_unit, document_id=document_id,
                known=first.data_quality != UNVERIFIED_CATEGORY,
            )
        return records

    text = " ".join(filter(None, [data.vendor, data.emission_category]))
    category, known = resolve_category(data.emission_category, text=text)
    return [
        build_record(
            category, owner,
            quantity=data.activity_quantity,
            unit=data.activity_unit,
            estimated_co2_kg=data.estimated_co2_kg,
            document_id=document_id,
            known=known,
        )
    ]


# ── Persistence ───────────────────────────────────────────
def insert_records(cur: Any, records: list[EmissionRecord]) -> None:
    """Write emission rows using an open transaction cursor."""
    for r in records:
        cur.execute(
            """
            INSERT INTO emissions
                (id, document_id, scope, category, activity_data, activity_unit,
                 emission_factor, factor_source, co2_kg, is_green_benefit,
                 data_quality, verified, session_id, user_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                r.id, r.document_id, r.scope, r.category, r.activity_data,
                r.activity_unit, r.emission_factor, r.factor_source, r.co2_kg,
                r.is_green_benefit, r.data_quality, False,
                r.owner.session_id, r.owner.user_id, r.created_at.isoformat(),
            ),
        )


def record_manual(
    category: str,
    owner: Owner,
    quantity: Optional[float] = None,
    unit: Optional[str] = None,
    co2_kg: Optional[float] = None,
) -> EmissionRecord:
    """Record an emission typed in by the user, without a source document."""
    category = category.strip().lower().replace(" ", "_")
    resolved, known = resolve_category(category, text=category)
    record = build_record(
        resolved, owner, quantity=quantity, unit=unit, estimated_co2_kg=co2_kg, known=known,
    )
    with transaction() as cur:
        insert_records(cur, [record])
    logger.info("Manual emission %s recorded: %s kg (%s)", record.id, record.co2_kg, record.category)
    return record


_SELECT_EMISSIONS = """
    SELECT e.*, d.confidence AS document_confidence,
           d.invoice_number AS document_invoice_number
    FROM emissions e
    LEFT JOIN documents d ON d.id = e.document_id
"""


def row_to_record(row: dict[str, Any]) -> EmissionRecord:
    owner = Owner(session_id=row.pop("session_id"), user_id=row.pop("user_id"))
    row["verified"] = bool(row.get("verified"))
    row["is_green_benefit"] = bool(row.get("is_green_benefit"))
    return EmissionRecord(owner=owner, **row)


def list_emissions(owner: Owner) -> list[EmissionRecord]:
    clause, param = owner.where("e")
    with transaction() as cur:
        cur.execute(f"{_SELECT_EMISSIONS} WHERE {clause} ORDER BY e.created_at DESC", (param,))
        rows = fetch_dicts(cur)
    return [row_to_record(row) for row in rows]


def load_records(cur: Any, emission_ids: list[str]) -> list[EmissionRecord]:
    """Fetch the given ids (any owner) in the requested order."""
    placeholders = ", ".join("?" for _ in emission_ids)
    cur.execute(f"{_SELECT_EMISSIONS} WHERE e.id IN ({placeholders})", tuple(emission_ids))
    by_id = {row["id"]: row_to_record(row) for row in fetch_dicts(cur)}
    return [by_id[i] for i in emission_ids if i in by_id]


def summarize(records: list[EmissionRecord]) -> dict[str, Any]:
    """Per-scope and per-category totals in kg CO2e."""
    summary: dict[str, Any] = {"scope1": 0.0, "scope2": 0.0, "scope3": 0.0, "byCategory": {}}
    for r in records:
        summary[f"scope{r.scope}"] += r.co2_kg
        summary["byCategory"][r.category] = summary["byCategory"].get(r.category, 0.0) + r.co2_kg
    summary["total"] = summary["scope1"] + summary["scope2"] + summary["scope3"]
    return summary


def reset_emissions(owner: Owner) -> int:
    """Delete every emission owned by this identity. Returns the row count."""
    clause, param = owner.where()
    with transaction() as cur:
        cur.execute(f"DELETE FROM emissions WHERE {clause}", (param,))
        deleted = cur.rowcount
    logger.info("Bulk reset removed %d emissions for %s", deleted, owner.column)
    return deleted
