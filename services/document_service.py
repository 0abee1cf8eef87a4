"""
Document Service
================
Stores extracted documents and performs the single write of an upload:
fingerprint entry, document row and emission rows in one transaction.
"""

import uuid
from typing import Any, Optional

from db.models import Document, EmissionRecord, Owner
from db.snowflake_client import fetch_dicts, fetch_one_dict, transaction
from schemas.extraction import ExtractionData
from services import emission_recorder, fingerprint_store
from utils.helpers import get_logger, to_json

logger = get_logger("document_service")


def find_duplicate(owner: Owner, data: ExtractionData) -> Optional[str]:
    """
    Id of an existing document of this owner with the same invoice number,
    vendor and amount. All three must be present to compare.
    """
    if not (data.invoice_number and data.vendor and data.amount is not None):
        return None
    clause, param = owner.where()
    with transaction() as cur:
        cur.execute(
            f"""
            SELECT id FROM documents
            WHERE {clause} AND invoice_number = ? AND vendor = ? AND amount = ?
            LIMIT 1
            """,
            (param, data.invoice_number.strip(), data.vendor.strip(), data.amount),
        )
        row = fetch_one_dict(cur)
    return row["id"] if row else None


def _insert_document(cur: Any, doc: Document, data: ExtractionData) -> None:
    cur.execute(
        """
        INSERT INTO documents
            (id, document_hash, mime_type, document_type, vendor, invoice_number,
             invoice_date, amount, currency, confidence, raw_extraction,
             session_id, user_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            doc.id, doc.document_hash, doc.mime_type, doc.document_type, doc.vendor,
            doc.invoice_number, doc.invoice_date, doc.amount, doc.currency, doc.confidence,
            to_json(data.model_dump(by_alias=True)),
            doc.owner.session_id, doc.owner.user_id, doc.created_at.isoformat(),
        ),
    )


def persist_upload(
    document_hash: str, mime_type: str, data: ExtractionData, owner: Owner
) -> tuple[Document, list[EmissionRecord]]:
    """
    Write the cache entry, the document and its emissions atomically.

    Nothing is visible to other requests until the commit, so an upload
    that is cancelled or fails before this point leaves no trace.
    """
    doc = Document(
        id=str(uuid.uuid4()),
        document_hash=document_hash,
        mime_type=mime_type,
        document_type=data.document_type,
        vendor=data.vendor.strip() if data.vendor else None,
        invoice_number=data.invoice_number.strip() if data.invoice_number else None,
        invoice_date=data.date,
        amount=data.amount,
        currency=data.currency,
        confidence=data.confidence,
        owner=owner,
    )
    records = emission_recorder.records_from_extraction(data, owner, document_id=doc.id)

    with transaction() as cur:
        fingerprint_store.store(document_hash, data, cur=cur)
        _insert_document(cur, doc, data)
        emission_recorder.insert_records(cur, records)

    logger.info(
        "Document %s stored (%s, %d emissions, %.2f kg CO2e)",
        doc.id, doc.document_type, len(records), sum(r.co2_kg for r in records),
    )
    return doc, records


def list_documents(owner: Owner) -> list[dict[str, Any]]:
    clause, param = owner.where()
    with transaction() as cur:
        cur.execute(
            f"""
            SELECT id, document_hash, document_type, vendor, invoice_number,
                   invoice_date, amount, currency, confidence, created_at
            FROM documents WHERE {clause} ORDER BY created_at DESC
            """,
            (param,),
        )
        return fetch_dicts(cur)
