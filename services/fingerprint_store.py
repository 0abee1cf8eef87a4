"""
Fingerprint Store
=================
Content-hash cache of extraction results. The key is a SHA-256 over the
raw document bytes only, so identical re-uploads hit the cache whatever
their filename, MIME type or owning session.

There is no lock: two concurrent misses for one hash may both call the
model, and the later ``store`` wins.
"""

import hashlib
from typing import Any, Optional

from pydantic import BaseModel

from db.snowflake_client import fetch_one_dict, transaction
from schemas.extraction import ExtractionData
from utils.helpers import from_json, get_logger, to_json, utc_now

logger = get_logger("fingerprint_store")


class CachedResult(BaseModel):
    document_hash: str
    data: ExtractionData


def compute_hash(document_bytes: bytes) -> str:
    return hashlib.sha256(document_bytes).hexdigest()


def lookup(document_hash: str) -> Optional[CachedResult]:
    """Return the cached extraction for this hash, or ``None`` on a miss."""
    with transaction() as cur:
        cur.execute(
            "SELECT result FROM document_fingerprints WHERE document_hash = ?",
            (document_hash,),
        )
        row = fetch_one_dict(cur)
    if row is None:
        return None
    logger.debug("Fingerprint hit %s", document_hash[:12])
    return CachedResult(
        document_hash=document_hash,
        data=ExtractionData.model_validate(from_json(row["result"])),
    )


def store(document_hash: str, data: ExtractionData, cur: Any = None) -> None:
    """
    Last-write-wins put.

    Pass ``cur`` to join a caller's transaction (the upload pipeline does,
    so the cache entry commits together with the document rows).
    """
    if cur is None:
        with transaction() as own_cur:
            _put(own_cur, document_hash, data)
        return
    _put(cur, document_hash, data)


def _put(cur: Any, document_hash: str, data: ExtractionData) -> None:
    cur.execute("DELETE FROM document_fingerprints WHERE document_hash = ?", (document_hash,))
    cur.execute(
        "INSERT INTO document_fingerprints (document_hash, result, created_at) VALUES (?, ?, ?)",
        (document_hash, to_json(data.model_dump(by_alias=True)), utc_now().isoformat()),
    )
