"""
Session Service
===============
Anonymous sessions and the session → account ownership merge.

The merge is the only operation that moves rows from session ownership
to account ownership. It rewrites every owned table in one transaction;
if any table fails, nothing is merged.
"""

import uuid
from typing import Any, Optional

from db.models import Session
from db.snowflake_client import fetch_one_dict, transaction
from services.exceptions import MergeIncomplete, OwnershipMismatch, SessionNotFound
from utils.helpers import get_logger, to_json, utc_now

logger = get_logger("session")

# Table name → key in the merge summary.
OWNED_TABLES = {
    "documents": "documents",
    "emissions": "emissions",
    "carbon_verifications": "verifications",
    "monetization_pathways": "pathways",
}


def create_session(device_fingerprint: str) -> Session:
    session = Session(id=str(uuid.uuid4()), device_fingerprint=device_fingerprint)
    with transaction() as cur:
        cur.execute(
            "INSERT INTO sessions (id, device_fingerprint, created_at) VALUES (?, ?, ?)",
            (session.id, session.device_fingerprint, session.created_at.isoformat()),
        )
    return session


def get_session(session_id: str) -> Optional[Session]:
    with transaction() as cur:
        cur.execute("SELECT id, device_fingerprint, created_at FROM sessions WHERE id = ?", (session_id,))
        row = fetch_one_dict(cur)
    return Session(**row) if row else None


def _audit(
    cur: Any,
    event_type: str,
    user_id: str,
    session_id: str,
    client: dict[str, Optional[str]],
    details: dict[str, Any],
) -> None:
    cur.execute(
        """
        INSERT INTO security_audit_log
            (id, event_type, user_id, session_id, ip_address, user_agent, details, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            str(uuid.uuid4()), event_type, user_id, session_id,
            client.get("ip_address"), client.get("user_agent"),
            to_json(details), utc_now().isoformat(),
        ),
    )


def _truncate(fingerprint: Optional[str]) -> str:
    return (fingerprint or "")[:50] + "..."


def merge_session(
    session_id: str,
    device_fingerprint: str,
    user_id: str,
    client: Optional[dict[str, Optional[str]]] = None,
) -> dict[str, int]:
    """
    Reassign everything the session owns to ``user_id``.

    Raises ``SessionNotFound`` for an unknown session and
    ``OwnershipMismatch`` (after writing an audit event) when the device
    fingerprint differs from the one the session was created with.
    Returns per-table counts of rewritten rows.
    """
    client = client or {}
    session = get_session(session_id)
    if session is None:
        raise SessionNotFound("Session not found")

    if session.device_fingerprint != device_fingerprint:
        logger.warning(
            "Session merge refused: fingerprint mismatch for session %s (user %s)",
            session_id, user_id,
        )
        with transaction() as cur:
            _audit(
                cur, "SESSION_MERGE_FINGERPRINT_MISMATCH", user_id, session_id, client,
                {
                    "expected_fingerprint": _truncate(session.device_fingerprint),
                    "provided_fingerprint": _truncate(device_fingerprint),
                },
            )
        raise OwnershipMismatch("Session ownership verification failed")

    merged: dict[str, int] = {}
    table = None
    try:
        with transaction() as cur:
            for table, key in OWNED_TABLES.items():
                cur.execute(
                    f"UPDATE {table} SET user_id = ?, session_id = NULL WHERE session_id = ?",
                    (user_id, session_id),
                )
                merged[key] = max(cur.rowcount, 0)
            table = "security_audit_log"
            _audit(cur, "SESSION_MERGE_SUCCESS", user_id, session_id, client, {"merged_counts": merged})
    except Exception as exc:
        logger.error("Session merge %s rolled back at table %s: %s", session_id, table, exc)
        raise MergeIncomplete(
            f"Session merge failed at {table}; no records were moved", table=table
        ) from exc

    logger.info("Session %s merged into user %s: %s", session_id, user_id, merged)
    return merged
