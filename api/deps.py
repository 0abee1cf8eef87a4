"""
API Dependencies
================
Caller identity and injectable collaborators for the routes.

Authentication happens upstream: the gateway sets ``X-User-Id`` for a
signed-in account. Anonymous visitors send ``X-Session-Id``.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException

from agents.extraction_agent import ExtractionAdapter
from agents.llm import get_fallback_llm, get_llm
from agents.verification_agent import CarbonScorer, GeminiScorer
from db.models import Owner


def get_owner(
    x_user_id: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
) -> Owner:
    """The account wins when both identities are present."""
    if x_user_id:
        return Owner(user_id=x_user_id)
    if x_session_id:
        return Owner(session_id=x_session_id)
    raise HTTPException(status_code=401, detail="Session or authentication required")


def require_user(owner: Owner = Depends(get_owner)) -> str:
    if owner.user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return owner.user_id


def get_extraction_adapter() -> ExtractionAdapter:
    return ExtractionAdapter(get_llm(), get_fallback_llm())


def get_scorer() -> CarbonScorer:
    return GeminiScorer(get_llm())
