"""
Gemini Clients
==============
Lazily constructed chat models shared by the extraction and
verification agents.
"""

from functools import lru_cache
from typing import Optional

from langchain_google_genai import ChatGoogleGenerativeAI

from config.settings import settings


@lru_cache(maxsize=None)
def get_llm(model: Optional[str] = None) -> ChatGoogleGenerativeAI:
    """Return the (cached) Gemini chat model for ``model`` or the configured default."""
    return ChatGoogleGenerativeAI(
        model=model or settings.GEMINI_MODEL,
        google_api_key=settings.GEMINI_API_KEY,
        temperature=settings.GEMINI_TEMPERATURE,
    )


def get_fallback_llm() -> Optional[ChatGoogleGenerativeAI]:
    if not settings.GEMINI_FALLBACK_MODEL:
        return None
    return get_llm(settings.GEMINI_FALLBACK_MODEL)
