"""
Pytest configuration and fixtures for the carbon MRV pipeline tests.

Every test that touches the database runs against a throwaway SQLite
file: ``db.snowflake_client.get_connection`` is patched to open it, and
all SQL in the services is portable qmark DB-API SQL.
"""

import json
import sqlite3
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessage

from agents.extraction_agent import ExtractionAdapter
from agents.verification_agent import GeminiScorer
from api.deps import get_extraction_adapter, get_scorer
from db import snowflake_client
from db.models import Owner
from main import app


@pytest.fixture
def database(tmp_path, monkeypatch):
    """Fresh schema in a temporary SQLite file; returns the file path."""
    path = tmp_path / "carbon_test.db"
    monkeypatch.setattr(snowflake_client, "get_connection", lambda: sqlite3.connect(path))
    snowflake_client.init_tables()
    return path


@pytest.fixture
def query(database):
    """Run a read-only query against the test database."""

    def run(sql: str, params: tuple = ()) -> list[tuple]:
        conn = sqlite3.connect(database)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    return run


@pytest.fixture
def session_owner() -> Owner:
    return Owner(session_id="sess-anon-1")


@pytest.fixture
def user_owner() -> Owner:
    return Owner(user_id="user-42")


# ── Model stand-ins ───────────────────────────────────────
def _invoice(**overrides: Any) -> str:
    payload = {
        "documentType": "invoice",
        "vendor": "Indian Oil Corporation",
        "date": "2025-01-10",
        "invoiceNumber": "IOC-2025-0001",
        "amount": 9450.0,
        "currency": "INR",
        "emissionCategory": "diesel",
        "activityQuantity": 100,
        "activityUnit": "litre",
        "estimatedCO2Kg": None,
        "lineItems": [],
        "confidence": 92,
        "validationFlags": [],
    }
    payload.update(overrides)
    return json.dumps(payload)


@pytest.fixture
def invoice_json():
    """Build a model reply for a diesel invoice; keyword args override fields."""
    return _invoice


@pytest.fixture
def mock_llm():
    """Chat model whose ``ainvoke`` is an AsyncMock, so calls can be counted."""

    def build(*replies: str, error: Optional[Exception] = None) -> MagicMock:
        llm = MagicMock()
        if error is not None:
            llm.ainvoke = AsyncMock(side_effect=error)
        else:
            llm.ainvoke = AsyncMock(side_effect=[AIMessage(content=r) for r in replies])
        return llm

    return build


@pytest.fixture
def make_adapter():
    def build(*replies: str, fallback: Optional[list[str]] = None) -> ExtractionAdapter:
        fallback_llm = FakeListChatModel(responses=fallback) if fallback else None
        return ExtractionAdapter(FakeListChatModel(responses=list(replies)), fallback_llm)

    return build


@pytest.fixture
def score_json():
    def build(
        score: float = 0.92,
        risk: str = "low",
        ccts: bool = True,
        cbam: bool = False,
        flags: Optional[list[str]] = None,
        blocking: Optional[list[str]] = None,
    ) -> str:
        return json.dumps(
            {
                "score": score,
                "greenwashingRisk": risk,
                "cctsEligible": ccts,
                "cbamCompliant": cbam,
                "dataQuality": "Complete activity data with standard factors",
                "methodologyCompliance": "GHG Protocol scopes applied",
                "recommendations": ["Keep meter readings with fuel invoices"],
                "flags": flags or [],
                "blockingFlags": blocking or [],
            }
        )

    return build


@pytest.fixture
def make_scorer():
    def build(*replies: str) -> GeminiScorer:
        return GeminiScorer(FakeListChatModel(responses=list(replies)))

    return build


# ── API client ────────────────────────────────────────────
@pytest.fixture
def client(database, make_adapter, make_scorer, score_json):
    """
    TestClient with the model-backed dependencies replaced, so no Gemini key
    is needed. Tests install their own replies through ``use_adapter`` and
    ``use_scorer``.
    """
    app.dependency_overrides[get_extraction_adapter] = lambda: make_adapter(_invoice())
    app.dependency_overrides[get_scorer] = lambda: make_scorer(score_json())
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def use_adapter():
    def install(adapter: ExtractionAdapter) -> None:
        app.dependency_overrides[get_extraction_adapter] = lambda: adapter

    return install


@pytest.fixture
def use_scorer():
    def install(scorer: GeminiScorer) -> None:
        app.dependency_overrides[get_scorer] = lambda: scorer

    return install
