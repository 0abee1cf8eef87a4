"""
Orchestrator — LangGraph Upload Pipeline
========================================
A LangGraph StateGraph that takes one uploaded document through:

  Fingerprint → (cache hit → END) → Extract → Duplicate check → Record → END

Pipeline errors are kept in state so later nodes short-circuit, and are
re-raised once the graph finishes.
"""

from __future__ import annotations

from typing import Any, Optional, TypedDict

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from agents.extraction_agent import ExtractionAdapter
from db.models import Owner
from schemas.extraction import ExtractionData
from services import document_service, fingerprint_store
from services.exceptions import DuplicateBlocked, PipelineError
from utils.helpers import get_logger

logger = get_logger("orchestrator")


# ── Pipeline State ────────────────────────────────────────
class UploadState(TypedDict, total=False):
    """Shared state passed between nodes in the LangGraph."""

    document_bytes: bytes
    mime_type: str
    owner: Owner
    document_hash: str
    data: ExtractionData
    cached: bool
    document_id: str
    emission_ids: list[str]
    error: Optional[PipelineError]


# ── Node Functions ────────────────────────────────────────
def fingerprint_node(state: UploadState) -> UploadState:
    """Hash the raw bytes and serve a cached extraction when there is one."""
    document_hash = fingerprint_store.compute_hash(state["document_bytes"])
    hit = fingerprint_store.lookup(document_hash)
    if hit is not None:
        logger.info("Cache hit for %s, skipping extraction", document_hash[:12])
        return {**state, "document_hash": document_hash, "data": hit.data, "cached": True}
    return {**state, "document_hash": document_hash, "cached": False}


async def extract_node(state: UploadState, config: RunnableConfig) -> UploadState:
    """Ask the completion service for the document's fields."""
    adapter: ExtractionAdapter = config["configurable"]["adapter"]
    try:
        data = await adapter.extract(state["document_bytes"], state["mime_type"])
        return {**state, "data": data}
    except PipelineError as exc:
        return {**state, "error": exc}


def duplicate_node(state: UploadState) -> UploadState:
    """Block a second copy of an already-recorded invoice for this owner."""
    existing = document_service.find_duplicate(state["owner"], state["data"])
    if existing is None:
        return state
    logger.info("Invoice %s already recorded as %s", state["data"].invoice_number, existing)
    return {
        **state,
        "error": DuplicateBlocked(
            "Already processed",
            document_hash=state["document_hash"],
            existing_document_id=existing,
        ),
    }


def record_node(state: UploadState) -> UploadState:
    """Write cache entry, document and emissions in one transaction."""
    try:
        doc, records = document_service.persist_upload(
            state["document_hash"], state["mime_type"], state["data"], state["owner"]
        )
    except PipelineError as exc:
        return {**state, "error": exc}
    return {**state, "document_id": doc.id, "emission_ids": [r.id for r in records]}


def _after_fingerprint(state: UploadState) -> str:
    return END if state.get("cached") else "extract"


def _continue_unless_error(next_node: str):
    def route(state: UploadState) -> str:
        return END if state.get("error") else next_node
    return route


# ── Build the Graph ───────────────────────────────────────
def build_pipeline() -> Any:
    """Construct and compile the upload pipeline graph."""
    graph = StateGraph(UploadState)

    graph.add_node("fingerprint", fingerprint_node)
    graph.add_node("extract", extract_node)
    graph.add_node("duplicate", duplicate_node)
    graph.add_node("record", record_node)

    graph.set_entry_point("fingerprint")
    graph.add_conditional_edges("fingerprint", _after_fingerprint, ["extract", END])
    graph.add_conditional_edges("extract", _continue_unless_error("duplicate"), ["duplicate", END])
    graph.add_conditional_edges("duplicate", _continue_unless_error("record"), ["record", END])
    graph.add_edge("record", END)

    return graph.compile()


# Pre-compiled pipeline instance
pipeline = build_pipeline()


async def run_pipeline(
    adapter: ExtractionAdapter, document_bytes: bytes, mime_type: str, owner: Owner
) -> UploadState:
    """
    Execute the upload pipeline for one document.

    Raises the pipeline error recorded in state, if any.
    """
    initial_state: UploadState = {
        "document_bytes": document_bytes,
        "mime_type": mime_type,
        "owner": owner,
    }
    result = await pipeline.ainvoke(initial_state, config={"configurable": {"adapter": adapter}})
    if result.get("error") is not None:
        raise result["error"]
    return result
