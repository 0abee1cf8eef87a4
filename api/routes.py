"""
API Routes
==========
FastAPI router exposing the document-to-verified-emission pipeline:
extraction (single and bulk), emissions, verification, monetization
and session merge.
"""

import base64
import binascii
import mimetypes

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from agents.extraction_agent import ExtractionAdapter
from agents.orchestrator import run_pipeline
from agents.verification_agent import CarbonScorer
from api.deps import get_extraction_adapter, get_owner, get_scorer, require_user
from config.settings import settings
from db.models import Owner
from schemas.api_schemas import (
    AdvancePathwayRequest,
    BulkUploadResponse,
    EmissionOut,
    EmissionsResponse,
    ExtractRequest,
    ExtractResponse,
    FileResult,
    ManualEmissionRequest,
    MergeRequest,
    MergeCounts,
    MergeResponse,
    MonetizationRequest,
    MonetizationResponse,
    PathwayOut,
    ResetResponse,
    SessionCreateRequest,
    SessionCreateResponse,
    VerifyRequest,
    VerifyResponse,
)
from services import (
    document_service,
    emission_recorder,
    monetization_service,
    session_service,
    verification_service,
)
from services.exceptions import (
    DuplicateBlocked,
    ExtractionParseError,
    OwnershipMismatch,
    ServiceUnavailable,
)
from utils.helpers import get_logger

logger = get_logger("api")

router = APIRouter()


def _too_large(size: int) -> bool:
    return size > settings.MAX_UPLOAD_MB * 1024 * 1024


async def _extract_one(
    adapter: ExtractionAdapter, document_bytes: bytes, mime_type: str, owner: Owner
) -> ExtractResponse:
    """Run the pipeline, turning a duplicate block into a normal response."""
    try:
        state = await run_pipeline(adapter, document_bytes, mime_type, owner)
    except DuplicateBlocked as exc:
        return ExtractResponse(
            success=False,
            is_duplicate=True,
            document_hash=exc.document_hash,
            document_id=exc.existing_document_id,
            error=exc.message,
        )
    return ExtractResponse(
        success=True,
        cached=state["cached"],
        document_hash=state["document_hash"],
        data=state["data"],
        document_id=state.get("document_id"),
        emission_ids=state.get("emission_ids", []),
    )


# ── Extraction ────────────────────────────────────────────
@router.post("/extract", response_model=ExtractResponse)
async def extract_document(
    body: ExtractRequest,
    owner: Owner = Depends(get_owner),
    adapter: ExtractionAdapter = Depends(get_extraction_adapter),
):
    """Extract one base64-encoded document (or serve it from the fingerprint cache)."""
    try:
        document_bytes = base64.b64decode(body.document_bytes, validate=True)
    except binascii.Error:
        raise HTTPException(status_code=400, detail="documentBytes is not valid base64")
    if not document_bytes:
        raise HTTPException(status_code=400, detail="No document data provided")
    if _too_large(len(document_bytes)):
        raise HTTPException(status_code=413, detail="Document too large")
    return await _extract_one(adapter, document_bytes, body.mime_type, owner)


@router.post("/upload", response_model=BulkUploadResponse)
async def upload_documents(
    files: list[UploadFile] = File(...),
    owner: Owner = Depends(get_owner),
    adapter: ExtractionAdapter = Depends(get_extraction_adapter),
):
    """
    Process several files strictly one after another, so a repeated file
    in the same batch is served from the first one's cache entry.
    """
    response = BulkUploadResponse(files=[])

    for f in files:
        filename = f.filename or "unnamed"
        mime_type = f.content_type or mimetypes.guess_type(filename)[0] or "image/jpeg"
        contents = await f.read()

        if _too_large(len(contents)):
            result = FileResult(filename=filename, status="error", message="File too large")
        else:
            try:
                outcome = await _extract_one(adapter, contents, mime_type, owner)
            except (ServiceUnavailable, ExtractionParseError) as exc:
                result = FileResult(filename=filename, status="error", message=exc.message)
            else:
                if outcome.is_duplicate:
                    result = FileResult(
                        filename=filename,
                        status="duplicate",
                        message="Already processed",
                        document_hash=outcome.document_hash,
                    )
                else:
                    result = FileResult(
                        filename=filename,
                        status="success",
                        message="Cached result" if outcome.cached else "Processed",
                        document_hash=outcome.document_hash,
                        data=outcome.data,
                        emission_ids=outcome.emission_ids,
                    )

        if result.status == "success":
            response.processed += 1
        elif result.status == "duplicate":
            response.duplicates += 1
        else:
            response.errors += 1
        response.files.append(result)

    logger.info(
        "Bulk upload: %d processed, %d duplicates, %d errors",
        response.processed, response.duplicates, response.errors,
    )
    return response


# ── Documents ─────────────────────────────────────────────
@router.get("/documents")
def list_documents(owner: Owner = Depends(get_owner)):
    """Documents recorded for the caller, newest first."""
    return {"documents": document_service.list_documents(owner)}


# ── Emissions ─────────────────────────────────────────────
@router.get("/emissions", response_model=EmissionsResponse)
def list_emissions(owner: Owner = Depends(get_owner)):
    records = emission_recorder.list_emissions(owner)
    return EmissionsResponse(
        emissions=[EmissionOut.from_record(r) for r in records],
        summary=emission_recorder.summarize(records),
    )


@router.post("/emissions", response_model=EmissionOut, status_code=201)
def add_manual_emission(body: ManualEmissionRequest, owner: Owner = Depends(get_owner)):
    record = emission_recorder.record_manual(
        body.category, owner, quantity=body.quantity, unit=body.unit, co2_kg=body.co2_kg
    )
    return EmissionOut.from_record(record)


@router.delete("/emissions", response_model=ResetResponse)
def reset_emissions(owner: Owner = Depends(get_owner)):
    """Bulk reset: delete every emission of the caller."""
    return ResetResponse(deleted=emission_recorder.reset_emissions(owner))


# ── Verification ──────────────────────────────────────────
@router.post("/verify", response_model=VerifyResponse)
async def verify_emissions(
    body: VerifyRequest,
    owner: Owner = Depends(get_owner),
    scorer: CarbonScorer = Depends(get_scorer),
):
    if (body.user_id and body.user_id != owner.user_id) or (
        body.session_id and body.session_id != owner.session_id
    ):
        raise OwnershipMismatch("Request identity does not match the caller")
    batch = await verification_service.verify_batch(body.emission_ids, owner, scorer)
    return VerifyResponse.from_batch(batch)


@router.get("/verifications/{verification_id}", response_model=VerifyResponse)
def get_verification(verification_id: str, owner: Owner = Depends(get_owner)):
    return VerifyResponse.from_batch(verification_service.get_verification(verification_id, owner))


# ── Monetization ──────────────────────────────────────────
@router.post("/monetization", response_model=MonetizationResponse)
def calculate_monetization(body: MonetizationRequest, owner: Owner = Depends(get_owner)):
    batch, pathways = monetization_service.calculate_monetization(body.verification_id, owner)
    return MonetizationResponse(
        pathways=[PathwayOut.from_pathway(p) for p in pathways],
        total_potential_value=sum(p.estimated_value for p in pathways),
        currency=settings.MONETIZATION_CURRENCY,
        verification_score=batch.score,
        co2_tons=batch.total_co2_kg / 1000,
    )


@router.post("/pathways/{pathway_id}/advance", response_model=PathwayOut)
def advance_pathway(
    pathway_id: str, body: AdvancePathwayRequest, owner: Owner = Depends(get_owner)
):
    """Apply for a pathway or move it further along; status only moves forward."""
    return PathwayOut.from_pathway(
        monetization_service.advance_pathway(pathway_id, body.status, owner)
    )


# ── Sessions ──────────────────────────────────────────────
@router.post("/sessions", response_model=SessionCreateResponse, status_code=201)
def create_session(body: SessionCreateRequest):
    session = session_service.create_session(body.device_fingerprint)
    return SessionCreateResponse(session_id=session.id)


@router.post("/sessions/merge", response_model=MergeResponse)
def merge_session(body: MergeRequest, request: Request, user_id: str = Depends(require_user)):
    """Move an anonymous session's records to the signed-in account."""
    client = {
        "ip_address": request.headers.get("x-forwarded-for")
        or (request.client.host if request.client else None),
        "user_agent": request.headers.get("user-agent"),
    }
    merged = session_service.merge_session(body.session_id, body.device_fingerprint, user_id, client)
    return MergeResponse(merged=MergeCounts(**merged))
