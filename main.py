"""
Carbon MRV Backend — Entry Point
================================
FastAPI application that turns uploaded invoices into deduplicated,
AI-verified, monetization-ready carbon records:

  fingerprint → Gemini extraction → emission records → verification → monetization
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import router as api_router
from db.snowflake_client import init_tables
from services.exceptions import PipelineError
from utils.helpers import get_logger

logger = get_logger("main")


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Map the pipeline error taxonomy onto HTTP status codes."""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "type": type(exc).__name__},
    )


def create_app() -> FastAPI:
    """Application factory."""
    app = FastAPI(
        title="Carbon MRV Pipeline",
        description="Invoice-to-verified-emission pipeline with monetization pathways",
        version="0.1.0",
    )

    # ── CORS (allow frontend origin) ──────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Errors ────────────────────────────────────────────
    app.add_exception_handler(PipelineError, pipeline_error_handler)

    # ── Register routers ──────────────────────────────────
    app.include_router(api_router, prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # ── Startup events ────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        """Initialize database tables on first run."""
        init_tables()

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
