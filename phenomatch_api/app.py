"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
hybrid phenotype matcher.

The application provides:
- POST /analyze-hybrid for hybrid image analysis
- REST endpoints for stored reports and reference phenotypes
- Health check endpoint

Usage:
    # From project root:
    uvicorn phenomatch_api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m phenomatch_api.app
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from phenomatch.config import get_pipeline_settings, get_server_config
from phenomatch.errors import PipelineError
from phenomatch.pipeline import build_pipeline
from phenomatch.reference_store import get_reference_store
from phenomatch_api.routes.analysis import router as analysis_router
from phenomatch_api.routes.phenotypes import router as phenotypes_router
from phenomatch_api.routes.reports import router as reports_router
from phenomatch_api.schemas import HealthResponse


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# HTTP status for each fatal pipeline error code
ERROR_STATUS = {
    "embedding_failed": 502,
    "service_unavailable": 503,
    "datastore_unavailable": 503,
    "no_candidates": 422,
    "no_resolvable_matches": 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Open the reference store and snapshot the corpus index
    - Create the shared HTTP client and the analysis pipeline

    Runs on shutdown:
    - Close the HTTP client and the store
    """
    logger.info("=" * 60)
    logger.info("Starting Hybrid Phenotype Matching API")
    logger.info("=" * 60)

    settings = get_pipeline_settings()

    logger.info("Initializing reference store...")
    store = get_reference_store()
    stats = store.get_stats()
    logger.info(f"Reference store ready: {stats['total_phenotypes']} phenotypes")
    if stats["total_phenotypes"] == 0:
        logger.warning("Reference corpus is empty - run scripts/seed_reference_corpus.py")

    http_client = httpx.AsyncClient()
    app.state.http_client = http_client
    app.state.pipeline = build_pipeline(http_client, store, settings)
    logger.info(
        f"Optional signal deadline: {settings['pipeline']['optional_signal_timeout_sec']}s"
    )

    logger.info("API startup complete!")
    logger.info("=" * 60)

    yield

    # Cleanup on shutdown
    logger.info("Shutting down API...")
    await http_client.aclose()
    store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Hybrid Phenotype Matching API",
    description="""
API for matching a face image against a reference corpus of phenotypes.

## Features
- **Hybrid analysis**: embedding similarity, anthropometric measurements and
  vision-classifier metadata fused into one ranked result
- **Reports**: stored primary/secondary phenotypes with narrative
- **Phenotypes**: read-only listing of the reference corpus

Optional signals degrade gracefully; `signals_used` and `degraded` report
which signals contributed.
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins (adjust for production)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(analysis_router)
app.include_router(reports_router)
app.include_router(phenotypes_router)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """JSON error body with a machine-readable code for fatal pipeline errors."""
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, 500),
        content={"error": str(exc), "code": exc.code},
    )


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check(request: Request):
    """
    Check the health of the API and its dependencies.

    Returns status of:
    - Reference store (readable / not readable)
    - Embedding service (healthy / not healthy)
    - Vision classifier (configured / not configured)
    - Number of reference phenotypes
    """
    store = get_reference_store()
    datastore_available = store.check_health()
    phenotypes = store.get_stats()["total_phenotypes"] if datastore_available else 0

    pipeline = getattr(request.app.state, "pipeline", None)
    embedding_available = False
    vision_enabled = False
    if pipeline is not None:
        embedding_available = await pipeline.embedding_provider.check_health()
        vision_enabled = pipeline.vision_enabled

    # Determine overall status
    if datastore_available and embedding_available:
        status = "healthy"
    elif datastore_available:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        datastore_available=datastore_available,
        embedding_service_available=embedding_available,
        vision_enabled=vision_enabled,
        phenotypes=phenotypes,
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Hybrid Phenotype Matching API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    server = get_server_config()

    logger.info(f"Starting server on {server['host']}:{server['port']}")
    uvicorn.run(
        "phenomatch_api.app:app",
        host=server["host"],
        port=server["port"],
        reload=True,
        log_level="info",
    )
