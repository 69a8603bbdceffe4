"""
Main FastAPI application for the Folio backend.
Handles CORS, request logging middleware, lifespan events, error mapping and
router registration.
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from folio.config import settings
from folio.database import AsyncSessionLocal, close_db, init_db
from folio.errors import register_exception_handlers
from folio.routers import admin, annotations, documents, health
from folio.services.container import build_services

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Folio backend …")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await init_db()
    logger.info("✓ Database connection OK")

    # 2. Services
    services = build_services(settings, AsyncSessionLocal)
    app.state.services = services
    logger.info("✓ Object storage backend: %s", settings.STORAGE_BACKEND)

    recovered = await services.processor.recover_interrupted()
    if recovered:
        logger.info("✓ Recovered %d interrupted documents", recovered)

    # 3. Language model (optional; annotation fails per artifact while it is down)
    if await services.annotator.check_health():
        logger.info("✓ LLM reachable at %s (model %s)", settings.LLM_BASE_URL, settings.LLM_MODEL)
    else:
        logger.warning(
            "⚠ LLM at %s is not reachable; AI annotation will fail until it is up",
            settings.LLM_BASE_URL,
        )

    logger.info("=" * 60)
    logger.info("  Folio backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down Folio backend …")
    await services.tasks.shutdown()
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Folio API",
    description=(
        "**Folio** - document ingestion and AI annotation.\n\n"
        "Upload files, let the backend extract their text, and read the "
        "summaries, concepts, exercises and mind maps generated from it.\n\n"
        "Key endpoints:\n"
        "- `POST /api/documents` - upload a document\n"
        "- `GET  /api/documents/{id}` - poll processing status\n"
        "- `GET  /api/documents/{id}/extractedText` - normalized text\n"
        "- `GET  /api/documents/{id}/ai/summary` - AI summary\n"
        "- `POST /api/documents/{id}/ai/mindmap` - generate a mind map\n"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count", "X-Process-Time"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling
    if request.url.path not in ("/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,       prefix="/api/health", tags=["Health"])
app.include_router(documents.router,    prefix="/api",        tags=["Documents"])
app.include_router(annotations.router,  prefix="/api",        tags=["AI"])
app.include_router(admin.router,        prefix="/api",        tags=["Admin"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root - returns basic service info."""
    return {
        "name": "Folio API",
        "version": "1.0.0",
        "description": "Document ingestion and AI annotation backend",
        "docs": "/docs",
        "health": "/api/health/",
        "endpoints": {
            "documents": "/api/documents",
            "stats": "/api/documents/stats",
            "admin": "/api/admin/documents/{id}",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "folio.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
