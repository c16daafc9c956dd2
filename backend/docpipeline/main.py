"""
FastAPI Application — Entry Point

Document Processing Pipeline API

Architecture:
  - All routes are versioned under /api/v1/
  - Collaborators (blob store, record store, processor, progress store,
    estimator) are built once in create_app() and held on app.state
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. Request ID + request logging — X-Request-ID header on every response
  2. CORS — restrict to configured origins outside development
  3. Gzip — compress responses > 1 KB
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from docpipeline.api.v1.documents import router as documents_router
from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.schemas.documents import ErrorDetail, ErrorResponse
from docpipeline.services.processing import DocumentProcessor
from docpipeline.services.progress import ProgressStore
from docpipeline.services.status import ProgressEstimator
from docpipeline.storage.base import BlobStore, RecordStore
from docpipeline.storage.factory import get_blob_store, get_record_store

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if default_settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


# ---------------------------------------------------------------------------
# Application lifespan — startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: Settings = app.state.settings
    logger.info(
        "Starting Document Pipeline | env=%s blob_store=%s max_file_size=%d max_tokens=%d",
        cfg.app_env, cfg.blob_store_backend, cfg.max_file_size, cfg.max_tokens,
    )
    if cfg.blob_store_backend.lower() == "s3":
        logger.info("S3 bucket: %s prefix: %s", cfg.s3_bucket, cfg.s3_prefix)

    yield

    logger.info(
        "Shutting down Document Pipeline | tracked_progress=%d", len(app.state.progress_store),
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings:       Settings | None = None,
    *,
    blob_store:     BlobStore | None = None,
    record_store:   RecordStore | None = None,
    processor:      DocumentProcessor | None = None,
    progress_store: ProgressStore | None = None,
) -> FastAPI:
    cfg = settings or default_settings

    app = FastAPI(
        title="Document Processing Pipeline",
        description=(
            "Validates uploaded documents, extracts their text and splits it into "
            "token-bounded semantic chunks ready for downstream analysis."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not cfg.is_production else None,
        redoc_url="/api/redoc" if not cfg.is_production else None,
        openapi_url="/api/openapi.json" if not cfg.is_production else None,
        lifespan=lifespan,
    )

    app.state.settings       = cfg
    app.state.blob_store     = blob_store or get_blob_store(cfg)
    app.state.record_store   = record_store or get_record_store(cfg)
    app.state.processor      = processor or DocumentProcessor.from_settings(cfg)
    app.state.progress_store = progress_store or ProgressStore(cfg.progress_store_max_entries)
    app.state.estimator      = ProgressEstimator()

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    allowed_origins = ["*"] if cfg.app_env == "development" else cfg.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-Document-ID", "Location"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method, request.url.path, response.status_code, duration_ms, request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=getattr(request.state, "request_id", None),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix="/api/v1")

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {
            "status":     "ok",
            "service":    "document-pipeline",
            "blob_store": cfg.blob_store_backend,
        }

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "docpipeline.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.app_env == "development",
        log_level="debug" if default_settings.debug else "info",
        access_log=True,
    )
