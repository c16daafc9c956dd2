"""
Document Processing API Router

  POST /api/v1/documents/upload               validate + store, 201
  POST /api/v1/documents/{id}/process         schedule background processing, 202
  GET  /api/v1/documents/{id}/status          ProcessingProgress for polling clients
  GET  /api/v1/documents/{id}/chunks          chunks of a completed document

Request lifecycle (upload):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Size guard on Content-Length (413 before reading)     │
  │ 2. FileValidator: extension, magic bytes, security       │
  │ 3. sha256 content hash                                   │
  │ 4. Blob upload under <prefix>/<date>/<document_id>.<ext> │
  │ 5. Record insert (status=uploaded)                       │
  └─────────────────────────────────────────────────────────┘

Processing runs as a FastAPI background task in this process. Its progress
events are mirrored into the shared ProgressStore, which the status route
reads first; the elapsed-time estimator is only the fallback.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, File, Request, UploadFile, status
from fastapi.responses import JSONResponse

from docpipeline.api.dependencies import (
    AppSettings,
    Blobs,
    Estimator,
    LiveProgress,
    Processor,
    Records,
)
from docpipeline.processing.rules import MIME_OCTET_STREAM
from docpipeline.processing.validation import sniff_mime
from docpipeline.schemas.documents import (
    DocumentChunksResponse,
    DocumentStatus,
    DocumentUploadResponse,
    ErrorResponse,
    ProcessDocumentResponse,
    ProcessingProgress,
    UploadErrors,
)
from docpipeline.services.jobs import process_stored_document
from docpipeline.services.processing import compute_sha256
from docpipeline.storage.base import DocumentRecord, build_blob_path

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)

# Multipart framing allowance on top of the file itself
_FORM_OVERHEAD_BYTES = 4096


# ---------------------------------------------------------------------------
# POST /documents/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a document",
    description=(
        "Accepts PDF, DOCX, DOC, TXT or RTF files. The file is validated from its "
        "content, stored, and recorded with status=uploaded. "
        "Call POST /documents/{id}/process to start processing."
    ),
    responses={
        201: {"model": DocumentUploadResponse, "description": "File validated and stored"},
        400: {"model": ErrorResponse, "description": "Missing file or validation failure"},
        413: {"model": ErrorResponse, "description": "File exceeds the size limit"},
        500: {"model": ErrorResponse, "description": "Blob storage failure (retryable)"},
    },
)
async def upload_document(
    request:   Request,
    settings:  AppSettings,
    blobs:     Blobs,
    records:   Records,
    processor: Processor,
    file:      UploadFile | None = File(None, description="Document file"),
) -> JSONResponse:
    request_id = _request_id(request)

    if file is None or not file.filename:
        return _error(status.HTTP_400_BAD_REQUEST, UploadErrors.missing_file(), request_id)

    # Guard: reject oversized requests before reading the body
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and (
        int(content_length) > settings.max_file_size + _FORM_OVERHEAD_BYTES
    ):
        return _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            UploadErrors.file_too_large(int(content_length), settings.max_file_size),
            request_id,
        )

    data = await file.read()
    filename = file.filename

    if len(data) > settings.max_file_size:
        return _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            UploadErrors.file_too_large(len(data), settings.max_file_size),
            request_id,
        )

    validation = processor.validate_only(data, filename)
    if not validation.valid:
        logger.info(
            "Upload rejected | file=%s errors=%s request_id=%s",
            filename, validation.errors, request_id,
        )
        return _error(
            status.HTTP_400_BAD_REQUEST,
            UploadErrors.validation_failed(filename, validation.errors),
            request_id,
        )

    document_id = str(uuid.uuid4())
    file_hash = compute_sha256(data)
    path = build_blob_path(settings.s3_prefix, document_id, filename)
    content_type = sniff_mime(data) or MIME_OCTET_STREAM

    try:
        stored = await blobs.upload(data, path, content_type)
    except Exception as exc:
        logger.exception("Blob upload failed | doc=%s request_id=%s", document_id, request_id)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            UploadErrors.storage_error(str(exc)),
            request_id,
        )

    record = await records.create_document(DocumentRecord(
        id=document_id,
        filename=stored.path.rsplit("/", 1)[-1],
        original_filename=filename,
        file_type=validation.metadata["file_type"],
        file_size=len(data),
        file_hash=file_hash,
        storage_path=stored.path,
        public_url=stored.public_url,
        warnings=list(validation.warnings),
    ))

    logger.info(
        "Upload ok | doc=%s file=%s size=%d hash=%s warnings=%d",
        document_id, filename, len(data), file_hash[:12], len(validation.warnings),
    )

    body = DocumentUploadResponse(
        document_id=record.id,
        status=record.status,
        filename=record.original_filename,
        file_type=record.file_type,
        size_bytes=record.file_size,
        file_hash=record.file_hash,
        storage_path=record.storage_path,
        public_url=record.public_url,
        warnings=record.warnings,
        created_at=record.created_at,
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=body.model_dump(mode="json"),
        headers={
            "X-Request-ID":  request_id,
            "X-Document-ID": record.id,
            "Location":      f"/api/v1/documents/{record.id}/status",
        },
    )


# ---------------------------------------------------------------------------
# POST /documents/{document_id}/process
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/process",
    response_model=ProcessDocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start background processing",
    responses={
        200: {"model": ProcessDocumentResponse, "description": "Already processed"},
        202: {"model": ProcessDocumentResponse, "description": "Processing scheduled"},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Already processing"},
    },
)
async def process_document(
    document_id:      str,
    request:          Request,
    background_tasks: BackgroundTasks,
    blobs:            Blobs,
    records:          Records,
    processor:        Processor,
    live:             LiveProgress,
) -> JSONResponse:
    request_id = _request_id(request)

    record = await records.get_document(document_id)
    if record is None:
        return _error(
            status.HTTP_404_NOT_FOUND, UploadErrors.document_not_found(document_id), request_id,
        )

    if record.status is DocumentStatus.PROCESSING or live.is_active(document_id):
        return _error(
            status.HTTP_409_CONFLICT, UploadErrors.already_processing(document_id), request_id,
        )

    if record.status is DocumentStatus.COMPLETED:
        body = ProcessDocumentResponse(
            document_id=document_id,
            status=record.status,
            message="Document has already been processed",
            chunk_count=record.chunk_count,
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))

    await records.update_document(
        document_id,
        status=DocumentStatus.PROCESSING,
        processing_started_at=datetime.now(timezone.utc),
        processing_completed_at=None,
        error=None,
    )
    live.discard(document_id)

    background_tasks.add_task(
        process_stored_document,
        document_id,
        blob_store=blobs,
        record_store=records,
        processor=processor,
        progress_store=live,
    )
    logger.info("Processing scheduled | doc=%s request_id=%s", document_id, request_id)

    body = ProcessDocumentResponse(
        document_id=document_id,
        status=DocumentStatus.PROCESSING,
        message="Document processing started",
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json"),
        headers={
            "X-Request-ID": request_id,
            "Location":     f"/api/v1/documents/{document_id}/status",
        },
    )


# ---------------------------------------------------------------------------
# GET /documents/{document_id}/status
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/status",
    response_model=ProcessingProgress,
    summary="Poll processing progress",
    description=(
        "Returns the latest live progress event when one is available; otherwise "
        "an elapsed-time estimate derived from the stored status, file size and "
        "type. The estimate is a heuristic, not a measurement."
    ),
    responses={404: {"model": ErrorResponse}},
)
async def get_document_status(
    document_id: str,
    request:     Request,
    records:     Records,
    live:        LiveProgress,
    estimator:   Estimator,
) -> JSONResponse:
    record = await records.get_document(document_id)
    if record is None:
        return _error(
            status.HTTP_404_NOT_FOUND,
            UploadErrors.document_not_found(document_id),
            _request_id(request),
        )

    progress = live.get(document_id) or estimator.estimate(
        record.status,
        file_size=record.file_size,
        file_type=record.file_type,
        started_at=record.processing_started_at or record.created_at,
        chunk_count=record.chunk_count,
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=progress.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# GET /documents/{document_id}/chunks
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/chunks",
    response_model=DocumentChunksResponse,
    summary="List the chunks of a processed document",
    responses={404: {"model": ErrorResponse}},
)
async def get_document_chunks(
    document_id: str,
    request:     Request,
    records:     Records,
) -> JSONResponse:
    record = await records.get_document(document_id)
    if record is None:
        return _error(
            status.HTTP_404_NOT_FOUND,
            UploadErrors.document_not_found(document_id),
            _request_id(request),
        )

    chunks = await records.get_chunks(document_id)
    body = DocumentChunksResponse(document_id=document_id, chunk_count=len(chunks), chunks=chunks)
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _request_id(request: Request) -> str:
    """Id assigned by the request middleware; it is echoed in the X-Request-ID header."""
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("X-Request-ID")
        or str(uuid.uuid4())
    )


def _error(status_code: int, body: ErrorResponse, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_copy(update={"request_id": request_id}).model_dump(mode="json"),
        headers={"X-Request-ID": request_id},
    )
