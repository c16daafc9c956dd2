"""
Document Processing — Pydantic Models

Covers the wire-facing shapes of the pipeline and its HTTP surface:
  - Processing stage / persisted status enums
  - Progress events emitted by the orchestrator and the status endpoint
  - Chunk, metadata and result models returned by DocumentProcessor
  - Structured error bodies for all 4xx/5xx responses

Design decisions:
  - Field names are snake_case; JSON output mirrors them.
  - Models are immutable once built (frozen) where they represent results.
  - Timestamps are timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Pipeline state machine
# ---------------------------------------------------------------------------

class ProcessingStage(str, Enum):
    """
    Stages reported by DocumentProcessor.
    Transitions: uploading → extracting → chunking → analyzing → completed | failed
    `analyzing` is a hand-off boundary; the analysis itself runs elsewhere.
    """
    UPLOADING  = "uploading"
    EXTRACTING = "extracting"
    CHUNKING   = "chunking"
    ANALYZING  = "analyzing"
    COMPLETED  = "completed"
    FAILED     = "failed"


class DocumentStatus(str, Enum):
    """
    Persisted document status held by the record store.
    Transitions: uploaded → processing → completed | failed
    """
    UPLOADED   = "uploaded"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"


class SemanticType(str, Enum):
    PARAGRAPH = "paragraph"
    HEADING   = "heading"
    LIST      = "list"
    TABLE     = "table"
    OTHER     = "other"


# ---------------------------------------------------------------------------
# Errors and progress events
# ---------------------------------------------------------------------------

class ProcessingErrorInfo(BaseModel):
    """Serializable form of a ProcessingError — no stack or identity state."""
    model_config = ConfigDict(frozen=True)

    code:      str
    message:   str
    details:   dict[str, Any] | None = None
    retryable: bool = False


class ProcessingProgress(BaseModel):
    """
    Transient progress event. The pipeline does not keep a history of these;
    sinks that need a durable trail must persist each event themselves.
    """
    model_config = ConfigDict(frozen=True)

    stage:    ProcessingStage
    progress: int = Field(0, ge=0, le=100)
    message:  str
    estimated_time_remaining: float | None = Field(
        None, ge=0, description="Seconds; heuristic, not a guarantee",
    )
    error:    ProcessingErrorInfo | None = None


# ---------------------------------------------------------------------------
# Chunks and results
# ---------------------------------------------------------------------------

class ChunkMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    unit_count:        int
    type_distribution: dict[str, int]


class DocumentChunk(BaseModel):
    """
    One token-bounded span of normalized document text.
    Positions are character offsets into the normalized text.
    """
    model_config = ConfigDict(frozen=True)

    index:          int = Field(..., ge=0)
    content:        str
    token_count:    int = Field(..., gt=0)
    start_position: int = Field(..., ge=0)
    end_position:   int
    semantic_type:  SemanticType
    metadata:       ChunkMetadata


class DocumentMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename:          str
    original_filename: str
    file_type:         str
    file_size:         int
    file_hash:         str = Field(..., description="sha256 hex digest of the raw bytes")
    title:             str | None = None
    author:            str | None = None
    creation_date:     datetime | None = None
    pages:             int | None = None


class ProcessingResult(BaseModel):
    """Created once per process_document call and returned to the caller."""
    model_config = ConfigDict(frozen=True)

    success:            bool
    extracted_text:     str | None = None
    chunks:             list[DocumentChunk] | None = None
    metadata:           DocumentMetadata | None = None
    processing_time_ms: float = 0.0
    error:              ProcessingErrorInfo | None = None


# ---------------------------------------------------------------------------
# HTTP responses
# ---------------------------------------------------------------------------

class DocumentUploadResponse(BaseModel):
    """Returned after a document has been validated and stored."""
    document_id:  str
    status:       DocumentStatus = DocumentStatus.UPLOADED
    filename:     str
    file_type:    str
    size_bytes:   int
    file_hash:    str
    storage_path: str
    public_url:   str | None = None
    warnings:     list[str] = Field(default_factory=list)
    created_at:   datetime


class ProcessDocumentResponse(BaseModel):
    """Returned immediately when background processing is scheduled."""
    document_id: str
    status:      DocumentStatus
    message:     str
    chunk_count: int | None = None


class DocumentChunksResponse(BaseModel):
    document_id: str
    chunk_count: int
    chunks:      list[DocumentChunk]


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str         = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    retryable:  bool              = False
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


class UploadErrors:
    """Factories for every documented error case."""

    @staticmethod
    def missing_file() -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_FILE",
            message="No file was provided in the request.",
            details=[
                ErrorDetail(
                    field="file",
                    message="The 'file' multipart field is required.",
                    code="MISSING_FILE",
                )
            ],
        )

    @staticmethod
    def file_too_large(size_bytes: int, limit_bytes: int) -> ErrorResponse:
        max_mb = limit_bytes // (1024 * 1024)
        return ErrorResponse(
            error_code="FILE_TOO_LARGE",
            message=f"Uploaded file exceeds the {max_mb} MB limit.",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"Received {size_bytes:,} bytes; limit is {limit_bytes:,} bytes.",
                    code="FILE_TOO_LARGE",
                )
            ],
        )

    @staticmethod
    def validation_failed(filename: str, errors: list[str]) -> ErrorResponse:
        return ErrorResponse(
            error_code="VALIDATION_FAILED",
            message=f"File '{filename}' failed validation.",
            details=[
                ErrorDetail(field="file", message=err, code="VALIDATION_FAILED")
                for err in errors
            ],
        )

    @staticmethod
    def document_not_found(document_id: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="DOCUMENT_NOT_FOUND",
            message=f"Document '{document_id}' was not found.",
        )

    @staticmethod
    def already_processing(document_id: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="ALREADY_PROCESSING",
            message=f"Document '{document_id}' is already being processed.",
        )

    @staticmethod
    def storage_error(detail: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="STORAGE_ERROR",
            message="Failed to store the document. Please retry.",
            details=[ErrorDetail(message=detail, code="STORAGE_ERROR")],
            retryable=True,
        )
