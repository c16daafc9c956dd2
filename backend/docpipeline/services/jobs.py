"""
Background Processing Job

Runs one stored document through the pipeline and persists the outcome:
  1. Load the document record
  2. Download the raw bytes from the blob store
  3. DocumentProcessor.process_document() with a progress channel that
     logs every event and mirrors it into the shared ProgressStore
  4. Persist chunks + metadata, status → completed (or failed + error)

Scheduled fire-and-forget by POST /documents/{id}/process. The job never
raises: every failure ends with the record in status=failed and a
`failed` event in the ProgressStore.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from docpipeline.processing.errors import ErrorCode, ProcessingError
from docpipeline.schemas.documents import (
    DocumentStatus,
    ProcessingErrorInfo,
    ProcessingProgress,
    ProcessingResult,
    ProcessingStage,
)
from docpipeline.services.processing import DocumentProcessor
from docpipeline.services.progress import LoggingSink, ProgressChannel, ProgressStore, StoreSink
from docpipeline.storage.base import BlobStore, RecordStore

logger = logging.getLogger(__name__)


async def process_stored_document(
    document_id:    str,
    *,
    blob_store:     BlobStore,
    record_store:   RecordStore,
    processor:      DocumentProcessor,
    progress_store: ProgressStore | None = None,
) -> ProcessingResult | None:
    record = await record_store.get_document(document_id)
    if record is None:
        logger.error("Document not found | doc=%s", document_id)
        return None

    channel = ProgressChannel([LoggingSink(document_id)])
    if progress_store is not None:
        channel.attach(StoreSink(progress_store, document_id))

    logger.info("Processing | doc=%s path=%s", document_id, record.storage_path)

    # --- Phase 1: download -------------------------------------------------
    try:
        data = await blob_store.download(record.storage_path)
    except FileNotFoundError as exc:
        error = ProcessingError(
            ErrorCode.PROCESSING_FAILED,
            "Document file not found in storage",
            details={"storage_path": record.storage_path, "original_error": str(exc)},
        )
        return await _fail(record_store, channel, document_id, error.to_info())
    except Exception as exc:
        logger.exception("Blob download failed | doc=%s", document_id)
        error = ProcessingError(
            ErrorCode.NETWORK_ERROR,
            f"Failed to download file: {exc}",
            details={"storage_path": record.storage_path},
        )
        return await _fail(record_store, channel, document_id, error.to_info())

    # --- Phase 2: pipeline -------------------------------------------------
    result = await processor.process_document(data, record.original_filename, progress=channel)

    # --- Phase 3: persist --------------------------------------------------
    try:
        if result.success and result.chunks is not None and result.metadata is not None:
            await record_store.save_chunks(document_id, result.chunks)
            await record_store.update_document(
                document_id,
                status=DocumentStatus.COMPLETED,
                processing_completed_at=datetime.now(timezone.utc),
                extracted_text=result.extracted_text,
                chunk_count=len(result.chunks),
                title=result.metadata.title or _stem(record.original_filename),
                author=result.metadata.author,
                document_date=result.metadata.creation_date,
                error=None,
            )
        else:
            await record_store.update_document(
                document_id,
                status=DocumentStatus.FAILED,
                processing_completed_at=datetime.now(timezone.utc),
                error=result.error,
            )
    except Exception as exc:
        logger.exception("Persisting result failed | doc=%s", document_id)
        error = ProcessingError(
            ErrorCode.TEMPORARY_FAILURE,
            f"Failed to save processing result: {exc}",
        )
        return await _fail(record_store, channel, document_id, error.to_info())

    logger.info(
        "Processing finished | doc=%s success=%s chunks=%s elapsed_ms=%.0f",
        document_id, result.success,
        len(result.chunks) if result.chunks else 0, result.processing_time_ms,
    )
    return result


async def _fail(
    record_store: RecordStore,
    channel:      ProgressChannel,
    document_id:  str,
    error:        ProcessingErrorInfo,
) -> ProcessingResult:
    logger.warning(
        "Processing failed | doc=%s code=%s retryable=%s", document_id, error.code, error.retryable,
    )
    await channel.publish(ProcessingProgress(
        stage=ProcessingStage.FAILED,
        progress=0,
        message=error.message,
        error=error,
    ))
    try:
        await record_store.update_document(
            document_id,
            status=DocumentStatus.FAILED,
            processing_completed_at=datetime.now(timezone.utc),
            error=error,
        )
    except Exception:
        logger.exception("Could not mark document failed | doc=%s", document_id)
    return ProcessingResult(success=False, error=error)


def _stem(filename: str) -> str:
    return filename.rsplit(".", 1)[0] if "." in filename else filename
