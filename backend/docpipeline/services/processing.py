"""
Document Processing Orchestrator

Sequences the three content stages for one document and turns every outcome
into a single ProcessingResult:

  1. uploading   validate the raw bytes (FileValidator)
  2. extracting  resolve the format and extract text (TextExtractor)
  3. chunking    split into token-bounded semantic chunks (SemanticChunker)
  4. analyzing   hand-off boundary, reported but not executed here
  5. completed | failed

Contract:
  - process_document() never raises; failures come back as
    ProcessingResult(success=False, error=...) after a `failed` event.
  - A validation failure stops the pipeline before extraction.
  - Progress events are published in strict stage order.
  - No internal retries: `error.retryable` tells the caller whether a
    re-run could help. Timeouts are the caller's concern (asyncio.wait_for).

Blocking parser and chunker calls run in the default thread executor so the
event loop stays responsive while large documents are processed.
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import logging
import math
import time
from typing import Any, Callable, Iterable, TypeVar

from docpipeline.processing.chunking import ChunkingOptions, SemanticChunker
from docpipeline.processing.errors import ErrorCode, ProcessingError
from docpipeline.processing.extractor import ExtractedDocument, TextExtractor
from docpipeline.processing.validation import (
    FileValidator,
    ValidationOptions,
    ValidationResult,
    get_file_extension,
)
from docpipeline.schemas.documents import (
    DocumentChunk,
    DocumentMetadata,
    ProcessingErrorInfo,
    ProcessingProgress,
    ProcessingResult,
    ProcessingStage,
)
from docpipeline.services.progress import CallbackSink, ProgressCallback, ProgressSink, as_sink

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MB = 1024 * 1024

# Whole-pipeline estimate: seconds per MB before the per-type multiplier
BASE_SECONDS_PER_MB = 2.0
TYPE_TIME_MULTIPLIERS: dict[str, float] = {
    "pdf":  1.5,
    "docx": 1.2,
    "doc":  1.3,
    "txt":  0.8,
    "rtf":  1.0,
}

# Stage percentages published by process_document
STAGE_PROGRESS: dict[ProcessingStage, int] = {
    ProcessingStage.UPLOADING:  10,
    ProcessingStage.EXTRACTING: 20,
    ProcessingStage.CHUNKING:   60,
    ProcessingStage.ANALYZING:  90,
    ProcessingStage.COMPLETED:  100,
    ProcessingStage.FAILED:     0,
}


def compute_sha256(data: bytes) -> str:
    """Content hash used for deduplication."""
    return hashlib.sha256(data).hexdigest()


def estimate_extraction_time(file_size: int) -> float:
    """Seconds; 1.5 s per started MB."""
    return math.ceil(file_size / _MB) * 1.5


def estimate_chunking_time(text_length: int) -> float:
    """Seconds; 0.5 s per started 10k characters."""
    return math.ceil(text_length / 10_000) * 0.5


class DocumentProcessor:
    """
    Stateless orchestrator. One instance can process any number of documents,
    concurrently or not; all per-document state lives in local variables.

    Usage:
        processor = DocumentProcessor()
        result = await processor.process_document(data, "policy.pdf", progress=sink)
        if not result.success:
            log(result.error.code, result.error.retryable)
    """

    def __init__(
        self,
        validator:          FileValidator | None = None,
        extractor:          TextExtractor | None = None,
        chunker:            SemanticChunker | None = None,
        validation_options: ValidationOptions | None = None,
        chunking_options:   ChunkingOptions | None = None,
    ) -> None:
        self._validator = validator or FileValidator()
        self._extractor = extractor or TextExtractor()
        self._chunker   = chunker or SemanticChunker()
        self._validation_options = validation_options or ValidationOptions()
        self._chunking_options   = chunking_options or ChunkingOptions()

    @classmethod
    def from_settings(cls, settings: Any) -> "DocumentProcessor":
        return cls(
            validation_options=settings.validation_options(),
            chunking_options=settings.chunking_options(),
        )

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def process_document(
        self,
        buffer:   bytes,
        filename: str,
        progress: ProgressSink | ProgressCallback | None = None,
    ) -> ProcessingResult:
        sink = as_sink(progress)
        t0 = time.monotonic()

        try:
            # ---- Stage 1: validation -----------------------------------
            await self._emit(sink, ProcessingStage.UPLOADING, "Validating file...")

            validation = self._validator.validate(buffer, filename, self._validation_options)
            if not validation.valid:
                raise ProcessingError(
                    ErrorCode.VALIDATION_FAILED,
                    f"File validation failed: {', '.join(validation.errors)}",
                    details={"errors": validation.errors, "warnings": validation.warnings},
                )
            if validation.warnings:
                logger.info(
                    "Validation warnings | file=%s warnings=%s", filename, validation.warnings,
                )

            file_hash = compute_sha256(buffer)

            # ---- Stage 2: extraction -----------------------------------
            await self._emit(
                sink, ProcessingStage.EXTRACTING, "Extracting text from document...",
                eta=estimate_extraction_time(len(buffer)),
            )

            extracted = await self._extractor.extract_async(buffer, filename)
            text = extracted.text
            if not text or not text.strip():
                raise ProcessingError(ErrorCode.EMPTY_DOCUMENT, "No text content found in document")

            metadata = DocumentMetadata(
                filename=filename,
                original_filename=filename,
                file_type=extracted.metadata.file_type or get_file_extension(filename) or "unknown",
                file_size=len(buffer),
                file_hash=file_hash,
                title=extracted.metadata.title,
                author=extracted.metadata.author,
                creation_date=extracted.metadata.creation_date,
                pages=extracted.metadata.pages,
            )

            # ---- Stage 3: chunking -------------------------------------
            await self._emit(
                sink, ProcessingStage.CHUNKING, "Creating document chunks...",
                eta=estimate_chunking_time(len(text)),
            )

            chunks = await self._run_blocking(self._chunker.chunk, text, self._chunking_options)
            if not chunks:
                raise ProcessingError(ErrorCode.CHUNKING_FAILED, "Failed to create document chunks")

            # ---- Stage 4: hand-off -------------------------------------
            await self._emit(
                sink, ProcessingStage.ANALYZING,
                f"Document ready for analysis ({len(chunks)} chunks)",
            )

            await self._emit(
                sink, ProcessingStage.COMPLETED,
                f"Successfully processed document into {len(chunks)} chunks",
            )

            elapsed_ms = (time.monotonic() - t0) * 1000
            logger.info(
                "Processed | file=%s type=%s size=%d chunks=%d hash=%s elapsed_ms=%.0f",
                filename, metadata.file_type, len(buffer), len(chunks), file_hash[:12], elapsed_ms,
            )
            return ProcessingResult(
                success=True,
                extracted_text=text,
                chunks=chunks,
                metadata=metadata,
                processing_time_ms=elapsed_ms,
            )

        except Exception as exc:
            error = exc if isinstance(exc, ProcessingError) else ProcessingError(
                ErrorCode.PROCESSING_FAILED,
                f"Document processing failed: {exc}",
                details={"original_error": str(exc)},
            )
            if isinstance(exc, ProcessingError):
                logger.warning(
                    "Processing failed | file=%s code=%s retryable=%s msg=%s",
                    filename, error.code, error.retryable, error.message,
                )
            else:
                logger.exception("Unexpected processing failure | file=%s", filename)

            info = error.to_info()
            await self._emit(sink, ProcessingStage.FAILED, error.message, error=info)
            return ProcessingResult(
                success=False,
                processing_time_ms=(time.monotonic() - t0) * 1000,
                error=info,
            )

    async def process_batch(
        self,
        items:       Iterable[tuple[bytes, str]],
        on_progress: Callable[[int, ProcessingProgress], Any] | None = None,
    ) -> list[ProcessingResult]:
        """
        Process (buffer, filename) pairs one after another, preserving input
        order. One item's failure never aborts the batch.
        """
        results: list[ProcessingResult] = []
        for index, (buffer, filename) in enumerate(items):
            sink = CallbackSink(functools.partial(on_progress, index)) if on_progress else None
            results.append(await self.process_document(buffer, filename, progress=sink))

        logger.info(
            "Batch processed | items=%d failed=%d",
            len(results), sum(1 for r in results if not r.success),
        )
        return results

    def estimate_processing_time(self, file_size: int, file_type: str) -> int:
        """Whole-pipeline estimate in seconds; a heuristic, not a measurement."""
        multiplier = TYPE_TIME_MULTIPLIERS.get(file_type, 1.0)
        return math.ceil(file_size / _MB * BASE_SECONDS_PER_MB * multiplier)

    # ------------------------------------------------------------------
    # Single-stage helpers
    # ------------------------------------------------------------------

    def validate_only(
        self,
        buffer:   bytes,
        filename: str,
        options:  ValidationOptions | None = None,
    ) -> ValidationResult:
        return self._validator.validate(buffer, filename, options or self._validation_options)

    async def extract_only(self, buffer: bytes, filename: str) -> ExtractedDocument:
        """Raises ProcessingError on failure, unlike process_document."""
        return await self._extractor.extract_async(buffer, filename)

    async def chunk_only(
        self,
        text:    str,
        options: ChunkingOptions | None = None,
    ) -> list[DocumentChunk]:
        """Raises ProcessingError on failure, unlike process_document."""
        return await self._run_blocking(self._chunker.chunk, text, options or self._chunking_options)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _emit(
        sink:    ProgressSink | None,
        stage:   ProcessingStage,
        message: str,
        eta:     float | None = None,
        error:   ProcessingErrorInfo | None = None,
    ) -> None:
        if sink is None:
            return
        event = ProcessingProgress(
            stage=stage,
            progress=STAGE_PROGRESS[stage],
            message=message,
            estimated_time_remaining=eta,
            error=error,
        )
        try:
            await sink.publish(event)
        except Exception as exc:
            logger.warning("Progress sink failed | stage=%s error=%s", stage.value, exc)

    @staticmethod
    async def _run_blocking(fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))
