"""
Status Estimation  —  Elapsed-Time Heuristic for Polling Clients

Maps a persisted DocumentStatus to a ProcessingProgress-shaped response when
no live progress event is available (see services/progress.ProgressStore).

This is an approximation, not a measurement: while a document is
`processing` the reported stage and percentage are derived from wall-clock
time since processing started and a per-type seconds-per-MB budget. It can
disagree with the real pipeline in both directions; the percentage is
capped at 95 so a slow document never looks finished.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from docpipeline.processing.errors import ErrorCode
from docpipeline.schemas.documents import (
    DocumentStatus,
    ProcessingErrorInfo,
    ProcessingProgress,
    ProcessingStage,
)

SECONDS_PER_MB: dict[str, float] = {
    "pdf":  3.0,
    "docx": 2.0,
    "doc":  2.5,
    "txt":  1.0,
    "rtf":  1.5,
}
DEFAULT_SECONDS_PER_MB = 2.0
MIN_ESTIMATE_SECONDS = 10
MIN_REMAINING_SECONDS = 5
UPLOADED_ETA_SECONDS = 30
MAX_ESTIMATED_PROGRESS = 95

CHUNKING_THRESHOLD  = 30
ANALYZING_THRESHOLD = 60


class ProgressEstimator:
    """
    Usage:
        estimator = ProgressEstimator()
        event = estimator.estimate(
            DocumentStatus.PROCESSING, file_size=4_200_000, file_type="pdf",
            started_at=record.processing_started_at,
        )
    """

    def __init__(
        self,
        seconds_per_mb: dict[str, float] | None = None,
        default_seconds_per_mb: float = DEFAULT_SECONDS_PER_MB,
    ) -> None:
        self._seconds_per_mb = dict(seconds_per_mb or SECONDS_PER_MB)
        self._default = default_seconds_per_mb

    def estimated_total_seconds(self, file_size: int, file_type: str) -> int:
        size_mb = file_size / (1024 * 1024)
        per_mb = self._seconds_per_mb.get(file_type, self._default)
        return math.ceil(max(MIN_ESTIMATE_SECONDS, size_mb * per_mb))

    def estimate(
        self,
        status:      DocumentStatus | str,
        file_size:   int,
        file_type:   str,
        started_at:  datetime | None,
        chunk_count: int = 0,
        now:         datetime | None = None,
    ) -> ProcessingProgress:
        status = _coerce_status(status)

        if status is DocumentStatus.UPLOADED:
            return ProcessingProgress(
                stage=ProcessingStage.UPLOADING,
                progress=100,
                message="File uploaded successfully. Starting processing...",
                estimated_time_remaining=UPLOADED_ETA_SECONDS,
            )

        if status is DocumentStatus.PROCESSING:
            return self._estimate_running(file_size, file_type, started_at, now)

        if status is DocumentStatus.COMPLETED:
            return ProcessingProgress(
                stage=ProcessingStage.COMPLETED,
                progress=100,
                message=f"Document processed successfully! Created {chunk_count or 0} chunks.",
            )

        if status is DocumentStatus.FAILED:
            return ProcessingProgress(
                stage=ProcessingStage.FAILED,
                progress=0,
                message="Document processing failed. Please try uploading again.",
                error=ProcessingErrorInfo(
                    code=ErrorCode.PROCESSING_FAILED.value,
                    message="Document processing failed due to an internal error",
                    retryable=True,
                ),
            )

        return ProcessingProgress(
            stage=ProcessingStage.UPLOADING,
            progress=0,
            message="Starting document processing...",
        )

    def _estimate_running(
        self,
        file_size:  int,
        file_type:  str,
        started_at: datetime | None,
        now:        datetime | None,
    ) -> ProcessingProgress:
        now = now or datetime.now(timezone.utc)
        started_at = started_at or now
        elapsed = max(0, math.floor((_aware(now) - _aware(started_at)).total_seconds()))

        total = self.estimated_total_seconds(file_size, file_type)
        percentage = min(MAX_ESTIMATED_PROGRESS, elapsed / total * 100)

        stage, message = ProcessingStage.EXTRACTING, "Extracting text from document..."
        if percentage > CHUNKING_THRESHOLD:
            stage, message = ProcessingStage.CHUNKING, "Creating document chunks for analysis..."
        if percentage > ANALYZING_THRESHOLD:
            stage, message = ProcessingStage.ANALYZING, "Preparing document for analysis..."

        return ProcessingProgress(
            stage=stage,
            progress=round(percentage),
            message=message,
            estimated_time_remaining=max(MIN_REMAINING_SECONDS, total - elapsed),
        )


def _coerce_status(status: DocumentStatus | str) -> DocumentStatus | None:
    if isinstance(status, DocumentStatus):
        return status
    try:
        return DocumentStatus(str(status).lower())
    except ValueError:
        return None


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
