"""
Processing error taxonomy.

Every failure inside the pipeline is expressed as a ProcessingError carrying a
stable machine-readable code and a retryable flag. Only infrastructure-style
codes are retryable: re-running the pipeline on the same bytes cannot change
the outcome of a content-derived failure.

Error codes by originating stage:

  validation   VALIDATION_FAILED
  detection    UNKNOWN_FILE_TYPE, FILE_TYPE_DETECTION_FAILED, UNSUPPORTED_FILE_TYPE
  extraction   PDF_/WORD_/TEXT_/RTF_EXTRACTION_FAILED, EXTRACTION_FAILED, EMPTY_DOCUMENT
  chunking     EMPTY_TEXT, CHUNKING_FAILED
  catch-all    PROCESSING_FAILED
  transient    NETWORK_ERROR, TIMEOUT, RATE_LIMITED, TEMPORARY_FAILURE
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from docpipeline.schemas.documents import ProcessingErrorInfo


class ErrorCode(str, Enum):
    VALIDATION_FAILED          = "VALIDATION_FAILED"

    UNKNOWN_FILE_TYPE          = "UNKNOWN_FILE_TYPE"
    FILE_TYPE_DETECTION_FAILED = "FILE_TYPE_DETECTION_FAILED"
    UNSUPPORTED_FILE_TYPE      = "UNSUPPORTED_FILE_TYPE"

    PDF_EXTRACTION_FAILED      = "PDF_EXTRACTION_FAILED"
    WORD_EXTRACTION_FAILED     = "WORD_EXTRACTION_FAILED"
    TEXT_EXTRACTION_FAILED     = "TEXT_EXTRACTION_FAILED"
    RTF_EXTRACTION_FAILED      = "RTF_EXTRACTION_FAILED"
    EXTRACTION_FAILED          = "EXTRACTION_FAILED"
    EMPTY_DOCUMENT             = "EMPTY_DOCUMENT"

    EMPTY_TEXT                 = "EMPTY_TEXT"
    CHUNKING_FAILED            = "CHUNKING_FAILED"

    PROCESSING_FAILED          = "PROCESSING_FAILED"

    NETWORK_ERROR              = "NETWORK_ERROR"
    TIMEOUT                    = "TIMEOUT"
    RATE_LIMITED               = "RATE_LIMITED"
    TEMPORARY_FAILURE          = "TEMPORARY_FAILURE"


RETRYABLE_CODES: frozenset[str] = frozenset(
    {
        ErrorCode.NETWORK_ERROR.value,
        ErrorCode.TIMEOUT.value,
        ErrorCode.RATE_LIMITED.value,
        ErrorCode.TEMPORARY_FAILURE.value,
    }
)


def is_retryable(code: str | ErrorCode) -> bool:
    """True only for the fixed allow-list of infrastructure failure codes."""
    value = code.value if isinstance(code, ErrorCode) else code
    return value in RETRYABLE_CODES


class ProcessingError(Exception):
    """
    Classified pipeline failure.

    Raised by extractors and the chunker; caught by DocumentProcessor and
    converted into a ProcessingErrorInfo on the result / failed progress event.
    `retryable` defaults to the allow-list lookup for `code`.
    """

    def __init__(
        self,
        code: str | ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.details = details
        self.retryable = is_retryable(self.code) if retryable is None else retryable

    def to_info(self) -> ProcessingErrorInfo:
        return ProcessingErrorInfo(
            code=self.code,
            message=self.message,
            details=self.details,
            retryable=self.retryable,
        )

    @classmethod
    def wrap(
        cls,
        code: str | ErrorCode,
        prefix: str,
        exc: BaseException,
        **details: Any,
    ) -> "ProcessingError":
        """Normalize an arbitrary exception into a ProcessingError."""
        return cls(
            code,
            f"{prefix}: {exc}",
            details={"original_error": str(exc), **details},
        )

    def __repr__(self) -> str:
        return f"ProcessingError(code={self.code!r}, retryable={self.retryable})"
