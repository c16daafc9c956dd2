"""
Document Processing Package
════════════════════════════

The content-handling core of the pipeline:

  Validation → Text Extraction → Semantic Chunking

Modules
───────
  rules.py       Immutable signature / denylist / pattern tables
  validation.py  FileValidator: size, extension, MIME sniffing, security, structure
  extractor.py   TextExtractor: type resolution + per-format extractor dispatch
  chunking.py    SemanticChunker: structure-aware, token-bounded segmentation
  errors.py      ProcessingError + ErrorCode taxonomy

Design principles
─────────────────
  • Every component is stateless and receives its rule tables at construction.
  • No component performs I/O; bytes in, values out.
  • Every failure is a ProcessingError with a stable code.
"""

from docpipeline.processing.chunking import ChunkingOptions, SemanticChunker, estimate_tokens
from docpipeline.processing.errors import ErrorCode, ProcessingError, is_retryable
from docpipeline.processing.extractor import ExtractedDocument, ExtractedMetadata, TextExtractor
from docpipeline.processing.validation import FileValidator, ValidationOptions, ValidationResult

__all__ = [
    "ChunkingOptions",
    "SemanticChunker",
    "estimate_tokens",
    "ErrorCode",
    "ProcessingError",
    "is_retryable",
    "ExtractedDocument",
    "ExtractedMetadata",
    "TextExtractor",
    "FileValidator",
    "ValidationOptions",
    "ValidationResult",
]
