"""
File Validation  —  Structural, Security and Content Sanity Checks
═══════════════════════════════════════════════════════════════════

Runs before any parser touches the bytes. Every check is table-driven
(see rules.py) and purely in-memory: the same buffer, filename and options
always produce the same ValidationResult.

Check order:
  1. Size           empty → error; over max_file_size → error
  2. Extension      required; must be in the supported set
  3. MIME sniffing  magic bytes vs. the extension's expected MIME set
                    (strict mode: mismatch = error, known mislabel = warning)
  4. Security       dangerous-extension denylist, executable magic bytes,
                    script-looking .txt content (warning)
  5. Structure      per-format header checks — only when 1–4 found no errors

MIME type is always derived from the bytes, never from a client-supplied
Content-Type header.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from docpipeline.processing.rules import (
    DEFAULT_VALIDATION_RULES,
    DOCX_PART_MARKER,
    MAX_FILE_SIZE,
    MIME_DOCX,
    MIME_TXT,
    MIME_ZIP,
    PDF_HEADER,
    RTF_HEADER,
    ZIP_LOCAL_HEADER,
    FileType,
    ValidationRules,
)

logger = logging.getLogger(__name__)

_PDF_VERSION_RE = re.compile(rb"%PDF-(\d+\.\d+)")


# ---------------------------------------------------------------------------
# Options and result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationOptions:
    max_file_size:          int = MAX_FILE_SIZE
    allowed_types:          tuple[str, ...] | None = None   # None = rules.supported_types
    allow_executables:      bool = False
    strict_mime_type_check: bool = True


@dataclass
class ValidationResult:
    """
    Outcome of FileValidator.validate().

    valid     : True when `errors` is empty
    errors    : hard failures — the document must not be processed
    warnings  : soft findings — processing may continue
    metadata  : {"filename", "file_size", "file_type"}
    """
    valid:    bool
    errors:   list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: dict      = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Shared helpers (also used by the extractor)
# ---------------------------------------------------------------------------

def get_file_extension(filename: str) -> str | None:
    """Return the lowercased extension without the dot, or None."""
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    parts = basename.lower().rsplit(".", 1)
    if len(parts) != 2 or not parts[1]:
        return None
    return parts[1]


def control_byte_ratio(
    sample: bytes,
    allowed: Iterable[int] = DEFAULT_VALIDATION_RULES.text_allowed_control,
) -> float:
    """Fraction of bytes < 0x20 that are not in `allowed`."""
    if not sample:
        return 0.0
    allowed_set = frozenset(allowed)
    bad = sum(1 for b in sample if b < 0x20 and b not in allowed_set)
    return bad / len(sample)


def sniff_mime(buffer: bytes, rules: ValidationRules = DEFAULT_VALIDATION_RULES) -> str | None:
    """
    Detect a MIME type from content alone.

    Returns None when the content carries no recognizable signature and does
    not look like text — callers decide whether that is worth a warning.
    """
    if not buffer:
        return None

    for sig in rules.content_signatures:
        if buffer.startswith(sig.prefix):
            if sig.mime == MIME_ZIP and buffer.startswith(ZIP_LOCAL_HEADER):
                # OOXML packages are ZIPs with a word/ part
                return MIME_DOCX if DOCX_PART_MARKER in buffer else MIME_ZIP
            return sig.mime

    sample = buffer[: rules.text_sample_bytes]
    if b"\x00" not in sample and (
        control_byte_ratio(sample, rules.text_allowed_control) <= rules.text_max_control_ratio
    ):
        return MIME_TXT
    return None


def format_file_size(size: int) -> str:
    units = ("Bytes", "KB", "MB", "GB")
    if size <= 0:
        return "0 Bytes"
    i = 0
    while size >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    value = round(size / (1024 ** i), 2)
    return f"{value:g} {units[i]}"


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

class FileValidator:
    """
    Stateless validator — one instance can serve any number of calls.

    Usage:
        validator = FileValidator()
        result = validator.validate(data, "report.pdf")
        if not result.valid:
            ...
    """

    def __init__(self, rules: ValidationRules = DEFAULT_VALIDATION_RULES) -> None:
        self._rules = rules

    @property
    def rules(self) -> ValidationRules:
        return self._rules

    def validate(
        self,
        buffer: bytes,
        filename: str | None,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        opts = options or ValidationOptions()
        allowed = opts.allowed_types or self._rules.supported_types
        name = filename or "unknown"
        size = len(buffer)

        errors: list[str] = []
        warnings: list[str] = []

        # ---- Size -------------------------------------------------------
        if size == 0:
            errors.append("File is empty")
        if size > opts.max_file_size:
            errors.append(
                f"File size ({format_file_size(size)}) exceeds maximum allowed size "
                f"({format_file_size(opts.max_file_size)})"
            )

        # ---- Extension --------------------------------------------------
        extension = get_file_extension(name)
        if not extension:
            errors.append("File must have an extension")
        elif extension not in allowed:
            errors.append(
                f"File type '{extension}' is not supported. "
                f"Supported types: {', '.join(allowed)}"
            )

        # ---- MIME sniffing ----------------------------------------------
        if size > 0 and extension and opts.strict_mime_type_check:
            self._check_mime(buffer, extension, errors, warnings)

        # ---- Security ---------------------------------------------------
        if not opts.allow_executables:
            self._check_security(buffer, extension, errors, warnings)

        # ---- Structure --------------------------------------------------
        if extension and not errors:
            self._check_structure(buffer, extension, errors, warnings)

        result = ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            metadata={
                "filename":  name,
                "file_size": size,
                "file_type": extension or "unknown",
            },
        )
        logger.debug(
            "Validation | file=%s size=%d type=%s valid=%s errors=%d warnings=%d",
            name, size, extension, result.valid, len(errors), len(warnings),
        )
        return result

    def validate_many(
        self,
        files: Iterable[tuple[bytes, str]],
        options: ValidationOptions | None = None,
    ) -> tuple[list[ValidationResult], bool]:
        """Validate (buffer, filename) pairs; returns (results, has_errors)."""
        results = [self.validate(buffer, name, options) for buffer, name in files]
        return results, any(not r.valid for r in results)

    def is_valid_file_size(self, size: int, max_size: int = MAX_FILE_SIZE) -> bool:
        return 0 < size <= max_size

    def is_valid_file_type(self, filename: str, allowed: Iterable[str] | None = None) -> bool:
        extension = get_file_extension(filename)
        return bool(extension) and extension in tuple(allowed or self._rules.supported_types)

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def _check_mime(
        self,
        buffer: bytes,
        extension: str,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        expected = self._rules.mime_type_map.get(extension)
        if not expected:
            return

        detected = sniff_mime(buffer, self._rules)
        if detected is None:
            warnings.append(f"Could not verify file type for .{extension} file")
            return

        if detected in expected:
            return

        if self._rules.is_mislabel_exception(detected, extension):
            warnings.append(
                f"File content type ({detected}) differs from expected type "
                f"for .{extension} files"
            )
        else:
            errors.append(
                f"File content ({detected}) doesn't match extension (.{extension})"
            )

    def _check_security(
        self,
        buffer: bytes,
        extension: str | None,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        if extension and extension in self._rules.dangerous_extensions:
            errors.append(f"File type '{extension}' is not allowed for security reasons")

        for sig in self._rules.executable_signatures:
            if buffer.startswith(sig.prefix):
                errors.append(f"File contains executable code ({sig.label})")
                break

        if extension == FileType.TXT.value and buffer:
            head = buffer[: self._rules.text_sample_bytes].decode("utf-8", errors="replace")
            if any(p.search(head) for p in self._rules.script_patterns):
                warnings.append("Text file appears to contain script content")

    def _check_structure(
        self,
        buffer: bytes,
        extension: str,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        if extension == FileType.PDF.value:
            if not buffer.startswith(PDF_HEADER):
                errors.append("Invalid PDF file structure")
                return
            match = _PDF_VERSION_RE.match(buffer[:20])
            if match:
                version = float(match.group(1))
                if version > self._rules.pdf_max_version:
                    warnings.append(f"PDF version {version} may not be fully supported")

        elif extension in (FileType.DOCX.value, FileType.DOC.value):
            signatures = self._rules.word_signatures + self._rules.legacy_word_signatures
            if not any(buffer.startswith(sig) for sig in signatures):
                errors.append("Invalid Word document structure")

        elif extension == FileType.RTF.value:
            if not buffer.startswith(RTF_HEADER):
                errors.append("Invalid RTF file structure")

        elif extension == FileType.TXT.value:
            sample = buffer[: self._rules.text_sample_bytes]
            ratio = control_byte_ratio(sample, self._rules.text_allowed_control)
            if ratio > self._rules.text_max_control_ratio:
                warnings.append("File may contain binary data despite .txt extension")
