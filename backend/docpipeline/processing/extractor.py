"""
Text Extraction  —  Format Detection + Per-Format Extractors
═════════════════════════════════════════════════════════════

File-type resolution:
  1. Sniff the MIME type from magic bytes (shared with the validator)
  2. Fall back to the filename extension
  3. Neither resolves → UNKNOWN_FILE_TYPE

Dispatch is a plain table  FileType → extractor function.  Each extractor is
a pure function  (bytes) -> ExtractedDocument  that raises ProcessingError
with a format-specific code; none of them share state.

  pdf        pypdf (native text layer + document info), PyMuPDF fallback
  docx/doc   python-docx (body paragraphs and tables in document order)
  txt        ordered encoding attempts
  rtf        conservative, lossy control-word strip

No OCR: image-only PDFs come back empty and surface as EMPTY_DOCUMENT.
Every extraction failure is content-derived, so none is retryable.
"""

from __future__ import annotations

import asyncio
import codecs
import io
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Mapping

from docpipeline.processing.errors import ErrorCode, ProcessingError
from docpipeline.processing.rules import (
    DEFAULT_VALIDATION_RULES,
    MIME_TO_FILE_TYPE,
    OLE_COMPOUND_FILE,
    RTF_HEADER,
    SUPPORTED_FILE_TYPES,
    FileType,
    ValidationRules,
)
from docpipeline.processing.validation import get_file_extension, sniff_mime

logger = logging.getLogger(__name__)

# Ordered decode attempts for plain text; utf-16 is only tried with a BOM
TEXT_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp1252", "latin-1")

_PDF_DATE_RE = re.compile(
    r"^D?:?(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?"
)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ExtractedMetadata:
    """Best-effort document metadata; any field may be missing."""
    file_type:     str
    title:         str | None      = None
    author:        str | None      = None
    creation_date: datetime | None = None
    pages:         int | None      = None


@dataclass
class ExtractedDocument:
    """
    text      : extracted plain text (non-empty when returned by TextExtractor)
    metadata  : best-effort document metadata
    strategy  : which backend produced the text ("pypdf", "pymupdf", ...)
    """
    text:     str
    metadata: ExtractedMetadata
    strategy: str = field(default="unknown")


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def extract_pdf(data: bytes) -> ExtractedDocument:
    """
    pypdf first; PyMuPDF when pypdf raises or finds no text layer.
    Both failing → PDF_EXTRACTION_FAILED.
    """
    try:
        doc = _extract_pdf_pypdf(data)
        if doc.text.strip():
            return doc
        logger.info("pypdf found no text layer (pages=%s) — trying PyMuPDF", doc.metadata.pages)
        primary_error: Exception | None = None
    except Exception as exc:
        logger.warning("pypdf extraction failed: %s — trying PyMuPDF", exc)
        doc = None
        primary_error = exc

    try:
        fallback = _extract_pdf_pymupdf(data)
    except Exception as exc:
        if primary_error is None and doc is not None:
            # pypdf parsed the file but found nothing; report that, not the fallback error
            return doc
        raise ProcessingError(
            ErrorCode.PDF_EXTRACTION_FAILED,
            f"Failed to extract PDF: {primary_error or exc}",
            details={
                "original_error": str(primary_error or exc),
                "fallback_error": str(exc),
            },
        ) from exc

    if doc is not None and not fallback.text.strip():
        return doc
    return fallback


def _extract_pdf_pypdf(data: bytes) -> ExtractedDocument:
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    if reader.is_encrypted and not reader.decrypt(""):
        raise ProcessingError(
            ErrorCode.PDF_EXTRACTION_FAILED,
            "Failed to extract PDF: document is password protected",
            details={"encrypted": True},
        )

    pages = [page.extract_text() or "" for page in reader.pages]
    info = reader.metadata

    creation_date = None
    if info is not None:
        try:
            creation_date = info.creation_date
        except ValueError:
            creation_date = _parse_pdf_date(info.get("/CreationDate"))

    return ExtractedDocument(
        text="\n\n".join(p.strip() for p in pages if p.strip()),
        metadata=ExtractedMetadata(
            file_type=FileType.PDF.value,
            title=_clean(info.title) if info is not None else None,
            author=_clean(info.author) if info is not None else None,
            creation_date=creation_date,
            pages=len(pages),
        ),
        strategy="pypdf",
    )


def _extract_pdf_pymupdf(data: bytes) -> ExtractedDocument:
    import fitz  # PyMuPDF; imported here to avoid module-level import cost

    with fitz.open(stream=data, filetype="pdf") as doc:
        pages = [page.get_text("text") or "" for page in doc]
        info = doc.metadata or {}
        page_count = doc.page_count

    return ExtractedDocument(
        text="\n\n".join(p.strip() for p in pages if p.strip()),
        metadata=ExtractedMetadata(
            file_type=FileType.PDF.value,
            title=_clean(info.get("title")),
            author=_clean(info.get("author")),
            creation_date=_parse_pdf_date(info.get("creationDate")),
            pages=page_count,
        ),
        strategy="pymupdf",
    )


def _parse_pdf_date(value: object) -> datetime | None:
    """Parse a PDF date string ("D:YYYYMMDDHHmmSS...") leniently; UTC assumed."""
    if not isinstance(value, str):
        return None
    match = _PDF_DATE_RE.match(value.strip())
    if not match:
        return None
    year, month, day, hour, minute, second = (
        int(g) if g else default
        for g, default in zip(match.groups(), (0, 1, 1, 0, 0, 0))
    )
    try:
        return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Word
# ---------------------------------------------------------------------------

def extract_word(data: bytes) -> ExtractedDocument:
    """
    Body paragraphs and tables in document order. Table rows are rendered as
    pipe-separated lines so the chunker recognizes them as tables.
    """
    if data.startswith(OLE_COMPOUND_FILE):
        raise ProcessingError(
            ErrorCode.WORD_EXTRACTION_FAILED,
            "Failed to extract Word document: legacy binary .doc files are not "
            "supported, save the document as .docx",
            details={"format": "ole"},
        )

    try:
        import docx
        from docx.oxml.ns import qn
        from docx.table import Table
        from docx.text.paragraph import Paragraph

        document = docx.Document(io.BytesIO(data))

        blocks: list[str] = []
        for element in document.element.body.iterchildren():
            if element.tag == qn("w:p"):
                text = Paragraph(element, document).text.strip()
                if text:
                    blocks.append(text)
            elif element.tag == qn("w:tbl"):
                rows = [
                    " | ".join(cell.text.strip() for cell in row.cells)
                    for row in Table(element, document).rows
                ]
                rows = [r for r in rows if r.replace("|", "").strip()]
                if rows:
                    blocks.append("\n".join(rows))

        props = document.core_properties
        return ExtractedDocument(
            text="\n\n".join(blocks),
            metadata=ExtractedMetadata(
                file_type=FileType.DOCX.value,
                title=_clean(props.title),
                author=_clean(props.author),
                creation_date=props.created,
            ),
            strategy="python-docx",
        )
    except Exception as exc:
        raise ProcessingError.wrap(
            ErrorCode.WORD_EXTRACTION_FAILED, "Failed to extract Word document", exc,
        ) from exc


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------

def extract_plain_text(data: bytes) -> ExtractedDocument:
    encodings = TEXT_ENCODINGS
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        encodings = ("utf-16",) + encodings

    for encoding in encodings:
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError:
            continue
        logger.debug("Plain text decoded | encoding=%s chars=%d", encoding, len(text))
        return ExtractedDocument(
            text=text,
            metadata=ExtractedMetadata(file_type=FileType.TXT.value),
            strategy=f"decode:{encoding}",
        )

    raise ProcessingError(
        ErrorCode.TEXT_EXTRACTION_FAILED,
        "Failed to extract text file: could not decode with any supported encoding",
        details={"encodings": list(encodings)},
    )


# ---------------------------------------------------------------------------
# RTF
# ---------------------------------------------------------------------------

# Groups whose content is never body text
_RTF_SKIP_DESTINATIONS = frozenset({
    "fonttbl", "colortbl", "stylesheet", "info", "pict", "object",
    "header", "footer", "headerl", "headerr", "footerl", "footerr",
    "listtable", "listoverridetable", "rsidtbl", "generator", "themedata",
    "colorschememapping", "datastore", "latentstyles", "xmlnstbl",
})

_RTF_CHAR_WORDS = {
    "par": "\n\n", "sect": "\n\n", "page": "\n\n", "line": "\n", "row": "\n",
    "tab": "\t", "cell": " | ",
    "emdash": "—", "endash": "–", "bullet": "•",
    "lquote": "‘", "rquote": "’", "ldblquote": "“", "rdblquote": "”",
}

_RTF_SYMBOLS = {"~": " ", "_": "-", "\n": "\n\n", "\r": "\n\n"}

_RTF_TOKEN_RE = re.compile(
    r"\\([a-zA-Z]+)(-?\d+)? ?"      # control word
    r"|\\'([0-9a-fA-F]{2})"         # hex-escaped byte
    r"|\\([\\{}])"                  # escaped literal
    r"|\\(.)"                       # control symbol
    r"|([{}])"                      # group delimiters
    r"|([^\\{}]+)",                 # plain text
    re.DOTALL,
)


def extract_rtf(data: bytes) -> ExtractedDocument:
    """
    Lossy: formatting, embedded objects and field results are discarded.
    Only a missing `{\\rtf` header is an error.
    """
    if not data.lstrip().startswith(RTF_HEADER):
        raise ProcessingError(
            ErrorCode.RTF_EXTRACTION_FAILED,
            "Failed to extract RTF file: missing {\\rtf header",
            details={"header": data[:8].decode("latin-1")},
        )
    try:
        text = _rtf_to_text(data.decode("latin-1"))
    except Exception as exc:
        raise ProcessingError.wrap(
            ErrorCode.RTF_EXTRACTION_FAILED, "Failed to extract RTF file", exc,
        ) from exc

    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    return ExtractedDocument(
        text=text,
        metadata=ExtractedMetadata(file_type=FileType.RTF.value),
        strategy="rtf-strip",
    )


def _rtf_to_text(raw: str) -> str:
    out: list[str] = []
    stack: list[bool] = []
    skipping = False
    group_start = False
    pending_fallback = 0   # chars to drop after a \uN escape

    for m in _RTF_TOKEN_RE.finditer(raw):
        word, arg, hexcode, escaped, symbol, brace, text = m.groups()

        if brace == "{":
            stack.append(skipping)
            group_start = True
            continue
        if brace == "}":
            skipping = stack.pop() if stack else False
            group_start = False
            continue

        if group_start:
            group_start = False
            if symbol == "*" or (word and word in _RTF_SKIP_DESTINATIONS):
                skipping = True
        if skipping:
            continue

        if word:
            if word == "u" and arg:
                code = int(arg)
                out.append(chr(code + 65536 if code < 0 else code))
                pending_fallback = 1
            elif word in _RTF_CHAR_WORDS:
                out.append(_RTF_CHAR_WORDS[word])
        elif hexcode:
            if pending_fallback:
                pending_fallback -= 1
            else:
                out.append(bytes.fromhex(hexcode).decode("cp1252", errors="replace"))
        elif escaped:
            out.append(escaped)
        elif symbol:
            out.append(_RTF_SYMBOLS.get(symbol, ""))
        elif text:
            chunk = text.replace("\r", "").replace("\n", "")
            if pending_fallback and chunk:
                chunk = chunk[pending_fallback:]
                pending_fallback = 0
            out.append(chunk)

    return "".join(out)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

Extractor = Callable[[bytes], ExtractedDocument]

DEFAULT_EXTRACTORS: Mapping[FileType, Extractor] = {
    FileType.PDF:  extract_pdf,
    FileType.DOCX: extract_word,
    FileType.DOC:  extract_word,
    FileType.TXT:  extract_plain_text,
    FileType.RTF:  extract_rtf,
}


class TextExtractor:
    """
    Stateless extractor — resolve the file type, dispatch, enforce non-empty text.

    Usage:
        extractor = TextExtractor()
        doc = extractor.extract(data, "contract.pdf")          # blocking
        doc = await extractor.extract_async(data, "contract.pdf")
    """

    def __init__(
        self,
        extractors: Mapping[FileType, Extractor] | None = None,
        rules: ValidationRules = DEFAULT_VALIDATION_RULES,
    ) -> None:
        self._extractors = dict(extractors or DEFAULT_EXTRACTORS)
        self._rules = rules

    def resolve_file_type(self, buffer: bytes, filename: str) -> FileType:
        try:
            detected = sniff_mime(buffer, self._rules)
        except Exception as exc:
            raise ProcessingError.wrap(
                ErrorCode.FILE_TYPE_DETECTION_FAILED,
                "Failed to detect file type", exc, filename=filename,
            ) from exc

        if detected in MIME_TO_FILE_TYPE:
            return MIME_TO_FILE_TYPE[detected]

        extension = get_file_extension(filename or "")
        if extension in SUPPORTED_FILE_TYPES:
            return FileType(extension)

        raise ProcessingError(
            ErrorCode.UNKNOWN_FILE_TYPE,
            f"Cannot determine file type for {filename}",
            details={"filename": filename, "detected_mime": detected, "extension": extension},
        )

    def extract(self, buffer: bytes, filename: str) -> ExtractedDocument:
        t0 = time.monotonic()
        file_type = self.resolve_file_type(buffer, filename)

        extractor = self._extractors.get(file_type)
        if extractor is None:
            raise ProcessingError(
                ErrorCode.UNSUPPORTED_FILE_TYPE,
                f"File type {file_type.value} is not supported",
                details={"file_type": file_type.value},
            )

        try:
            doc = extractor(buffer)
        except ProcessingError:
            raise
        except Exception as exc:
            raise ProcessingError.wrap(
                ErrorCode.EXTRACTION_FAILED, "Failed to extract text", exc, filename=filename,
            ) from exc

        if not doc.text or not doc.text.strip():
            raise ProcessingError(
                ErrorCode.EMPTY_DOCUMENT,
                "No text content found in document",
                details={"file_type": file_type.value, "strategy": doc.strategy},
            )

        logger.info(
            "Extraction | file=%s type=%s strategy=%s chars=%d pages=%s elapsed_ms=%.0f",
            filename, file_type.value, doc.strategy, len(doc.text),
            doc.metadata.pages, (time.monotonic() - t0) * 1000,
        )
        return doc

    async def extract_async(self, buffer: bytes, filename: str) -> ExtractedDocument:
        """Run the blocking parsers in the default thread executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.extract, buffer, filename)


def _clean(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None
