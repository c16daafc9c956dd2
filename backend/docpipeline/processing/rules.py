"""
Heuristic Rule Tables
═════════════════════

Every signature list, denylist and pattern table used by the validator,
the extractor and the chunker lives here as immutable data. Components
receive a rules object at construction time (defaulting to the module-level
instances below), so the tables can be inspected, tested and extended
without touching control flow.

  ValidationRules   magic signatures, MIME expectations, security denylists
  ChunkingRules     semantic-type patterns, sentence abbreviation list
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


# ---------------------------------------------------------------------------
# Supported formats
# ---------------------------------------------------------------------------

class FileType(str, Enum):
    PDF  = "pdf"
    DOCX = "docx"
    DOC  = "doc"
    TXT  = "txt"
    RTF  = "rtf"


SUPPORTED_FILE_TYPES: tuple[str, ...] = tuple(t.value for t in FileType)

MAX_FILE_SIZE: int = 100 * 1024 * 1024   # 100 MB

MIME_PDF  = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_DOC  = "application/msword"
MIME_TXT  = "text/plain"
MIME_RTF  = "application/rtf"
MIME_ZIP  = "application/zip"
MIME_OCTET_STREAM = "application/octet-stream"

MIME_TYPE_MAP: Mapping[str, frozenset[str]] = MappingProxyType({
    FileType.PDF.value:  frozenset({MIME_PDF}),
    FileType.DOCX.value: frozenset({MIME_DOCX}),
    FileType.DOC.value:  frozenset({MIME_DOC}),
    FileType.TXT.value:  frozenset({MIME_TXT}),
    FileType.RTF.value:  frozenset({MIME_RTF, "text/rtf"}),
})

# Sniffed MIME → file type, used by the extractor before the extension fallback
MIME_TO_FILE_TYPE: Mapping[str, FileType] = MappingProxyType({
    MIME_PDF:   FileType.PDF,
    MIME_DOCX:  FileType.DOCX,
    MIME_DOC:   FileType.DOC,
    MIME_TXT:   FileType.TXT,
    MIME_RTF:   FileType.RTF,
    "text/rtf": FileType.RTF,
})


# ---------------------------------------------------------------------------
# Magic byte signatures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MagicSignature:
    prefix: bytes
    mime:   str
    label:  str


ZIP_LOCAL_HEADER  = b"PK\x03\x04"
ZIP_EMPTY_ARCHIVE = b"PK\x05\x06"
ZIP_SPANNED       = b"PK\x07\x08"
OLE_COMPOUND_FILE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
PDF_HEADER        = b"%PDF"
RTF_HEADER        = b"{\\rtf"

# Marker inside an OOXML package that distinguishes .docx from a plain ZIP
DOCX_PART_MARKER = b"word/"

# Order matters: first match wins
CONTENT_SIGNATURES: tuple[MagicSignature, ...] = (
    MagicSignature(PDF_HEADER,        MIME_PDF,  "PDF document"),
    MagicSignature(RTF_HEADER,        MIME_RTF,  "Rich Text Format"),
    MagicSignature(OLE_COMPOUND_FILE, MIME_DOC,  "OLE compound file"),
    MagicSignature(ZIP_LOCAL_HEADER,  MIME_ZIP,  "ZIP archive"),
    MagicSignature(ZIP_EMPTY_ARCHIVE, MIME_ZIP,  "ZIP archive (empty)"),
    MagicSignature(ZIP_SPANNED,       MIME_ZIP,  "ZIP archive (spanned)"),
    MagicSignature(b"\x7fELF",             "application/x-elf",          "ELF (Linux executable)"),
    MagicSignature(b"\xfe\xed\xfa\xce",    "application/x-mach-binary",  "Mach-O (macOS executable)"),
    MagicSignature(b"\xce\xfa\xed\xfe",    "application/x-mach-binary",  "Mach-O (macOS executable)"),
    MagicSignature(b"\xfe\xed\xfa\xcf",    "application/x-mach-binary",  "Mach-O (macOS executable)"),
    MagicSignature(b"\xcf\xfa\xed\xfe",    "application/x-mach-binary",  "Mach-O (macOS executable)"),
    MagicSignature(b"MZ",                  "application/x-msdownload",   "PE (Windows executable)"),
    MagicSignature(b"\x89PNG\r\n\x1a\n",   "image/png",                  "PNG image"),
    MagicSignature(b"\xff\xd8\xff",        "image/jpeg",                 "JPEG image"),
    MagicSignature(b"GIF8",                "image/gif",                  "GIF image"),
    MagicSignature(b"\x1f\x8b",            "application/gzip",           "GZIP archive"),
)

EXECUTABLE_SIGNATURES: tuple[MagicSignature, ...] = tuple(
    sig for sig in CONTENT_SIGNATURES
    if sig.mime in {"application/x-msdownload", "application/x-elf", "application/x-mach-binary"}
)


# ---------------------------------------------------------------------------
# Validation rules
# ---------------------------------------------------------------------------

DANGEROUS_EXTENSIONS: frozenset[str] = frozenset({
    "exe", "bat", "cmd", "com", "scr", "pif", "vbs", "js", "jar", "app",
    "dmg", "pkg", "deb", "rpm", "sh", "bash", "ps1", "msi", "bin", "run",
    "action", "workflow",
})


@dataclass(frozen=True)
class MislabelRule:
    """A sniffed MIME that is tolerated (warning only) for the given extensions."""
    mime:       str
    extensions: frozenset[str]


# Sniffers report these for small or unusual-but-valid PDF/DOCX files
MISLABEL_EXCEPTIONS: tuple[MislabelRule, ...] = (
    MislabelRule(MIME_OCTET_STREAM, frozenset({"pdf", "docx"})),
    MislabelRule(MIME_TXT,          frozenset({"pdf", "docx"})),
)

SCRIPT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*<script", re.IGNORECASE),
    re.compile(r"^\s*#!\s*/bin"),
    re.compile(r"^\s*@echo\s+off", re.IGNORECASE),
    re.compile(r"^\s*powershell", re.IGNORECASE),
)

TEXT_SAMPLE_BYTES = 1000
TEXT_ALLOWED_CONTROL_BYTES: frozenset[int] = frozenset({0x09, 0x0A, 0x0D})
TEXT_MAX_CONTROL_RATIO = 0.1

PDF_MAX_SUPPORTED_VERSION = 2.0


@dataclass(frozen=True)
class ValidationRules:
    supported_types:       tuple[str, ...]                  = SUPPORTED_FILE_TYPES
    mime_type_map:         Mapping[str, frozenset[str]]     = field(
        default_factory=lambda: MIME_TYPE_MAP, hash=False,
    )
    content_signatures:    tuple[MagicSignature, ...]       = CONTENT_SIGNATURES
    executable_signatures: tuple[MagicSignature, ...]       = EXECUTABLE_SIGNATURES
    dangerous_extensions:  frozenset[str]                   = DANGEROUS_EXTENSIONS
    mislabel_exceptions:   tuple[MislabelRule, ...]         = MISLABEL_EXCEPTIONS
    script_patterns:       tuple[re.Pattern[str], ...]      = SCRIPT_PATTERNS
    word_signatures:       tuple[bytes, ...]                = (ZIP_LOCAL_HEADER, ZIP_EMPTY_ARCHIVE, ZIP_SPANNED)
    legacy_word_signatures: tuple[bytes, ...]               = (OLE_COMPOUND_FILE,)
    text_sample_bytes:     int                              = TEXT_SAMPLE_BYTES
    text_allowed_control:  frozenset[int]                   = TEXT_ALLOWED_CONTROL_BYTES
    text_max_control_ratio: float                           = TEXT_MAX_CONTROL_RATIO
    pdf_max_version:       float                            = PDF_MAX_SUPPORTED_VERSION

    def is_mislabel_exception(self, mime: str, extension: str) -> bool:
        return any(
            rule.mime == mime and extension in rule.extensions
            for rule in self.mislabel_exceptions
        )


DEFAULT_VALIDATION_RULES = ValidationRules()


# ---------------------------------------------------------------------------
# Chunking rules
# ---------------------------------------------------------------------------

HEADING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^#{1,6}\s+\S"),                      # Markdown headers
    re.compile(r"^[A-Z][A-Z0-9\s:&/-]{2,}$"),          # ALL CAPS short lines
    re.compile(r"^\d+(?:\.\d+)*\.?\s+[A-Z][^.!?]*$"),  # Numbered section titles
    re.compile(r"^[A-Z][^.!?:;,]*$"),                 # Capitalised line, no punctuation
)
HEADING_MAX_CHARS = 100

LIST_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^[-*+]\s+"),            # Bullet points
    re.compile(r"^\d+[.)]\s+"),          # Numbered lists
    re.compile(r"^[a-z][.)]\s+", re.IGNORECASE),   # Letter lists
    re.compile(r"^[•◦▪]\s*"),        # Unicode bullets
    re.compile(r"^\([a-z0-9]+\)\s+", re.IGNORECASE),  # Parenthetical lists
)
LIST_MIN_MARKED_LINES = 2

TABLE_MIN_ROWS = 2

SENTENCE_ABBREVIATIONS: tuple[str, ...] = (
    "Dr", "Prof", "Mr", "Mrs", "Ms", "Jr", "Sr", "St",
    "vs", "etc", "e.g", "i.e", "cf", "al", "approx",
    "Inc", "Ltd", "Co", "Corp", "No", "Fig",
)


@dataclass(frozen=True)
class ChunkingRules:
    heading_patterns:   tuple[re.Pattern[str], ...] = HEADING_PATTERNS
    heading_max_chars:  int                         = HEADING_MAX_CHARS
    list_patterns:      tuple[re.Pattern[str], ...] = LIST_PATTERNS
    list_min_lines:     int                         = LIST_MIN_MARKED_LINES
    table_min_rows:     int                         = TABLE_MIN_ROWS
    abbreviations:      tuple[str, ...]             = SENTENCE_ABBREVIATIONS
    _abbreviation_set:  frozenset[str]              = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "_abbreviation_set",
            frozenset(a.lower() for a in self.abbreviations),
        )

    def is_abbreviation(self, word: str) -> bool:
        """`word` is the token preceding a period, without the period."""
        return word.lower() in self._abbreviation_set


DEFAULT_CHUNKING_RULES = ChunkingRules()
