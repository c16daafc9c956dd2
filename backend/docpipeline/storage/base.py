"""
Storage Collaborators — Abstract Base

Blob storage (raw uploaded bytes) and record storage (document rows and
their chunks) sit outside the processing core. The API layer only speaks
these two interfaces, so backends are swappable without touching routes.

Contract (enforced by ALL implementations):
  - Blob paths are built server-side by build_blob_path(); a client never
    supplies a raw storage key.
  - Records are keyed by an externally assigned document id.
  - download() of a missing path raises FileNotFoundError.
  - update_document() of a missing id raises KeyError.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from docpipeline.schemas.documents import (
    DocumentChunk,
    DocumentStatus,
    ProcessingErrorInfo,
)


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoredBlob:
    """Returned by BlobStore.upload()."""
    path:       str
    public_url: str | None = None


@dataclass
class DocumentRecord:
    """One persisted document row."""
    id:                str
    filename:          str
    original_filename: str
    file_type:         str
    file_size:         int
    file_hash:         str
    storage_path:      str
    public_url:        str | None = None
    status:            DocumentStatus = DocumentStatus.UPLOADED
    warnings:          list[str] = field(default_factory=list)
    created_at:        datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    processing_started_at:   datetime | None = None
    processing_completed_at: datetime | None = None
    chunk_count:       int = 0
    extracted_text:    str | None = None
    title:             str | None = None
    author:            str | None = None
    document_date:     datetime | None = None
    error:             ProcessingErrorInfo | None = None


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

def sanitize_filename(filename: str) -> str:
    """
    Strip path components and replace unsafe characters.
    Returns only the basename with storage-safe characters.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename)
    return safe[:200] or "upload"


def build_blob_path(
    prefix:      str,
    document_id: str,
    filename:    str,
    now:         datetime | None = None,
) -> str:
    """
    Pattern:  <prefix>/<YYYY-MM-DD>/<document_id>.<ext>

    Only the extension of the client filename is used, so uploads with the
    same name never collide.
    """
    day = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    safe = sanitize_filename(filename)
    ext = safe.rsplit(".", 1)[-1].lower() if "." in safe else "bin"
    return f"{prefix.strip('/')}/{day}/{document_id}.{ext}"


# ---------------------------------------------------------------------------
# Abstract interfaces
# ---------------------------------------------------------------------------

class BlobStore(ABC):

    @abstractmethod
    async def upload(
        self,
        data:         bytes,
        path:         str,
        content_type: str | None = None,
    ) -> StoredBlob:
        """Store `data` at `path`, overwriting any existing object."""

    @abstractmethod
    async def download(self, path: str) -> bytes:
        """Raises FileNotFoundError when nothing is stored at `path`."""

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """True when an object was removed."""


class RecordStore(ABC):

    @abstractmethod
    async def create_document(self, record: DocumentRecord) -> DocumentRecord:
        ...

    @abstractmethod
    async def get_document(self, document_id: str) -> DocumentRecord | None:
        ...

    @abstractmethod
    async def update_document(self, document_id: str, **changes: Any) -> DocumentRecord:
        ...

    @abstractmethod
    async def save_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> int:
        """Replace the stored chunks for a document; returns the count saved."""

    @abstractmethod
    async def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        ...
