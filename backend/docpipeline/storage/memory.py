"""
In-memory storage backends for development and tests.

State lives in plain dicts on the instance; nothing survives a restart.
Single event loop only.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from docpipeline.schemas.documents import DocumentChunk
from docpipeline.storage.base import BlobStore, DocumentRecord, RecordStore, StoredBlob

logger = logging.getLogger(__name__)


class InMemoryBlobStore(BlobStore):

    def __init__(self, public_base_url: str = "") -> None:
        self._objects: dict[str, bytes] = {}
        self._content_types: dict[str, str | None] = {}
        self._public_base_url = public_base_url.rstrip("/")

    async def upload(
        self,
        data:         bytes,
        path:         str,
        content_type: str | None = None,
    ) -> StoredBlob:
        self._objects[path] = bytes(data)
        self._content_types[path] = content_type
        logger.debug("Memory blob upload | path=%s size=%d", path, len(data))
        public_url = f"{self._public_base_url}/{path}" if self._public_base_url else None
        return StoredBlob(path=path, public_url=public_url)

    async def download(self, path: str) -> bytes:
        try:
            return self._objects[path]
        except KeyError:
            raise FileNotFoundError(f"Object not found: {path}") from None

    async def delete(self, path: str) -> bool:
        self._content_types.pop(path, None)
        return self._objects.pop(path, None) is not None

    def __contains__(self, path: object) -> bool:
        return path in self._objects


class InMemoryRecordStore(RecordStore):

    def __init__(self) -> None:
        self._documents: dict[str, DocumentRecord] = {}
        self._chunks: dict[str, list[DocumentChunk]] = {}

    async def create_document(self, record: DocumentRecord) -> DocumentRecord:
        if record.id in self._documents:
            raise ValueError(f"Document already exists: {record.id}")
        self._documents[record.id] = record
        return record

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        return self._documents.get(document_id)

    async def update_document(self, document_id: str, **changes: Any) -> DocumentRecord:
        try:
            current = self._documents[document_id]
        except KeyError:
            raise KeyError(f"Document not found: {document_id}") from None
        updated = dataclasses.replace(current, **changes)
        self._documents[document_id] = updated
        return updated

    async def save_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> int:
        if document_id not in self._documents:
            raise KeyError(f"Document not found: {document_id}")
        self._chunks[document_id] = list(chunks)
        return len(chunks)

    async def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        return list(self._chunks.get(document_id, []))
