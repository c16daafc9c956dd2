"""
Storage Collaborators
═════════════════════

  base.py     BlobStore / RecordStore interfaces, DocumentRecord, path helpers
  s3.py       S3BlobStore (aioboto3)
  memory.py   InMemoryBlobStore, InMemoryRecordStore
  factory.py  Backend selection from Settings
"""

from docpipeline.storage.base import BlobStore, DocumentRecord, RecordStore, StoredBlob

__all__ = ["BlobStore", "DocumentRecord", "RecordStore", "StoredBlob"]
