"""
Storage Factory

Selects the blob store backend (s3 | memory) based on config.
The rest of the app only imports these functions, never the concrete
classes directly.
"""

from __future__ import annotations

from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.storage.base import BlobStore, RecordStore


def get_blob_store(settings: Settings | None = None) -> BlobStore:
    cfg = settings or default_settings
    backend = cfg.blob_store_backend.lower()

    if backend == "s3":
        from docpipeline.storage.s3 import S3BlobStore
        return S3BlobStore(
            bucket=cfg.s3_bucket,
            region=cfg.aws_region,
            endpoint_url=cfg.s3_endpoint_url or None,
            public_base_url=cfg.s3_public_base_url or None,
        )

    if backend == "memory":
        from docpipeline.storage.memory import InMemoryBlobStore
        return InMemoryBlobStore(public_base_url=cfg.s3_public_base_url)

    raise ValueError(
        f"Unknown blob store backend: '{backend}'. "
        f"Valid options: 's3', 'memory'"
    )


def get_record_store(settings: Settings | None = None) -> RecordStore:
    """Only an in-memory record store ships with the service."""
    from docpipeline.storage.memory import InMemoryRecordStore
    return InMemoryRecordStore()
