"""
Composed FastAPI Dependencies

Route handlers import from here — never from storage/factory or the
service modules directly. Every collaborator is created once by
create_app() and held on app.state, so tests can inject fakes by passing
them to the factory.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from docpipeline.core.config import Settings
from docpipeline.services.processing import DocumentProcessor
from docpipeline.services.progress import ProgressStore
from docpipeline.services.status import ProgressEstimator
from docpipeline.storage.base import BlobStore, RecordStore


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_processor(request: Request) -> DocumentProcessor:
    return request.app.state.processor


def get_progress_store(request: Request) -> ProgressStore:
    return request.app.state.progress_store


def get_estimator(request: Request) -> ProgressEstimator:
    return request.app.state.estimator


# ---------------------------------------------------------------------------
# Type aliases for clean route signatures
# ---------------------------------------------------------------------------

AppSettings   = Annotated[Settings,          Depends(get_app_settings)]
Blobs         = Annotated[BlobStore,         Depends(get_blob_store)]
Records       = Annotated[RecordStore,       Depends(get_record_store)]
Processor     = Annotated[DocumentProcessor, Depends(get_processor)]
LiveProgress  = Annotated[ProgressStore,     Depends(get_progress_store)]
Estimator     = Annotated[ProgressEstimator, Depends(get_estimator)]
