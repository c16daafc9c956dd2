"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : sample file bytes, processor, in-memory stores, app, async_client

Environment strategy:
  - Settings come from explicit constructor arguments; no .env is read.
  - Blob and record stores are the in-memory backends.
  - S3 tests pass a mocked aioboto3 session — no AWS or LocalStack needed.
  - Sample PDF and DOCX files are real documents built in-process, so the
    extractors run against genuine pypdf / python-docx input.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only (fast, no I/O)
  pytest -m integration           # API tests over ASGITransport
  pytest backend/tests/unit/test_chunking.py
"""

from __future__ import annotations

import io
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("APP_ENV",            "development")
os.environ.setdefault("BLOB_STORE_BACKEND", "memory")
os.environ.setdefault("DEBUG",              "false")


# ─────────────────────────────────────────────────────────────────────────────
# Document builders
# ─────────────────────────────────────────────────────────────────────────────

def _pdf_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(
    lines:         list[str],
    title:         str | None = None,
    author:        str | None = None,
    creation_date: str | None = "D:20240115103000+00'00'",
    version:       str = "1.4",
) -> bytes:
    """
    Single-page PDF with a Helvetica text layer and a correct xref table.
    Pass lines=[] for a page without any text.
    """
    ops = ["BT", "/F1 12 Tf", "72 720 Td"]
    for i, line in enumerate(lines):
        if i:
            ops.append("0 -16 Td")
        ops.append(f"({_pdf_escape(line)}) Tj")
    ops.append("ET")
    stream = "\n".join(ops).encode("latin-1")

    info = []
    if title:
        info.append(f"/Title ({_pdf_escape(title)})")
    if author:
        info.append(f"/Author ({_pdf_escape(author)})")
    if creation_date:
        info.append(f"/CreationDate ({creation_date})")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        ("<< " + " ".join(info) + " >>").encode("latin-1"),
    ]

    out = bytearray(b"%PDF-" + version.encode() + b"\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += (
        b"trailer\n<< /Size %d /Root 1 0 R /Info %d 0 R >>\nstartxref\n%d\n%%%%EOF\n"
        % (len(objects) + 1, len(objects), xref_at)
    )
    return bytes(out)


def build_docx() -> bytes:
    """Heading, paragraph, 2x2 table, paragraph; title/author core properties."""
    import docx

    document = docx.Document()
    document.core_properties.title = "Service Agreement"
    document.core_properties.author = "Legal Team"
    document.add_heading("Service Agreement", level=1)
    document.add_paragraph("The supplier shall deliver the services described below.")
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Party"
    table.cell(0, 1).text = "Role"
    table.cell(1, 0).text = "Acme Corp"
    table.cell(1, 1).text = "Supplier"
    document.add_paragraph("Payment is due within thirty days of the invoice date.")

    buf = io.BytesIO()
    document.save(buf)
    return buf.getvalue()


def paragraph(words: int, seed: str = "word") -> str:
    """One line of `words` distinct words ending in a period."""
    return " ".join(f"{seed}{i}" for i in range(words)) + "."


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def sample_pdf_bytes() -> bytes:
    return build_pdf(
        [
            "Quarterly Report",
            "Quarterly revenue grew by twelve percent.",
            "Operating costs remained flat.",
        ],
        title="Quarterly Report",
        author="Finance Team",
    )


@pytest.fixture
def empty_pdf_bytes() -> bytes:
    """Valid PDF structure, no text layer (a scanned page, as far as we can tell)."""
    return build_pdf([], creation_date=None)


@pytest.fixture
def sample_docx_bytes() -> bytes:
    return build_docx()


@pytest.fixture
def sample_txt_bytes() -> bytes:
    return (
        b"Master Services Agreement\n\n"
        b"This agreement is made between Acme Corp and Globex Inc. "
        b"It covers consulting, support and maintenance services.\n\n"
        b"Payment Terms\n\n"
        b"Invoices are payable within thirty days. Late payments accrue interest.\n"
    )


@pytest.fixture
def sample_rtf_bytes() -> bytes:
    return (
        rb"{\rtf1\ansi{\fonttbl\f0\fswiss Helvetica;}\f0\pard "
        rb"Hello {\b world}.\par Second paragraph caf\'e9.\par}"
    )


@pytest.fixture
def ole_doc_bytes() -> bytes:
    """Legacy binary Word header (OLE compound file) followed by padding."""
    return b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 504


@pytest.fixture
def exe_bytes() -> bytes:
    """Windows PE executable — must be rejected whatever its extension."""
    return b"MZ\x90\x00" + b"\x00" * 100


@pytest.fixture
def png_bytes() -> bytes:
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# ─────────────────────────────────────────────────────────────────────────────
# Components
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings():
    from docpipeline.core.config import Settings
    return Settings(
        app_env="development",
        blob_store_backend="memory",
        max_file_size=1024 * 1024,
        max_tokens=1500,
        overlap_tokens=150,
        min_chunk_size=1,
        progress_store_max_entries=50,
    )


@pytest.fixture
def processor(test_settings):
    from docpipeline.services.processing import DocumentProcessor
    return DocumentProcessor.from_settings(test_settings)


@pytest.fixture
def blob_store():
    from docpipeline.storage.memory import InMemoryBlobStore
    return InMemoryBlobStore()


@pytest.fixture
def record_store():
    from docpipeline.storage.memory import InMemoryRecordStore
    return InMemoryRecordStore()


@pytest.fixture
def progress_store():
    from docpipeline.services.progress import ProgressStore
    return ProgressStore(max_entries=50)


@pytest.fixture
def event_recorder():
    """Callable progress observer that keeps every event it receives."""
    class _Recorder:
        def __init__(self) -> None:
            self.events = []

        def __call__(self, event) -> None:
            self.events.append(event)

        @property
        def stages(self) -> list[str]:
            return [e.stage.value for e in self.events]

    return _Recorder()


# ─────────────────────────────────────────────────────────────────────────────
# Application
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_app(blob_store, record_store, progress_store, test_settings):
    """Factory: build the FastAPI app around the in-memory collaborators."""
    from docpipeline.main import create_app

    def _build(settings=None):
        return create_app(
            settings or test_settings,
            blob_store=blob_store,
            record_store=record_store,
            progress_store=progress_store,
        )
    return _build


@pytest_asyncio.fixture
async def async_client(make_app) -> AsyncGenerator[AsyncClient, None]:
    app = make_app()
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
