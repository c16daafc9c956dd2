"""
Integration Tests — Document Processing API
════════════════════════════════════════════
Full HTTP request → route → processor → in-memory stores, over ASGITransport.

Background processing: Starlette runs BackgroundTasks before the ASGI call
returns, so by the time `client.post(.../process)` resolves the job has
finished and its final event is in the ProgressStore.

Coverage targets:
  ✅ POST /upload: 201 + headers, 400 validation failure, 400 missing file, 413 oversized
  ✅ POST /{id}/process: 202 then completed, 404, 409 while processing,
     200 when already completed
  ✅ GET /{id}/status: estimator fallback after upload, live event after processing,
     failed event with classified error, 404
  ✅ GET /{id}/chunks: persisted chunks, 404
  ✅ /health, X-Request-ID propagation; generated ids match between body and header
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from docpipeline.core.config import Settings
from docpipeline.schemas.documents import DocumentStatus

UPLOAD_URL = "/api/v1/documents/upload"


async def _upload(client: AsyncClient, content: bytes, filename: str, **kwargs):
    return await client.post(
        UPLOAD_URL,
        files={"file": (filename, content, "application/octet-stream")},
        **kwargs,
    )


async def _upload_ok(client: AsyncClient, content: bytes, filename: str) -> str:
    resp = await _upload(client, content, filename)
    assert resp.status_code == 201, resp.text
    return resp.json()["document_id"]


# ─────────────────────────────────────────────────────────────────────────────
# Upload
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
@pytest.mark.api
class TestUploadEndpoint:

    async def test_upload_valid_txt(self, async_client, blob_store, record_store, sample_txt_bytes):
        resp = await _upload(async_client, sample_txt_bytes, "agreement.txt")

        assert resp.status_code == 201
        body = resp.json()
        document_id = body["document_id"]
        assert body["status"] == "uploaded"
        assert body["filename"] == "agreement.txt"
        assert body["file_type"] == "txt"
        assert body["size_bytes"] == len(sample_txt_bytes)
        assert len(body["file_hash"]) == 64
        assert body["storage_path"].startswith("documents/")
        assert body["storage_path"].endswith(f"{document_id}.txt")

        assert resp.headers["X-Document-ID"] == document_id
        assert resp.headers["Location"] == f"/api/v1/documents/{document_id}/status"

        assert body["storage_path"] in blob_store
        record = await record_store.get_document(document_id)
        assert record.status is DocumentStatus.UPLOADED

    async def test_upload_valid_pdf(self, async_client, sample_pdf_bytes):
        resp = await _upload(async_client, sample_pdf_bytes, "report.pdf")
        assert resp.status_code == 201
        assert resp.json()["file_type"] == "pdf"

    async def test_executable_disguised_as_pdf(self, async_client, blob_store, exe_bytes):
        resp = await _upload(async_client, exe_bytes, "invoice.pdf")

        assert resp.status_code == 400
        body = resp.json()
        assert body["error_code"] == "VALIDATION_FAILED"
        assert body["retryable"] is False
        assert body["request_id"]
        assert any("executable code" in d["message"] for d in body["details"])
        assert all(d["field"] == "file" for d in body["details"])

    async def test_missing_file(self, async_client):
        resp = await async_client.post(UPLOAD_URL, data={"note": "no file here"})
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "MISSING_FILE"

    async def test_oversized_file(self, make_app):
        app = make_app(Settings(max_file_size=1024, blob_store_backend="memory"))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await _upload(client, b"a" * 2048, "big.txt")

        assert resp.status_code == 413
        assert resp.json()["error_code"] == "FILE_TOO_LARGE"

    async def test_request_id_is_echoed(self, async_client, exe_bytes):
        resp = await _upload(async_client, exe_bytes, "x.pdf", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.json()["request_id"] == "req-123"

    async def test_generated_request_id_matches_header(self, async_client, exe_bytes):
        resp = await _upload(async_client, exe_bytes, "x.pdf")
        assert resp.status_code == 400
        assert resp.json()["request_id"] == resp.headers["X-Request-ID"]

    async def test_not_found_request_id_matches_header(self, async_client):
        resp = await async_client.get("/api/v1/documents/does-not-exist/status")
        assert resp.json()["request_id"] == resp.headers["X-Request-ID"]


# ─────────────────────────────────────────────────────────────────────────────
# Process + status + chunks
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
@pytest.mark.api
class TestProcessingFlow:

    async def test_status_after_upload_uses_estimate(self, async_client, sample_txt_bytes):
        document_id = await _upload_ok(async_client, sample_txt_bytes, "a.txt")

        resp = await async_client.get(f"/api/v1/documents/{document_id}/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["stage"] == "uploading"
        assert body["progress"] == 100
        assert body["estimated_time_remaining"] == 30

    async def test_process_then_poll_then_fetch_chunks(self, async_client, record_store, sample_txt_bytes):
        document_id = await _upload_ok(async_client, sample_txt_bytes, "agreement.txt")

        resp = await async_client.post(f"/api/v1/documents/{document_id}/process")
        assert resp.status_code == 202
        assert resp.json()["status"] == "processing"
        assert resp.json()["message"] == "Document processing started"

        status_resp = await async_client.get(f"/api/v1/documents/{document_id}/status")
        status_body = status_resp.json()
        assert status_body["stage"] == "completed"
        assert status_body["progress"] == 100

        chunks_resp = await async_client.get(f"/api/v1/documents/{document_id}/chunks")
        assert chunks_resp.status_code == 200
        chunks_body = chunks_resp.json()
        assert chunks_body["chunk_count"] >= 1
        assert chunks_body["chunks"][0]["index"] == 0
        assert "Master Services Agreement" in chunks_body["chunks"][0]["content"]

        record = await record_store.get_document(document_id)
        assert record.status is DocumentStatus.COMPLETED
        assert record.chunk_count == chunks_body["chunk_count"]

    async def test_process_docx(self, async_client, sample_docx_bytes):
        document_id = await _upload_ok(async_client, sample_docx_bytes, "agreement.docx")
        await async_client.post(f"/api/v1/documents/{document_id}/process")

        chunks = (await async_client.get(f"/api/v1/documents/{document_id}/chunks")).json()["chunks"]
        assert any("Party | Role" in c["content"] for c in chunks)

    async def test_already_completed_returns_200(self, async_client, sample_txt_bytes):
        document_id = await _upload_ok(async_client, sample_txt_bytes, "a.txt")
        await async_client.post(f"/api/v1/documents/{document_id}/process")

        resp = await async_client.post(f"/api/v1/documents/{document_id}/process")

        assert resp.status_code == 200
        assert resp.json()["message"] == "Document has already been processed"
        assert resp.json()["chunk_count"] >= 1

    async def test_conflict_while_processing(self, async_client, record_store, sample_txt_bytes):
        document_id = await _upload_ok(async_client, sample_txt_bytes, "a.txt")
        await record_store.update_document(document_id, status=DocumentStatus.PROCESSING)

        resp = await async_client.post(f"/api/v1/documents/{document_id}/process")

        assert resp.status_code == 409
        assert resp.json()["error_code"] == "ALREADY_PROCESSING"

    async def test_failed_processing_is_reported(self, async_client, record_store):
        document_id = await _upload_ok(async_client, b"   \n\n   ", "blank.txt")

        resp = await async_client.post(f"/api/v1/documents/{document_id}/process")
        assert resp.status_code == 202

        body = (await async_client.get(f"/api/v1/documents/{document_id}/status")).json()
        assert body["stage"] == "failed"
        assert body["error"]["code"] == "EMPTY_DOCUMENT"
        assert body["error"]["retryable"] is False

        record = await record_store.get_document(document_id)
        assert record.status is DocumentStatus.FAILED

    async def test_failed_document_can_be_reprocessed(self, async_client, blob_store, record_store, sample_txt_bytes):
        document_id = await _upload_ok(async_client, sample_txt_bytes, "a.txt")
        record = await record_store.get_document(document_id)
        stored = await blob_store.download(record.storage_path)
        await blob_store.delete(record.storage_path)

        await async_client.post(f"/api/v1/documents/{document_id}/process")
        failed = (await async_client.get(f"/api/v1/documents/{document_id}/status")).json()
        assert failed["error"]["code"] == "PROCESSING_FAILED"

        await blob_store.upload(stored, record.storage_path)
        resp = await async_client.post(f"/api/v1/documents/{document_id}/process")
        assert resp.status_code == 202
        done = (await async_client.get(f"/api/v1/documents/{document_id}/status")).json()
        assert done["stage"] == "completed"

    @pytest.mark.parametrize("suffix,method", [
        ("process", "post"),
        ("status",  "get"),
        ("chunks",  "get"),
    ])
    async def test_unknown_document_is_404(self, async_client, suffix, method):
        resp = await getattr(async_client, method)(f"/api/v1/documents/does-not-exist/{suffix}")
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "DOCUMENT_NOT_FOUND"


# ─────────────────────────────────────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
@pytest.mark.api
class TestOperations:

    async def test_health(self, async_client):
        resp = await async_client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "service": "document-pipeline", "blob_store": "memory"}
        assert resp.headers["X-Request-ID"]
