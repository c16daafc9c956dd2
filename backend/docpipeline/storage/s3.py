"""
S3 Blob Store

Raw uploaded documents live under a single server-controlled prefix:

    s3://<BUCKET>/<prefix>/<YYYY-MM-DD>/<document_id>.<ext>

Keys are built by storage.base.build_blob_path(); the client filename only
contributes its (sanitized) extension. A client session is opened per
operation so the store itself holds no connections and is safe to share
across requests.

Works against AWS, LocalStack or MinIO (set s3_endpoint_url).
"""

from __future__ import annotations

import logging

import aioboto3
from botocore.exceptions import ClientError

from docpipeline.storage.base import BlobStore, StoredBlob

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


class S3BlobStore(BlobStore):

    def __init__(
        self,
        bucket:          str,
        region:          str = "us-east-1",
        endpoint_url:    str | None = None,
        public_base_url: str | None = None,
        session:         aioboto3.Session | None = None,
    ) -> None:
        self._bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url or None
        self._public_base_url = (public_base_url or "").rstrip("/")
        self._session = session or aioboto3.Session()

    @property
    def bucket(self) -> str:
        return self._bucket

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url,
            # Credentials come from the environment / instance role.
        )

    def public_url(self, path: str) -> str | None:
        if not self._public_base_url:
            return None
        return f"{self._public_base_url}/{path}"

    async def upload(
        self,
        data:         bytes,
        path:         str,
        content_type: str | None = None,
    ) -> StoredBlob:
        async with self._client() as s3:
            resp = await s3.put_object(
                Bucket=self._bucket,
                Key=path,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )

        logger.info(
            "S3 upload ok | bucket=%s key=%s size=%d etag=%s",
            self._bucket, path, len(data), resp.get("ETag", "").strip('"'),
        )
        return StoredBlob(path=path, public_url=self.public_url(path))

    async def download(self, path: str) -> bytes:
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=path)
                return await resp["Body"].read()
            except ClientError as exc:
                if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                    raise FileNotFoundError(f"Object not found: {path}") from exc
                raise

    async def delete(self, path: str) -> bool:
        async with self._client() as s3:
            try:
                await s3.head_object(Bucket=self._bucket, Key=path)
            except ClientError as exc:
                if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                    return False
                raise
            await s3.delete_object(Bucket=self._bucket, Key=path)

        logger.info("S3 delete | bucket=%s key=%s", self._bucket, path)
        return True
