"""
Object store adapters for uploaded blobs.

Two backends share one small async interface:

  LocalObjectStore  - files under UPLOAD_DIR (development, tests)
  S3ObjectStore     - any S3-compatible bucket through aioboto3

Keys are always built server-side by ``build_storage_key``; client input never
becomes a raw key.
"""
from __future__ import annotations

import logging
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aioboto3
import aiofiles
import aiofiles.os
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


class ObjectNotFound(Exception):
    """Raised when a key does not exist in the store."""


@dataclass(frozen=True)
class StoredObject:
    key: str
    size_bytes: int
    content_type: str


def build_storage_key(owner_id: str, filename: str) -> str:
    """
    Build the object key for an upload.

    Pattern: ``documents/<owner>/<millis>_<hex16>_<basename><ext>``
    """
    base, ext = os.path.splitext(os.path.basename(filename or "upload"))
    safe_base = _SAFE_NAME.sub("_", base).strip("._") or "upload"
    safe_ext = _SAFE_NAME.sub("", ext.lower())
    safe_owner = _SAFE_NAME.sub("_", owner_id)
    millis = int(time.time() * 1000)
    return f"documents/{safe_owner}/{millis}_{secrets.token_hex(8)}_{safe_base[:100]}{safe_ext}"


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class ObjectStore:
    """Async blob storage keyed by opaque strings."""

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        raise NotImplementedError

    async def get(self, key: str) -> bytes:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------

class LocalObjectStore(ObjectStore):
    """Stores each object as a file below *root*."""

    def __init__(self, root: str) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Storage key escapes the store root: {key!r}")
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        path = self._path(key)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "wb") as out:
            await out.write(data)
        logger.info("Stored %s (%d bytes)", key, len(data))
        return StoredObject(key=key, size_bytes=len(data), content_type=content_type)

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            async with aiofiles.open(path, "rb") as src:
                return await src.read()
        except FileNotFoundError as exc:
            raise ObjectNotFound(key) from exc

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await aiofiles.os.remove(path)
            logger.info("Deleted %s", key)
        except FileNotFoundError:
            logger.warning("Delete of missing object %s ignored", key)


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------

class S3ObjectStore(ObjectStore):
    """Async S3 operations against a single bucket."""

    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint_url: Optional[str] = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self._session = aioboto3.Session()

    def _client(self):
        """Return a scoped async S3 client context manager."""
        # Credentials come from the standard AWS environment / instance role.
        return self._session.client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        async with self._client() as s3:
            await s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        logger.info("S3 upload ok | bucket=%s key=%s size=%d", self.bucket, key, len(data))
        return StoredObject(key=key, size_bytes=len(data), content_type=content_type)

    async def get(self, key: str) -> bytes:
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self.bucket, Key=key)
                return await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise ObjectNotFound(key) from exc
                raise

    async def delete(self, key: str) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self.bucket, Key=key)
        logger.info("S3 delete | bucket=%s key=%s", self.bucket, key)


def create_object_store(settings) -> ObjectStore:
    """Select the backend named by ``settings.STORAGE_BACKEND``."""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "s3":
        return S3ObjectStore(
            bucket=settings.S3_BUCKET,
            region=settings.S3_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL,
        )
    if backend == "local":
        return LocalObjectStore(settings.UPLOAD_DIR)
    raise ValueError(f"Unknown STORAGE_BACKEND {settings.STORAGE_BACKEND!r}")
