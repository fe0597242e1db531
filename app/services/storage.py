"""Blob storage for offloaded media.

Usage::

    from app.core.app_state import state

    url = state.storage.put("media_1700000000000_ab12cd34.png", data, "image/png")
    data = state.storage.get("media_1700000000000_ab12cd34.png")
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from app.config import get_settings

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Base interface for storage backends."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        """Store *data* under *key* and return its public URL."""
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return raw bytes for *key*. Raises ``FileNotFoundError`` if missing."""
        pass

    @abstractmethod
    def url(self, key: str) -> str:
        """Return the public URL for *key* (without fetching)."""
        pass

    def key_for_url(self, url: str) -> Optional[str]:
        """Inverse of ``url()``; None when the URL does not point into this backend."""
        prefix = self.url("")
        if url.startswith(prefix):
            return url[len(prefix) :] or None
        return None


# ---------------------------------------------------------------------------
# Local filesystem backend
# ---------------------------------------------------------------------------


class LocalBackend(StorageBackend):
    """Writes files under a local directory served at ``url_prefix``."""

    def __init__(self, root: str | None = None, url_prefix: str | None = None) -> None:
        settings = get_settings()
        self._root = Path(root or settings.storage_local_root).resolve()
        self._url_prefix = (url_prefix or settings.storage_public_base_url).rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def _safe_path(self, key: str) -> Path:
        """Resolve *key* within root, rejecting traversal attempts."""
        dest = (self._root / key).resolve()
        try:
            dest.relative_to(self._root)
        except ValueError:
            raise ValueError(f"Invalid storage key (path traversal): {key}")
        return dest

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        dest = self._safe_path(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        return self.url(key)

    def get(self, key: str) -> bytes:
        dest = self._safe_path(key)
        if not dest.exists():
            raise FileNotFoundError(f"Storage key not found: {key}")
        return dest.read_bytes()

    def url(self, key: str) -> str:
        return f"{self._url_prefix}/{key}"


# ---------------------------------------------------------------------------
# S3-compatible backend
# ---------------------------------------------------------------------------


class S3Backend(StorageBackend):
    """Public-read bucket on S3 or an S3-compatible object store (MinIO, R2)."""

    def __init__(
        self,
        bucket: str | None = None,
        endpoint_url: str | None = None,
        region: str | None = None,
        public_base_url: str | None = None,
    ) -> None:
        settings = get_settings()
        self._bucket = bucket or settings.s3_bucket
        endpoint = endpoint_url or settings.s3_endpoint_url
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            config=Config(signature_version="s3v4"),
            region_name=region or settings.s3_region,
        )
        if public_base_url:
            self._url_prefix = public_base_url.rstrip("/")
        elif endpoint:
            self._url_prefix = f"{endpoint.rstrip('/')}/{self._bucket}"
        else:
            self._url_prefix = f"https://{self._bucket}.s3.amazonaws.com"

    def put(self, key: str, data: bytes, content_type: str = "") -> str:
        extra = {"ContentType": content_type} if content_type else {}
        self._client.put_object(Bucket=self._bucket, Key=key, Body=data, **extra)
        return self.url(key)

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(f"Storage key not found: {key}") from e
            raise
        return response["Body"].read()

    def url(self, key: str) -> str:
        return f"{self._url_prefix}/{key}"


def build_storage_backend() -> StorageBackend:
    settings = get_settings()
    if settings.storage_backend == "s3":
        logger.info("Using S3 storage backend (bucket=%s)", settings.s3_bucket)
        return S3Backend(public_base_url=None)
    logger.info("Using local storage backend (root=%s)", settings.storage_local_root)
    return LocalBackend()
