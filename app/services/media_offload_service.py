"""
Media offload: move inline base64 payloads into blob storage.

Two entry points share the same decode/detect/upload path:

* ``offload()`` for a single payload (webhook path, outbound send), bounded
  by a short upload timeout;
* ``migrate_partition()`` / ``migrate_all()`` for the batch sweep that turns
  legacy inline rows into blob-referenced rows. The batch is paced on
  purpose (small concurrency window, delay per item, delay per batch) to
  stay under the storage backend's rate limits.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app.config import get_settings
from app.constants.messages import placeholder_for_mime
from app.constants.mime import BINARY_SIGNATURES, DEFAULT_MIME_TYPE, extension_for
from app.core.routing import ChannelRoute
from app.exceptions import MediaDecodeError, StorageUploadError
from app.schemas.migration import MigrationReport, TableMigrationResult
from app.services.message_store import MessageStore
from app.services.storage import StorageBackend

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:([^;,]+)(?:;[^,]*)?;base64,", re.IGNORECASE)
# Bare base64 long enough to be a payload rather than an id or a caption
BARE_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/\r\n]{100,}={0,2}$")
SIGNATURE_PROBE_BYTES = 16
FILE_PREFIX = "media_"


@dataclass(frozen=True)
class OffloadResult:
    url: str
    mime_type: str
    key: str
    size: int


def is_data_url(value: Optional[str]) -> bool:
    return bool(value) and bool(DATA_URL_PATTERN.match(value.strip()))


def is_inline_payload(value: Optional[str]) -> bool:
    """True for a data: URL or a bare base64 blob; False for http(s) URLs and short text."""
    if not value:
        return False
    stripped = value.strip()
    if is_data_url(stripped):
        return True
    return bool(BARE_BASE64_PATTERN.match(stripped))


def detect_mime_type(data: bytes) -> str:
    """Match the head of the decoded bytes against known binary signatures."""
    for magic, offset, mime_type in BINARY_SIGNATURES:
        if data[offset : offset + len(magic)] == magic:
            if mime_type == "image/webp" and data[:4] != b"RIFF":
                continue
            return mime_type
    return DEFAULT_MIME_TYPE


def decode_payload(payload: str) -> tuple[bytes, str]:
    """
    Decode a data: URL or bare base64 into (bytes, mime type).

    The data: URL's declared type wins; otherwise the type is inferred from
    the content signature. Raises MediaDecodeError for empty or corrupt input.
    """
    if not payload or not payload.strip():
        raise MediaDecodeError("Empty media payload")
    text = payload.strip()
    declared: Optional[str] = None
    match = DATA_URL_PATTERN.match(text)
    if match:
        declared = match.group(1).strip().lower()
        text = text[match.end() :]
    text = re.sub(r"\s+", "", text)
    # Tolerate missing padding, which some gateways strip
    text += "=" * (-len(text) % 4)
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MediaDecodeError(f"Corrupt base64 payload: {e}") from e
    if not data:
        raise MediaDecodeError("Media payload decoded to zero bytes")
    mime_type = declared or detect_mime_type(data[:SIGNATURE_PROBE_BYTES])
    return data, mime_type


def generate_object_key(mime_type: str, prefix: str = FILE_PREFIX) -> str:
    """Timestamp + random suffix + extension derived from the MIME type."""
    return f"{prefix}{int(time.time() * 1000)}_{secrets.token_hex(6)}{extension_for(mime_type)}"


class MediaOffloadService:
    def __init__(
        self,
        storage: StorageBackend,
        upload_timeout: Optional[float] = None,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        item_delay: Optional[float] = None,
        batch_delay: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.storage = storage
        self.upload_timeout = (
            upload_timeout
            if upload_timeout is not None
            else settings.media_upload_timeout_seconds
        )
        self.batch_size = batch_size or settings.media_batch_size
        self.concurrency = concurrency or settings.media_concurrency
        self.item_delay = (
            item_delay if item_delay is not None else settings.media_item_delay_seconds
        )
        self.batch_delay = (
            batch_delay
            if batch_delay is not None
            else settings.media_batch_delay_seconds
        )

    async def offload(self, payload: str) -> OffloadResult:
        """
        Decode and upload one payload; return its public URL.

        Raises MediaDecodeError for corrupt input and StorageUploadError when
        the backend fails or does not answer within ``upload_timeout``.
        """
        data, mime_type = decode_payload(payload)
        key = generate_object_key(mime_type)
        try:
            url = await asyncio.wait_for(
                asyncio.to_thread(self.storage.put, key, data, mime_type),
                timeout=self.upload_timeout,
            )
        except asyncio.TimeoutError as e:
            raise StorageUploadError(
                f"Upload of {key} timed out after {self.upload_timeout}s"
            ) from e
        except Exception as e:
            raise StorageUploadError(f"Upload of {key} failed: {e}") from e
        logger.info("Offloaded %d bytes (%s) to %s", len(data), mime_type, key)
        return OffloadResult(url=url, mime_type=mime_type, key=key, size=len(data))

    # ------------------------------------------------------------------
    # Batch migration
    # ------------------------------------------------------------------

    async def _migrate_item(
        self,
        store: MessageStore,
        message_id: int,
        payload: str,
        semaphore: asyncio.Semaphore,
    ) -> bool:
        async with semaphore:
            try:
                result = await self.offload(payload)
                store.attach_media(
                    message_id,
                    media_ref=result.url,
                    mime_type=result.mime_type,
                    placeholder=placeholder_for_mime(result.mime_type),
                )
                return True
            except MediaDecodeError as e:
                logger.warning(
                    "Skipping corrupt payload %s#%s: %s",
                    store.partition_name,
                    message_id,
                    e,
                )
                return False
            except StorageUploadError as e:
                # Row keeps its payload for a later pass
                logger.warning(
                    "Upload failed for %s#%s: %s", store.partition_name, message_id, e
                )
                return False
            except Exception:
                logger.exception(
                    "Unexpected error migrating %s#%s", store.partition_name, message_id
                )
                return False
            finally:
                if self.item_delay:
                    await asyncio.sleep(self.item_delay)

    async def migrate_partition(self, store: MessageStore) -> TableMigrationResult:
        """Offload every inline payload of one partition; failures are counted, not raised."""
        result = TableMigrationResult()
        semaphore = asyncio.Semaphore(self.concurrency)
        after_id = 0
        while True:
            try:
                batch = store.find_inline_media(self.batch_size, after_id=after_id)
            except Exception as e:
                logger.warning(
                    "Could not read inline media from %s: %s", store.partition_name, e
                )
                store.db.rollback()
                result.errors += 1
                break
            if not batch:
                break
            outcomes = await asyncio.gather(
                *(
                    self._migrate_item(store, message_id, payload, semaphore)
                    for message_id, payload in batch
                )
            )
            for ok in outcomes:
                if ok:
                    result.processed += 1
                else:
                    result.errors += 1
            after_id = batch[-1][0]
            if len(batch) < self.batch_size:
                break
            if self.batch_delay:
                await asyncio.sleep(self.batch_delay)
        logger.info(
            "Media migration for %s: %d processed, %d errors",
            store.partition_name,
            result.processed,
            result.errors,
        )
        return result

    async def migrate_all(
        self, db: Session, routes: Iterable[ChannelRoute]
    ) -> MigrationReport:
        """Sweep every known partition and report per-table counts."""
        report = MigrationReport()
        seen: set[str] = set()
        for route in routes:
            if route.partition_name in seen:
                continue
            seen.add(route.partition_name)
            store = MessageStore(db, route)
            report.record(route.partition_name, await self.migrate_partition(store))
        logger.info(
            "Media migration completed: %d processed, %d errors",
            report.total_processed,
            report.total_errors,
        )
        return report
