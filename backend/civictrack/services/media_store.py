"""S3-backed media store for issue photos and videos."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from civictrack.core.config import settings
from civictrack.core.exceptions import MediaStoreError
from civictrack.core.metrics import record_media_operation
from civictrack.models.issue import MediaType

logger = logging.getLogger(__name__)


def _s3_client():
    return boto3.client(
        "s3",
        region_name=settings.AWS_REGION,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        config=Config(signature_version="s3v4"),
    )


def _record_media_retry(retry_state):
    """Tenacity before_sleep callback to track media store retries."""
    record_media_operation(retry_state.fn.__name__.lstrip("_"), "retry")


def guess_kind(filename: str, content_type: Optional[str] = None) -> MediaType:
    content_type = content_type or mimetypes.guess_type(filename)[0] or ""
    return MediaType.VIDEO if content_type.startswith("video/") else MediaType.IMAGE


@dataclass(frozen=True)
class StoredMedia:
    id: str
    url: str
    kind: MediaType

    def as_item(self) -> Dict[str, str]:
        return {"type": self.kind.value, "id": self.id, "url": self.url}


@dataclass(frozen=True)
class StagedUpload:
    """A request file spooled to local disk, awaiting upload."""

    path: str
    filename: str
    content_type: Optional[str] = None

    @property
    def kind(self) -> MediaType:
        return guess_kind(self.filename, self.content_type)


class S3MediaStore:
    """
    ``upload(local_path, folder)`` / ``delete(id, kind)`` over an S3 bucket.

    boto3 is synchronous, so every call runs in a worker thread.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        client: Any = None,
        public_base_url: Optional[str] = None,
    ):
        self.bucket = bucket or settings.S3_BUCKET_NAME
        self._client = client
        self.public_base_url = (public_base_url or settings.MEDIA_PUBLIC_BASE_URL).rstrip("/")

    @property
    def client(self):
        if self._client is None:
            self._client = _s3_client()
        return self._client

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{settings.AWS_REGION}.amazonaws.com/{key}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((BotoCoreError, ClientError)),
        before_sleep=_record_media_retry,
    )
    async def _upload(self, local_path: str, key: str, content_type: Optional[str]) -> None:
        extra_args = {"ContentType": content_type} if content_type else None
        await asyncio.to_thread(
            self.client.upload_file, local_path, self.bucket, key, ExtraArgs=extra_args
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((BotoCoreError, ClientError)),
        before_sleep=_record_media_retry,
    )
    async def _delete(self, key: str) -> None:
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)

    async def upload(
        self,
        local_path: str,
        folder: str,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> StoredMedia:
        """Store a local file and return its permanent identifier and URL."""
        if not self.bucket:
            raise MediaStoreError("Media store bucket is not configured")

        name = filename or os.path.basename(local_path)
        content_type = content_type or mimetypes.guess_type(name)[0]
        suffix = os.path.splitext(name)[1].lower()
        key = f"{folder.strip('/')}/{uuid.uuid4().hex}{suffix}"

        try:
            await self._upload(local_path, key, content_type)
        except (RetryError, BotoCoreError, ClientError, OSError) as exc:
            record_media_operation("upload", "failure")
            logger.exception("Media upload of %s failed", name)
            raise MediaStoreError("Media upload failed", file=name) from exc

        record_media_operation("upload", "success")
        return StoredMedia(id=key, url=self.url_for(key), kind=guess_kind(name, content_type))

    async def delete(self, media_id: str, kind: MediaType) -> None:
        try:
            await self._delete(media_id)
        except (RetryError, BotoCoreError, ClientError) as exc:
            record_media_operation("delete", "failure")
            raise MediaStoreError("Media delete failed", id=media_id) from exc
        record_media_operation("delete", "success")
        logger.info("Deleted %s media %s", getattr(kind, "value", kind), media_id)

    async def discard(self, items: Iterable[Dict[str, str]]) -> None:
        """Best-effort removal of stored media entries (``{"type", "id", "url"}``)."""
        for item in items:
            try:
                await self.delete(item["id"], MediaType(item["type"]))
            except MediaStoreError:
                logger.warning("Could not delete media %s; leaving it orphaned", item["id"])


_store: Optional[S3MediaStore] = None


def get_media_store() -> S3MediaStore:
    """Dependency returning the process-wide media store."""
    global _store
    if _store is None:
        _store = S3MediaStore()
    return _store
