# medscan/services/media.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from supabase import Client, create_client

from medscan.config import Settings
from medscan.errors import ConfigurationError, MediaStoreError
from medscan.services.policy import call_with_policy

logger = logging.getLogger(__name__)


def frame_path(patient_id: str, image_index: int) -> str:
    """Storage key for a captured frame; `image_index` is 0-based."""
    return f"patients/{patient_id}/image-{image_index + 1}.jpg"


def report_path(patient_id: str, filename: str, timestamp_ms: int) -> str:
    return f"reports/{patient_id}/pdf_{timestamp_ms}_{filename}"


class MediaStore:
    """
    Binary objects (captured frames, rendered PDFs) in a Supabase Storage
    bucket. Every upload returns the object's public URL.
    """

    def __init__(
        self,
        client: Optional[Client],
        bucket: str,
        *,
        timeout: float = 15.0,
        retries: int = 1,
        backoff: float = 0.5,
    ):
        self.client = client
        self.bucket = bucket
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaStore":
        client = None
        if settings.supabase_url and settings.supabase_service_key:
            client = create_client(settings.supabase_url, settings.supabase_service_key)
        else:
            logger.warning("SUPABASE_URL / SUPABASE_SERVICE_KEY not set; media uploads will fail")
        return cls(
            client,
            settings.media_bucket,
            timeout=settings.store_timeout_seconds,
            retries=settings.retry_attempts,
            backoff=settings.retry_backoff_seconds,
        )

    async def upload(self, patient_id: str, image_index: int, image_bytes: bytes) -> str:
        path = frame_path(patient_id, image_index)
        return await self._upload(path, image_bytes, "image/jpeg")

    async def upload_pdf(self, patient_id: str, filename: str, pdf_bytes: bytes, timestamp_ms: int) -> str:
        path = report_path(patient_id, filename, timestamp_ms)
        return await self._upload(path, pdf_bytes, "application/pdf")

    async def _upload(self, path: str, data: bytes, content_type: str) -> str:
        if self.client is None:
            raise ConfigurationError("Media store is not configured")

        url = await call_with_policy(
            lambda: asyncio.to_thread(self._put, path, data, content_type),
            label=f"Media upload {path}",
            error_cls=MediaStoreError,
            timeout=self.timeout,
            retries=self.retries,
            backoff=self.backoff,
        )
        logger.info("Uploaded %s (%d bytes)", path, len(data))
        return url

    def _put(self, path: str, data: bytes, content_type: str) -> str:
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(
            path=path,
            file=data,
            file_options={"content-type": content_type, "upsert": "true"},
        )
        url = bucket.get_public_url(path)
        if not url:
            raise MediaStoreError(f"No public URL returned for {path}")
        return url
