"""
Object storage for roof-mapping images - Supabase Storage REST API.

Auth: Bearer service-role key.
Upload: POST {url}/storage/v1/object/{bucket}/{name}; public objects are
served from {url}/storage/v1/object/public/{bucket}/{name}.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

TIMEOUT = 15.0
DEFAULT_BUCKET = "roof-mappings"


class RoofImageStorage(ABC):
    """Somewhere to put a roof image and get a public URL back."""

    @abstractmethod
    async def upload(self, file_name: str, content: bytes, content_type: str = "image/png") -> str:
        """Store the object and return its public URL. Raises on failure."""
        ...


class SupabaseRoofImageStorage(RoofImageStorage):
    def __init__(self, base_url: str, service_key: str, bucket: str = DEFAULT_BUCKET):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self._service_key = service_key

    def public_url(self, file_name: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{file_name}"

    async def upload(self, file_name: str, content: bytes, content_type: str = "image/png") -> str:
        headers = {
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": content_type,
            "Cache-Control": "3600",
            "x-upsert": "false",
        }
        async with httpx.AsyncClient(timeout=TIMEOUT) as client:
            response = await client.post(
                f"{self.base_url}/storage/v1/object/{self.bucket}/{file_name}",
                headers=headers,
                content=content,
            )
            response.raise_for_status()
        logger.info("Uploaded %s (%d bytes) to %s", file_name, len(content), self.bucket)
        return self.public_url(file_name)


def get_roof_image_storage() -> Optional[RoofImageStorage]:
    """Configured storage, or None when roof images have nowhere to go."""
    from src.config import get_settings
    settings = get_settings()
    if not settings.storage_url or not settings.storage_service_key:
        return None
    return SupabaseRoofImageStorage(
        settings.storage_url,
        settings.storage_service_key,
        bucket=settings.roof_image_bucket,
    )
