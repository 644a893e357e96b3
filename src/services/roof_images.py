"""
Roof-mapping image upload.

The solar roof-mapping step may carry a canvas snapshot as a base64 data URL
under roof_mapping_data["roof_image"]. The lead stores the mapping without the
image; once the lead exists the image goes to object storage in the background
and its public URL is written back as roof_mapping_data["roof_image_url"].
Nothing here is on the customer's critical path.
"""
import base64
import binascii
import logging
import time
import uuid
from typing import Optional

from src.integrations.roof_storage import RoofImageStorage, get_roof_image_storage

logger = logging.getLogger(__name__)

ROOF_IMAGE_KEY = "roof_image"
ROOF_IMAGE_URL_KEY = "roof_image_url"

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


def split_roof_image(data: Optional[dict]) -> tuple[dict, Optional[str]]:
    """Return (mapping data without the image, the image data URL or None)."""
    if not data:
        return {}, None
    image = data.get(ROOF_IMAGE_KEY)
    rest = {k: v for k, v in data.items() if k != ROOF_IMAGE_KEY}
    return rest, image if isinstance(image, str) and image else None


def decode_image_data(image_data: str) -> tuple[bytes, str]:
    """Decode a data URL (or bare base64) into (bytes, content type)."""
    content_type = "image/png"
    payload = image_data
    if image_data.startswith("data:"):
        header, _, payload = image_data.partition(",")
        if ";base64" not in header or not payload:
            raise ValueError("Roof image is not a base64 data URL")
        content_type = header[len("data:"):].split(";")[0] or content_type
    if content_type not in _EXTENSIONS:
        raise ValueError(f"Unsupported roof image type {content_type}")
    try:
        return base64.b64decode(payload, validate=True), content_type
    except binascii.Error:
        raise ValueError("Roof image is not valid base64")


async def upload_roof_image(storage: RoofImageStorage, submission_id: str, image_data: str) -> str:
    content, content_type = decode_image_data(image_data)
    file_name = f"roof-mapping-{submission_id}-{int(time.time() * 1000)}.{_EXTENSIONS[content_type]}"
    return await storage.upload(file_name, content, content_type)


async def upload_roof_image_detached(
    submission_id: str,
    image_data: str,
    storage: Optional[RoofImageStorage] = None,
) -> Optional[str]:
    """Upload in the background and record the URL on the lead. Raises on upload failure."""
    from src.database import async_session_factory
    from src.models.quote_submission import QuoteSubmission

    storage = storage or get_roof_image_storage()
    if storage is None:
        logger.warning("Roof image storage not configured, skipping upload", extra={"submission_id": submission_id})
        return None

    url = await upload_roof_image(storage, submission_id, image_data)

    async with async_session_factory() as db:
        lead = await db.get(QuoteSubmission, uuid.UUID(str(submission_id)))
        if lead is None:
            logger.warning("Lead not found for roof image", extra={"submission_id": submission_id})
            return url
        lead.roof_mapping_data = {**(lead.roof_mapping_data or {}), ROOF_IMAGE_URL_KEY: url}
        await db.commit()

    logger.info("Roof image stored", extra={"submission_id": submission_id})
    return url
