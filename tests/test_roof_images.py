"""
Tests for roof-mapping image uploads (src/services/roof_images.py) and the
Supabase storage client (src/integrations/roof_storage.py).
"""
import base64
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from conftest import make_category, make_partner
from src.integrations.roof_storage import SupabaseRoofImageStorage, get_roof_image_storage
from src.models.quote_submission import QuoteSubmission
from src.services.roof_images import (
    decode_image_data,
    split_roof_image,
    upload_roof_image,
    upload_roof_image_detached,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n"
ROOF_IMAGE = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


def _build_mock_client(post_side_effect=None) -> AsyncMock:
    """Return a mock httpx.AsyncClient usable as an async ctx mgr."""
    response = MagicMock()
    response.raise_for_status = MagicMock()
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=response, side_effect=post_side_effect)
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = False
    return mock_client


def _storage() -> MagicMock:
    storage = MagicMock()
    storage.upload = AsyncMock(return_value="https://cdn.example/roof.png")
    return storage


class TestImageData:
    def test_split_keeps_mapping_without_image(self):
        assert split_roof_image({"panels": 12, "roof_image": ROOF_IMAGE}) == ({"panels": 12}, ROOF_IMAGE)
        assert split_roof_image({"panels": 12}) == ({"panels": 12}, None)
        assert split_roof_image(None) == ({}, None)

    def test_decode_data_url(self):
        assert decode_image_data(ROOF_IMAGE) == (PNG_BYTES, "image/png")

    def test_decode_rejects_garbage(self):
        for bad in ("data:image/png,notbase64", "data:image/png;base64,%%%", "data:text/html;base64,PGI+"):
            with pytest.raises(ValueError):
                decode_image_data(bad)


class TestSupabaseStorage:
    async def test_upload_returns_public_url(self):
        mock_client = _build_mock_client()
        storage = SupabaseRoofImageStorage("https://proj.supabase.co/", "service-key")

        with patch("httpx.AsyncClient", return_value=mock_client):
            url = await storage.upload("roof.png", PNG_BYTES)

        assert url == "https://proj.supabase.co/storage/v1/object/public/roof-mappings/roof.png"
        call = mock_client.post.call_args
        assert call.args[0] == "https://proj.supabase.co/storage/v1/object/roof-mappings/roof.png"
        assert call.kwargs["headers"]["Authorization"] == "Bearer service-key"
        assert call.kwargs["headers"]["x-upsert"] == "false"
        assert call.kwargs["content"] == PNG_BYTES

    async def test_upload_error_raises(self):
        mock_client = _build_mock_client(post_side_effect=httpx.TimeoutException("timed out"))
        storage = SupabaseRoofImageStorage("https://proj.supabase.co", "service-key")

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(httpx.TimeoutException):
                await storage.upload("roof.png", PNG_BYTES)

    def test_unconfigured_storage_is_none(self):
        settings = MagicMock(storage_url="", storage_service_key="")
        with patch("src.config.get_settings", return_value=settings):
            assert get_roof_image_storage() is None


class TestUploadRoofImage:
    async def test_file_named_after_submission(self):
        storage = _storage()
        url = await upload_roof_image(storage, "abc", ROOF_IMAGE)

        assert url == "https://cdn.example/roof.png"
        file_name, content, content_type = storage.upload.await_args.args
        assert file_name.startswith("roof-mapping-abc-")
        assert file_name.endswith(".png")
        assert content == PNG_BYTES
        assert content_type == "image/png"

    async def test_detached_records_url_on_lead(self, db):
        partner = await make_partner(db, subdomain="sunny", roof_mapping_enabled=True)
        solar = await make_category(db, slug="solar", name="Solar")
        lead = QuoteSubmission(
            partner_id=partner.id, service_category_id=solar.id, status="new",
            first_name="Jane", last_name="Doe", email="jane.doe@example.com",
            roof_mapping_data={"panels": 12},
        )
        db.add(lead)
        await db.commit()

        url = await upload_roof_image_detached(str(lead.submission_id), ROOF_IMAGE, storage=_storage())

        assert url == "https://cdn.example/roof.png"
        await db.refresh(lead)
        assert lead.roof_mapping_data == {"panels": 12, "roof_image_url": "https://cdn.example/roof.png"}

    async def test_detached_skips_without_storage(self, db):
        with patch("src.services.roof_images.get_roof_image_storage", return_value=None):
            assert await upload_roof_image_detached(str(uuid.uuid4()), ROOF_IMAGE) is None

    async def test_detached_missing_lead_still_returns_url(self, db):
        url = await upload_roof_image_detached(str(uuid.uuid4()), ROOF_IMAGE, storage=_storage())
        assert url == "https://cdn.example/roof.png"
