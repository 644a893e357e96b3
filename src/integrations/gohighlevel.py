"""
GoHighLevel CRM integration — REST API v2.

Auth: Bearer token via API key.
Docs: https://highlevel.stoplight.io/docs/integrations
All calls have 10-second timeout per project standard.
"""
import logging
from typing import Optional

import httpx

from src.integrations.crm_base import CRMBase

logger = logging.getLogger(__name__)

BASE_URL = "https://services.leadconnectorhq.com"
TIMEOUT = 10.0

DUPLICATE_CONTACT_MESSAGE = "duplicated contacts"


def _error_body(error: httpx.HTTPStatusError) -> dict:
    try:
        body = error.response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _duplicate_contact_id(error: httpx.HTTPStatusError) -> Optional[str]:
    """Contact id from GHL's 400 'does not allow duplicated contacts' response."""
    if error.response.status_code != 400:
        return None
    body = _error_body(error)
    message = body.get("message")
    if isinstance(message, list):
        message = " ".join(str(m) for m in message)
    if DUPLICATE_CONTACT_MESSAGE not in str(message or "").lower():
        return None
    return (body.get("meta") or {}).get("contactId")


class GoHighLevelCRM(CRMBase):
    """GoHighLevel API v2 integration."""

    def __init__(self, api_key: str, location_id: str):
        self.api_key = api_key
        self.location_id = location_id
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Version": "2021-07-28",
        }

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        """Make an authenticated request to the GoHighLevel API."""
        async with httpx.AsyncClient(timeout=TIMEOUT) as client:
            response = await client.request(
                method,
                f"{BASE_URL}{path}",
                headers=self._headers,
                json=json,
                params=params,
            )
            response.raise_for_status()
            return response.json()

    async def create_contact(self, contact: dict) -> dict:
        """Create a contact in GoHighLevel; reports an existing contact as duplicate_of."""
        try:
            payload = {**contact, "locationId": self.location_id}
            data = await self._request("POST", "/contacts/", json=payload)
            created = data.get("contact", data)
            contact_id = created.get("id")

            logger.info("GHL contact created: %s", contact_id)
            return {"contact_id": contact_id, "success": True, "duplicate_of": None, "error": None}
        except httpx.HTTPStatusError as e:
            existing_id = _duplicate_contact_id(e)
            if existing_id:
                logger.info("GHL contact already exists: %s", existing_id)
                return {"contact_id": None, "success": False, "duplicate_of": existing_id, "error": str(e)}
            logger.error("GHL create_contact failed: %s", str(e))
            return {"contact_id": None, "success": False, "duplicate_of": None, "error": str(e)}
        except Exception as e:
            logger.error("GHL create_contact failed: %s", str(e))
            return {"contact_id": None, "success": False, "duplicate_of": None, "error": str(e)}

    async def update_contact(self, contact_id: str, contact: dict) -> dict:
        """Update a contact in GoHighLevel. locationId is not accepted on update."""
        try:
            payload = {k: v for k, v in contact.items() if k != "locationId"}
            await self._request("PUT", f"/contacts/{contact_id}", json=payload)
            logger.info("GHL contact updated: %s", contact_id)
            return {"contact_id": contact_id, "success": True, "error": None}
        except Exception as e:
            logger.error("GHL update_contact failed: %s", str(e))
            return {"contact_id": contact_id, "success": False, "error": str(e)}

    async def get_pipelines(self) -> list[dict]:
        """Get opportunity pipelines for the location."""
        data = await self._request(
            "GET", "/opportunities/pipelines", params={"locationId": self.location_id},
        )
        return [
            {
                "id": pipeline.get("id"),
                "name": pipeline.get("name", ""),
                "stages": [
                    {"id": stage.get("id"), "name": stage.get("name", "")}
                    for stage in pipeline.get("stages", []) or []
                ],
            }
            for pipeline in data.get("pipelines", [])
        ]

    async def create_opportunity(
        self,
        contact_id: str,
        pipeline_id: str,
        stage_id: Optional[str],
        name: str,
    ) -> dict:
        """Create an opportunity in GoHighLevel."""
        try:
            payload = {
                "contactId": contact_id,
                "locationId": self.location_id,
                "pipelineId": pipeline_id,
                "name": name,
                "status": "open",
            }
            if stage_id:
                payload["pipelineStageId"] = stage_id

            data = await self._request("POST", "/opportunities/", json=payload)
            opportunity = data.get("opportunity", data)
            return {"opportunity_id": opportunity.get("id"), "success": True, "duplicate": False, "error": None}
        except Exception as e:
            message = str(e)
            if isinstance(e, httpx.HTTPStatusError):
                message = f"{message} {_error_body(e).get('message', '')}"
            duplicate = "duplicate" in message.lower() or "already exists" in message.lower()
            if duplicate:
                logger.info("GHL opportunity already exists for contact %s", contact_id)
            else:
                logger.error("GHL create_opportunity failed: %s", str(e))
            return {"opportunity_id": None, "success": False, "duplicate": duplicate, "error": str(e)}
