"""
Abstract CRM interface - all CRM integrations implement this.
CRITICAL: CRM operations NEVER go in the funnel's critical path.
They run as best-effort background tasks after the lead is saved.
"""
from abc import ABC, abstractmethod
from typing import Optional


class CRMBase(ABC):
    """Abstract base class for CRM integrations."""

    @abstractmethod
    async def create_contact(self, contact: dict) -> dict:
        """
        Create a contact record in the CRM.
        Returns: {"contact_id": str|None, "success": bool, "duplicate_of": str|None, "error": str|None}
        duplicate_of is set when the CRM refused the create because the contact already exists.
        """
        ...

    @abstractmethod
    async def update_contact(self, contact_id: str, contact: dict) -> dict:
        """
        Update an existing contact.
        Returns: {"contact_id": str, "success": bool, "error": str|None}
        """
        ...

    @abstractmethod
    async def get_pipelines(self) -> list[dict]:
        """
        Get sales pipelines with their stages. Raises on transport errors.
        Returns: [{"id": str, "name": str, "stages": [{"id": str, "name": str}]}]
        """
        ...

    @abstractmethod
    async def create_opportunity(
        self,
        contact_id: str,
        pipeline_id: str,
        stage_id: Optional[str],
        name: str,
    ) -> dict:
        """
        Create an opportunity for a contact in a pipeline.
        Returns: {"opportunity_id": str|None, "success": bool, "duplicate": bool, "error": str|None}
        """
        ...
