"""
GoHighLevel integration models.

GHLIntegration: one per partner - encrypted API key and the GHL location.
GHLFieldMapping: per partner/category/email type/recipient - which of our lead
attributes feed which GHL custom field, plus the pipeline stage an opportunity
should land in and extra tags.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class GHLIntegration(Base):
    __tablename__ = "ghl_integrations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), unique=True, nullable=False
    )
    api_key_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<GHLIntegration partner={str(self.partner_id)[:8]}>"


class GHLFieldMapping(Base):
    __tablename__ = "ghl_field_mappings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    service_category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("service_categories.id"), nullable=False
    )
    email_type: Mapped[str] = mapped_column(String(50), nullable=False)  # quote-initial, quote-verified
    recipient_type: Mapped[str] = mapped_column(String(20), default="customer")  # customer, admin

    # {our_field_id: ghl_custom_field_id}
    field_mappings: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)
    pipeline_id: Mapped[Optional[str]] = mapped_column(String(100))
    opportunity_stage: Mapped[Optional[str]] = mapped_column(String(100))
    tags: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index(
            "ix_ghl_field_mappings_lookup",
            "partner_id", "service_category_id", "email_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<GHLFieldMapping {self.email_type}/{self.recipient_type}>"
