"""
QuoteSubmission model - the canonical lead record of one quote request.
Created once when the contact step is submitted (status=new), then updated in
place by submission_id as later funnel stages complete (address, roof data,
phone verification). submission_id is the join key for every downstream store.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base

# Structured address columns copied from the address-lookup selection
ADDRESS_FIELDS = (
    "address_line_1",
    "address_line_2",
    "street_name",
    "street_number",
    "building_name",
    "sub_building",
    "county",
    "country",
    "formatted_address",
)


class QuoteSubmission(Base):
    __tablename__ = "quote_submissions"

    submission_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    service_category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("service_categories.id"), nullable=False
    )

    # Contact info
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    postcode: Mapped[Optional[str]] = mapped_column(String(10))

    # [{question_id, question_text, answer}]
    form_answers: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    status: Mapped[str] = mapped_column(String(30), default="new", nullable=False)

    # Structured address
    address_line_1: Mapped[Optional[str]] = mapped_column(String(255))
    address_line_2: Mapped[Optional[str]] = mapped_column(String(255))
    street_name: Mapped[Optional[str]] = mapped_column(String(255))
    street_number: Mapped[Optional[str]] = mapped_column(String(50))
    building_name: Mapped[Optional[str]] = mapped_column(String(255))
    sub_building: Mapped[Optional[str]] = mapped_column(String(255))
    county: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    formatted_address: Mapped[Optional[str]] = mapped_column(Text)
    address_type: Mapped[Optional[str]] = mapped_column(String(30))

    # Category-specific payloads
    roof_mapping_data: Mapped[Optional[dict]] = mapped_column(JSONB)

    # Phone verification
    otp_verified: Mapped[bool] = mapped_column(Boolean, default=False)

    # Request metadata
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    referral_source: Mapped[Optional[str]] = mapped_column(Text)

    submission_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_quote_submissions_partner_id", "partner_id"),
        Index("ix_quote_submissions_status", "status"),
        Index("ix_quote_submissions_submission_date", "submission_date"),
    )

    def apply_address(self, address: Optional[dict]) -> None:
        """Copy a selected address onto the structured address columns."""
        if not address:
            return
        for field in ADDRESS_FIELDS:
            value = address.get(field)
            if value is not None:
                setattr(self, field, str(value))
        self.address_type = address.get("address_type") or "residential"

    def __repr__(self) -> str:
        return f"<QuoteSubmission {str(self.submission_id)[:8]} status={self.status}>"
