"""
LeadSubmissionData model - denormalized funnel telemetry for one submission.
Upserted on submission_id at every step boundary; array columns accumulate
history across steps. quote_data.verification_stage tracks
details_filled → otp_sent → otp_verified, or completed when OTP is off.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class LeadSubmissionData(Base):
    __tablename__ = "lead_submission_data"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    submission_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), unique=True, nullable=False
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    service_category_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    current_page: Mapped[Optional[str]] = mapped_column(String(50))
    pages_completed: Mapped[Optional[list]] = mapped_column(JSONB, default=list)

    quote_data: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)
    form_submissions: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    conversion_events: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    page_timings: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)

    # Session / device
    device_info: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)
    session_id: Mapped[Optional[str]] = mapped_column(String(100))

    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_lead_submission_data_partner_id", "partner_id"),
    )

    @property
    def is_complete(self) -> bool:
        return bool((self.quote_data or {}).get("is_complete"))

    @property
    def verification_stage(self) -> Optional[str]:
        return (self.quote_data or {}).get("verification_stage")

    def __repr__(self) -> str:
        return f"<LeadSubmissionData {str(self.submission_id)[:8]} page={self.current_page}>"
