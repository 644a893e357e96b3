"""
Partner model - a home-improvement business (boiler, solar, heating installer)
running its branded quote funnel on the platform. Resolved per request from the
hostname: a verified custom domain, or a subdomain of the platform domain.
Partners are never hard-deleted; status moves between pending, active and suspended.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class Partner(Base):
    __tablename__ = "partners"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_person: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(
        String(30), default="pending", nullable=False
    )  # pending, active, suspended

    # Hostname bindings
    subdomain: Mapped[Optional[str]] = mapped_column(String(63), unique=True)
    custom_domain: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    domain_verified: Mapped[Optional[bool]] = mapped_column(Boolean)

    # Branding
    logo_url: Mapped[Optional[str]] = mapped_column(Text)
    company_color: Mapped[Optional[str]] = mapped_column(String(20))
    business_description: Mapped[Optional[str]] = mapped_column(Text)

    # Contact
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    admin_email: Mapped[Optional[str]] = mapped_column(String(255))
    website_url: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(Text)
    postcode: Mapped[Optional[str]] = mapped_column(String(10))

    # Legal document links
    privacy_policy: Mapped[Optional[str]] = mapped_column(Text)
    terms_conditions: Mapped[Optional[str]] = mapped_column(Text)

    # Feature flags
    otp_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    roof_mapping_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    # SMTP settings - every value Fernet-encrypted, decrypted only right before sending
    smtp_settings: Mapped[Optional[dict]] = mapped_column(JSONB)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_partners_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<Partner {self.company_name} ({self.subdomain or self.custom_domain})>"
