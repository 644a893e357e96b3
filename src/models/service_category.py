"""
ServiceCategory model - a kind of job a funnel quotes for (boiler, solar, heating).
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base

# Only solar funnels may carry the roof-mapping step
ROOF_MAPPING_CATEGORY_SLUG = "solar"


class ServiceCategory(Base):
    __tablename__ = "service_categories"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def supports_roof_mapping(self) -> bool:
        return self.slug == ROOF_MAPPING_CATEGORY_SLUG

    def __repr__(self) -> str:
        return f"<ServiceCategory {self.slug}>"
