"""
FormQuestion model - one field of a partner's quote funnel for a service category.
Questions are grouped into wizard steps by step_number and ordered inside a step
by display_order_in_step. conditional_display holds an optional visibility rule
(see src/schemas/conditional_display.py). Soft-deleted only, since historical
answers keep referencing the question id.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class FormQuestion(Base):
    __tablename__ = "form_questions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("partners.id"), nullable=False
    )
    service_category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("service_categories.id"), nullable=False
    )

    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    display_order_in_step: Mapped[int] = mapped_column(Integer, default=0)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    answer_type: Mapped[str] = mapped_column(
        String(30), default="single_choice"
    )  # single_choice, multiple_choice, text, number
    answer_options: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    conditional_display: Mapped[Optional[dict]] = mapped_column(JSONB)

    status: Mapped[str] = mapped_column(String(20), default="active")  # active, inactive
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_form_questions_partner_category", "partner_id", "service_category_id"),
        Index("ix_form_questions_step", "step_number", "display_order_in_step"),
    )

    def __repr__(self) -> str:
        return f"<FormQuestion step={self.step_number} {self.question_text[:30]!r}>"
