"""Initial schema — partners, funnel questions, quote submissions and CRM mappings.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Partners
    op.create_table(
        "partners",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("contact_person", sa.String(100)),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("subdomain", sa.String(63), unique=True),
        sa.Column("custom_domain", sa.String(255), unique=True),
        sa.Column("domain_verified", sa.Boolean),
        sa.Column("logo_url", sa.Text),
        sa.Column("company_color", sa.String(20)),
        sa.Column("business_description", sa.Text),
        sa.Column("phone", sa.String(20)),
        sa.Column("admin_email", sa.String(255)),
        sa.Column("website_url", sa.String(255)),
        sa.Column("address", sa.Text),
        sa.Column("postcode", sa.String(10)),
        sa.Column("privacy_policy", sa.Text),
        sa.Column("terms_conditions", sa.Text),
        sa.Column("otp_enabled", sa.Boolean, default=False),
        sa.Column("roof_mapping_enabled", sa.Boolean, default=False),
        sa.Column("smtp_settings", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_partners_status", "partners", ["status"])

    # Service categories
    op.create_table(
        "service_categories",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Form questions
    op.create_table(
        "form_questions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("partners.id"), nullable=False),
        sa.Column(
            "service_category_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("service_categories.id"), nullable=False,
        ),
        sa.Column("step_number", sa.Integer, nullable=False),
        sa.Column("display_order_in_step", sa.Integer, default=0),
        sa.Column("question_text", sa.Text, nullable=False),
        sa.Column("answer_type", sa.String(30), default="single_choice"),
        sa.Column("answer_options", postgresql.JSONB, default=[]),
        sa.Column("is_required", sa.Boolean, default=True),
        sa.Column("conditional_display", postgresql.JSONB),
        sa.Column("status", sa.String(20), default="active"),
        sa.Column("is_deleted", sa.Boolean, default=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_form_questions_partner_category", "form_questions", ["partner_id", "service_category_id"]
    )
    op.create_index("ix_form_questions_step", "form_questions", ["step_number", "display_order_in_step"])

    # Quote submissions (canonical lead record)
    op.create_table(
        "quote_submissions",
        sa.Column("submission_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("partners.id"), nullable=False),
        sa.Column(
            "service_category_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("service_categories.id"), nullable=False,
        ),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20)),
        sa.Column("city", sa.String(100)),
        sa.Column("postcode", sa.String(10)),
        sa.Column("form_answers", postgresql.JSONB, default=[]),
        sa.Column("status", sa.String(30), nullable=False, server_default="new"),
        sa.Column("address_line_1", sa.String(255)),
        sa.Column("address_line_2", sa.String(255)),
        sa.Column("street_name", sa.String(255)),
        sa.Column("street_number", sa.String(50)),
        sa.Column("building_name", sa.String(255)),
        sa.Column("sub_building", sa.String(255)),
        sa.Column("county", sa.String(100)),
        sa.Column("country", sa.String(100)),
        sa.Column("formatted_address", sa.Text),
        sa.Column("address_type", sa.String(30)),
        sa.Column("roof_mapping_data", postgresql.JSONB),
        sa.Column("otp_verified", sa.Boolean, default=False),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.Text),
        sa.Column("referral_source", sa.Text),
        sa.Column("submission_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_quote_submissions_partner_id", "quote_submissions", ["partner_id"])
    op.create_index("ix_quote_submissions_status", "quote_submissions", ["status"])
    op.create_index("ix_quote_submissions_submission_date", "quote_submissions", ["submission_date"])

    # Funnel telemetry, one row per submission
    op.create_table(
        "lead_submission_data",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("submission_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("service_category_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("current_page", sa.String(50)),
        sa.Column("pages_completed", postgresql.JSONB, default=[]),
        sa.Column("quote_data", postgresql.JSONB, default={}),
        sa.Column("form_submissions", postgresql.JSONB, default=[]),
        sa.Column("conversion_events", postgresql.JSONB, default=[]),
        sa.Column("page_timings", postgresql.JSONB, default={}),
        sa.Column("device_info", postgresql.JSONB, default={}),
        sa.Column("session_id", sa.String(100)),
        sa.Column("last_activity_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_lead_submission_data_partner_id", "lead_submission_data", ["partner_id"])

    # GoHighLevel
    op.create_table(
        "ghl_integrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "partner_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("partners.id"), nullable=False, unique=True,
        ),
        sa.Column("api_key_encrypted", sa.Text, nullable=False),
        sa.Column("location_id", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "ghl_field_mappings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("partners.id"), nullable=False),
        sa.Column(
            "service_category_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("service_categories.id"), nullable=False,
        ),
        sa.Column("email_type", sa.String(50), nullable=False),
        sa.Column("recipient_type", sa.String(20), default="customer"),
        sa.Column("field_mappings", postgresql.JSONB, default={}),
        sa.Column("pipeline_id", sa.String(100)),
        sa.Column("opportunity_stage", sa.String(100)),
        sa.Column("tags", postgresql.JSONB, default=[]),
        sa.Column("is_active", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_ghl_field_mappings_lookup", "ghl_field_mappings",
        ["partner_id", "service_category_id", "email_type"],
    )


def downgrade() -> None:
    op.drop_table("ghl_field_mappings")
    op.drop_table("ghl_integrations")
    op.drop_table("lead_submission_data")
    op.drop_table("quote_submissions")
    op.drop_table("form_questions")
    op.drop_table("service_categories")
    op.drop_table("partners")
