"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.partner import Partner
from src.models.service_category import ServiceCategory
from src.models.form_question import FormQuestion
from src.models.quote_submission import QuoteSubmission
from src.models.lead_submission_data import LeadSubmissionData
from src.models.ghl_integration import GHLIntegration, GHLFieldMapping

__all__ = [
    "Partner",
    "ServiceCategory",
    "FormQuestion",
    "QuoteSubmission",
    "LeadSubmissionData",
    "GHLIntegration",
    "GHLFieldMapping",
]
