"""
Request and response schemas for the public funnel and OTP endpoints.
"""
from typing import Any, Optional, Union
from pydantic import BaseModel, Field

AnswerValue = Union[str, list[str], int, float, bool, None]


class PartnerProfile(BaseModel):
    id: str
    company_name: str
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    logo_url: Optional[str] = None
    company_color: Optional[str] = None
    business_description: Optional[str] = None
    phone: Optional[str] = None
    website_url: Optional[str] = None
    address: Optional[str] = None
    privacy_policy: Optional[str] = None
    terms_conditions: Optional[str] = None
    otp_enabled: bool = False
    roof_mapping_enabled: bool = False


class QuestionOut(BaseModel):
    id: str
    step_number: int
    display_order_in_step: int = 0
    question_text: str
    answer_type: str
    answer_options: list[Any] = Field(default_factory=list)
    is_required: bool = True
    conditional_display: Optional[dict] = None


class QuestionListResponse(BaseModel):
    category: str
    questions: list[QuestionOut]


class StepOut(BaseModel):
    kind: str
    name: str
    step_number: Optional[int] = None


class PlanOut(BaseModel):
    active_steps: list[int]
    total_steps: int
    steps: list[StepOut]


class StartSessionRequest(BaseModel):
    subdomain: Optional[str] = None
    device: dict[str, Any] = Field(default_factory=dict)  # screen/viewport reported by the browser


class SessionStateResponse(BaseModel):
    session_id: str
    category_slug: str
    current_step: int
    step: StepOut
    plan: PlanOut
    questions: list[QuestionOut] = Field(default_factory=list)
    answers: dict[str, Any] = Field(default_factory=dict)
    selected_address: Optional[dict] = None
    submission_id: Optional[str] = None
    otp_required: bool = False
    completed: bool = False


class AnswerRequest(BaseModel):
    value: AnswerValue = None


class AddressRequest(BaseModel):
    address_line_1: Optional[str] = None
    address_line_2: Optional[str] = None
    street_name: Optional[str] = None
    street_number: Optional[str] = None
    building_name: Optional[str] = None
    sub_building: Optional[str] = None
    city: Optional[str] = None
    county: Optional[str] = None
    postcode: str
    country: Optional[str] = None
    formatted_address: Optional[str] = None
    address_type: Optional[str] = None


class RoofMappingRequest(BaseModel):
    data: dict[str, Any]


class ContactRequest(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    country_code: Optional[str] = None
    referral_source: Optional[str] = None


class SubmissionResponse(BaseModel):
    submission_id: str
    next_action: str  # redirect, verify_otp
    redirect_url: Optional[str] = None
    otp_required: bool = False


class OtpRequest(BaseModel):
    session_id: str


class OtpVerifyRequest(BaseModel):
    session_id: str
    code: str


class OtpStateResponse(BaseModel):
    state: str
    resend_available_in: int = 0
    attempts: int = 0
    last_error: Optional[str] = None
