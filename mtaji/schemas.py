"""Pydantic request/response schemas for initiatives, opportunities and applications."""
from __future__ import annotations

import re
from datetime import date
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from mtaji.errors import ValidationFailed

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

InitiativeStatus = Literal["draft", "published", "active", "completed", "stalled"]
MilestoneStatus = Literal["pending", "in_progress", "completed"]

M = TypeVar("M", bound=BaseModel)


def validate_payload(model: type[M], data: M | dict[str, Any]) -> M:
    """Build *model* from *data*, reporting the first problem as ``ValidationFailed``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or model.__name__
        raise ValidationFailed(field, f"{field}: {first['msg']}") from None


class _Form(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Initiatives
# ---------------------------------------------------------------------------


class CoordinateIn(_Form):
    lat: float
    lng: float


class LocationIn(_Form):
    county: str = ""
    constituency: str = ""
    specific_area: str = ""
    coordinates: CoordinateIn | None = None
    geofence: list[CoordinateIn] | None = None


class PaymentDetails(_Form):
    method: Literal["mpesa", "bank"] = "mpesa"
    mpesa_number: str | None = None
    bank_account: str | None = None
    bank_name: str | None = None
    bank_branch: str | None = None


class OpportunityPreferences(BaseModel):
    """Stored with camelCase keys; records without them accept everything."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    accept_proposals: bool = True
    accept_content_creators: bool = True
    accept_ambassadors: bool = True


class MilestoneIn(_Form):
    title: str = Field(min_length=1)
    target_date: date
    status: MilestoneStatus = "pending"
    description: str | None = None


class InitiativeDraft(_Form):
    title: str = Field(min_length=1)
    short_description: str = ""
    description: str = ""
    category: str = "infrastructure"
    organization_type: Literal["NGO", "CBO", "Govt"] | None = None
    target_amount: float = Field(default=0.0, ge=0)
    raised_amount: float = Field(default=0.0, ge=0)
    location: LocationIn = Field(default_factory=LocationIn)
    project_duration: str = ""
    expected_completion: date | None = None
    reference_images: list[str] = []
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)
    status: InitiativeStatus = "published"
    opportunity_preferences: OpportunityPreferences | None = None
    milestones: list[MilestoneIn] = []


class InitiativeUpdate(InitiativeDraft):
    # None keeps the stored status.
    status: InitiativeStatus | None = None  # type: ignore[assignment]
    # None leaves the milestone set untouched; a list replaces it wholesale.
    milestones: list[MilestoneIn] | None = None  # type: ignore[assignment]


class MilestoneOut(BaseModel):
    id: int
    title: str
    target_date: str
    status: str
    description: str | None = None
    completed_at: str | None = None


class InitiativeOut(BaseModel):
    id: int
    changemaker_id: int
    title: str
    short_description: str
    description: str
    category: str
    organization_type: str | None = None
    target_amount: float
    raised_amount: float
    location: dict[str, Any]
    project_duration: str
    expected_completion: str | None = None
    reference_images: list[str] = []
    payment_details: dict[str, Any] = {}
    status: str
    opportunity_preferences: dict[str, bool]
    milestones: list[MilestoneOut] = []
    created_at: str | None = None
    updated_at: str | None = None


class DashboardItemOut(BaseModel):
    id: int
    name: str
    description: str
    status: str
    original_status: str
    category: str
    location: str
    progress: int
    funding_progress: float
    thumbnail_url: str | None = None
    last_updated: str | None = None
    volunteers: int = 0


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------


class JobIn(_Form):
    # Empty titles are allowed here and dropped by the catalog.
    title: str = ""
    job_type: str | None = None
    description: str | None = None


class JobOut(BaseModel):
    id: int
    initiative_id: int
    title: str
    job_type: str | None = None
    description: str | None = None
    is_active: bool
    created_at: str | None = None


# ---------------------------------------------------------------------------
# Application forms
# ---------------------------------------------------------------------------


class _ApplicantForm(_Form):
    email: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def email_must_look_valid(cls, v: str) -> str:
        if not _EMAIL_RE.match(v):
            raise ValueError("must be a valid email address")
        return v.lower()


class JobApplicationForm(_ApplicantForm):
    full_name: str = Field(min_length=1)
    phone: str | None = None
    motivation: str = Field(min_length=1)
    job_id: int | None = None


class AmbassadorApplicationForm(_ApplicantForm):
    full_name: str = Field(min_length=1)
    reach: str = Field(min_length=1)
    motivation: str = Field(min_length=1)


class ProposalForm(_ApplicantForm):
    name: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    details: str = Field(min_length=1)
    links: str | None = None


class ContentCreatorApplicationForm(_ApplicantForm):
    full_name: str = Field(min_length=1)
    content_type: str = Field(min_length=1)
    portfolio: str = Field(min_length=1)
    motivation: str = Field(min_length=1)


class VolunteerApplicationForm(_ApplicantForm):
    full_name: str = Field(min_length=1)
    phone: str | None = None
    address: str | None = None
    skills: list[str] = []
    experience_level: Literal["beginner", "intermediate", "advanced", "expert"] = "beginner"
    previous_volunteer_experience: str | None = None
    availability_days: list[str] = Field(min_length=1)
    availability_hours_per_week: int = Field(gt=0, le=168)
    start_date: date | None = None
    commitment_duration: str = Field(min_length=1)
    motivation: str = Field(min_length=1)
    interests: list[str] = []
    emergency_contact_name: str = Field(min_length=1)
    emergency_contact_phone: str = Field(min_length=1)
    emergency_contact_relationship: str | None = None
    special_requirements: str | None = None
    additional_notes: str | None = None


class StatusChange(_Form):
    status: str = Field(min_length=1)
    reviewer: str | None = None
    notes: str | None = None
    rejection_reason: str | None = None


class CascadeStepOut(BaseModel):
    step: str
    status: Literal["success", "failed", "skipped"]
    affected: int = 0
    error: str | None = None


class CascadeResultOut(BaseModel):
    initiative_id: int
    deleted: bool
    policy: str
    degraded: bool
    steps: list[CascadeStepOut]
