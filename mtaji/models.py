from __future__ import annotations

from datetime import UTC, date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class Changemaker(Base):
    """Publishing identity. One per user account, created lazily on first publish."""
    __tablename__ = "changemakers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), default="")
    organization: Mapped[str | None] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


class Initiative(Base):
    __tablename__ = "initiatives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    changemaker_id: Mapped[int] = mapped_column(Integer, ForeignKey("changemakers.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    short_description: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # agriculture | water | health | ...
    organization_type: Mapped[str | None] = mapped_column(String(20), nullable=True)  # NGO | CBO | Govt
    target_amount: Mapped[float] = mapped_column(Float, default=0.0)
    raised_amount: Mapped[float] = mapped_column(Float, default=0.0)
    location_json: Mapped[str] = mapped_column(Text, default="{}")
    project_duration: Mapped[str] = mapped_column(String(100), default="")
    expected_completion: Mapped[date | None] = mapped_column(Date, nullable=True)
    reference_images_json: Mapped[str] = mapped_column(Text, default="[]")
    payment_details_json: Mapped[str] = mapped_column(Text, default="{}")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="published")
    opportunity_preferences_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_initiatives_status", "status"),
        Index("ix_initiatives_changemaker", "changemaker_id"),
    )


class Milestone(Base):
    __tablename__ = "milestones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    initiative_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("initiatives.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    target_date: Mapped[date] = mapped_column(Date, nullable=False)
    # pending | in_progress | completed
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)


class Job(Base):
    __tablename__ = "initiative_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    initiative_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("initiatives.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    job_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


# ---------------------------------------------------------------------------
# Applications
#
# Applications only reference an initiative by id. They are not owned by it in
# storage, so there is no foreign key and rows survive the initiative unless the
# cascade orchestrator removes them.
# ---------------------------------------------------------------------------


class _ApplicationMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    initiative_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    initiative_removed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)


class JobApplication(_ApplicationMixin, Base):
    __tablename__ = "initiative_job_applications"

    job_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    full_name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    motivation: Mapped[str] = mapped_column(Text, default="")


class AmbassadorApplication(_ApplicationMixin, Base):
    __tablename__ = "initiative_ambassador_applications"

    full_name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), nullable=False)
    reach: Mapped[str] = mapped_column(Text, default="")
    motivation: Mapped[str] = mapped_column(Text, default="")


class Proposal(_ApplicationMixin, Base):
    __tablename__ = "initiative_proposals"

    name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), nullable=False)
    subject: Mapped[str] = mapped_column(String(300), nullable=False)
    details: Mapped[str] = mapped_column(Text, default="")
    links: Mapped[str | None] = mapped_column(Text, nullable=True)


class ContentCreatorApplication(_ApplicationMixin, Base):
    __tablename__ = "initiative_content_creator_applications"

    full_name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), default="")
    portfolio: Mapped[str] = mapped_column(Text, default="")
    motivation: Mapped[str] = mapped_column(Text, default="")


class VolunteerApplication(_ApplicationMixin, Base):
    __tablename__ = "volunteer_applications"

    full_name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str] = mapped_column(String(300), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    skills_json: Mapped[str] = mapped_column(Text, default="[]")
    experience_level: Mapped[str] = mapped_column(String(20), default="beginner")
    previous_volunteer_experience: Mapped[str | None] = mapped_column(Text, nullable=True)
    availability_days_json: Mapped[str] = mapped_column(Text, default="[]")
    availability_hours_per_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    commitment_duration: Mapped[str | None] = mapped_column(String(100), nullable=True)
    motivation: Mapped[str | None] = mapped_column(Text, nullable=True)
    interests_json: Mapped[str] = mapped_column(Text, default="[]")
    emergency_contact_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    emergency_contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    emergency_contact_relationship: Mapped[str | None] = mapped_column(String(100), nullable=True)
    special_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    additional_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_tasks_json: Mapped[str] = mapped_column(Text, default="[]")
    assigned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    hours_contributed: Mapped[float] = mapped_column(Float, default=0.0)
    tasks_completed: Mapped[int] = mapped_column(Integer, default=0)
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


# ---------------------------------------------------------------------------
# Collaborator tables
# ---------------------------------------------------------------------------


class BlogPost(Base):
    """Only the initiative link matters here; blog editing lives in the UI layer."""
    __tablename__ = "blog_posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="")
    initiative_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


class InitiativeDraft(Base):
    __tablename__ = "initiative_drafts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    saved_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)
