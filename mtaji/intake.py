"""Engagement intake: five application kinds and their operator review flow.

Status flow (job, ambassador, proposal, content creator)::

    pending -> reviewed | accepted | rejected
    reviewed -> accepted | rejected

Volunteers use ``approved`` for acceptance and continue past it::

    pending -> reviewed | approved | rejected | withdrawn
    reviewed -> approved | rejected | withdrawn
    approved -> active -> completed

Transitions only happen on operator action and stamp who reviewed and when.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from mtaji.db import store_errors
from mtaji.errors import InvalidTransition, NotFound, ValidationFailed
from mtaji.models import (
    AmbassadorApplication,
    ContentCreatorApplication,
    Initiative,
    Job,
    JobApplication,
    Proposal,
    VolunteerApplication,
)
from mtaji.repository import PUBLIC_STATUSES, read_preferences
from mtaji.schemas import (
    AmbassadorApplicationForm,
    ContentCreatorApplicationForm,
    JobApplicationForm,
    ProposalForm,
    VolunteerApplicationForm,
    validate_payload,
)
from mtaji.utils import SubmissionGuard, row_to_dict

log = logging.getLogger(__name__)

REVIEW_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"reviewed", "accepted", "rejected"}),
    "reviewed": frozenset({"accepted", "rejected"}),
    "accepted": frozenset(),
    "rejected": frozenset(),
}

VOLUNTEER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"reviewed", "approved", "rejected", "withdrawn"}),
    "reviewed": frozenset({"approved", "rejected", "withdrawn"}),
    "approved": frozenset({"active"}),
    "active": frozenset({"completed"}),
    "rejected": frozenset(),
    "withdrawn": frozenset(),
    "completed": frozenset(),
}

# Volunteers counted as engaged with an initiative.
ENGAGED_VOLUNTEER_STATUSES = ("approved", "active", "completed")


@dataclass(frozen=True)
class ApplicationKind:
    name: str
    label: str
    model: type
    form: type[BaseModel]
    transitions: dict[str, frozenset[str]]
    channel: str | None = None  # opportunity preference gating this kind

    def allowed(self, current: str) -> frozenset[str]:
        return self.transitions.get(current, frozenset())


KINDS: dict[str, ApplicationKind] = {
    "job": ApplicationKind("job", "job application", JobApplication, JobApplicationForm, REVIEW_TRANSITIONS),
    "volunteer": ApplicationKind(
        "volunteer", "volunteer application", VolunteerApplication, VolunteerApplicationForm,
        VOLUNTEER_TRANSITIONS,
    ),
    "ambassador": ApplicationKind(
        "ambassador", "ambassador application", AmbassadorApplication, AmbassadorApplicationForm,
        REVIEW_TRANSITIONS, channel="accept_ambassadors",
    ),
    "proposal": ApplicationKind(
        "proposal", "proposal", Proposal, ProposalForm, REVIEW_TRANSITIONS, channel="accept_proposals",
    ),
    "content_creator": ApplicationKind(
        "content_creator", "content creator application", ContentCreatorApplication,
        ContentCreatorApplicationForm, REVIEW_TRANSITIONS, channel="accept_content_creators",
    ),
}


def get_kind(kind: str) -> ApplicationKind:
    try:
        return KINDS[kind]
    except KeyError:
        raise ValidationFailed("kind", f"Unknown application kind: {kind!r}") from None


def application_out(row: Any) -> dict[str, Any]:
    return row_to_dict(row)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


def _check_target(session: Session, entry: ApplicationKind, initiative_id: int, form: BaseModel) -> None:
    init = session.get(Initiative, initiative_id)
    if init is None or init.status not in PUBLIC_STATUSES:
        raise NotFound(f"Initiative {initiative_id} is not open for applications")
    if entry.channel and not read_preferences(init).get(entry.channel, True):
        raise ValidationFailed("initiative_id", f"This initiative is not accepting {entry.label}s")
    job_id = getattr(form, "job_id", None)
    if job_id is not None:
        job = session.get(Job, job_id)
        if job is None or job.initiative_id != initiative_id or not job.is_active:
            raise ValidationFailed("job_id", "The selected job is not open on this initiative")


def _build_row(entry: ApplicationKind, initiative_id: int, form: BaseModel) -> Any:
    row = entry.model(initiative_id=initiative_id, status="pending")
    for key, value in form.model_dump().items():
        if isinstance(value, list):
            setattr(row, f"{key}_json", json.dumps(value))
        else:
            setattr(row, key, value)
    return row


def _store_application(session: Session, entry: ApplicationKind, initiative_id: int, form: BaseModel) -> Any:
    with store_errors(session, f"submit {entry.label}"):
        _check_target(session, entry, initiative_id, form)
        row = _build_row(entry, initiative_id, form)
        session.add(row)
        session.commit()
    return row


def submit_application(
    session: Session,
    kind: str,
    initiative_id: int,
    data: BaseModel | dict,
    guard: SubmissionGuard | None = None,
) -> dict:
    """Validate and store one application. Nothing is written if validation fails.

    With a *guard*, a second submit for the same kind, initiative and email
    is refused with ``SubmissionInFlight`` while the first is outstanding.
    """
    entry = get_kind(kind)
    form = validate_payload(entry.form, data)
    if guard is None:
        row = _store_application(session, entry, initiative_id, form)
    else:
        with guard.claim(f"{kind}:{initiative_id}:{form.email}"):
            row = _store_application(session, entry, initiative_id, form)
    log.info("Stored %s %d for initiative %d", entry.label, row.id, initiative_id)
    return application_out(row)


def submit_job_application(session: Session, initiative_id: int, data: JobApplicationForm | dict) -> dict:
    return submit_application(session, "job", initiative_id, data)


def submit_volunteer_application(
    session: Session, initiative_id: int, data: VolunteerApplicationForm | dict,
) -> dict:
    return submit_application(session, "volunteer", initiative_id, data)


def submit_ambassador_application(
    session: Session, initiative_id: int, data: AmbassadorApplicationForm | dict,
) -> dict:
    return submit_application(session, "ambassador", initiative_id, data)


def submit_proposal(session: Session, initiative_id: int, data: ProposalForm | dict) -> dict:
    return submit_application(session, "proposal", initiative_id, data)


def submit_content_creator_application(
    session: Session, initiative_id: int, data: ContentCreatorApplicationForm | dict,
) -> dict:
    return submit_application(session, "content_creator", initiative_id, data)


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


def transition_application(
    session: Session, kind: str, application_id: int, target: str, *,
    reviewer: str | None = None, notes: str | None = None, rejection_reason: str | None = None,
) -> dict:
    entry = get_kind(kind)
    if kind == "volunteer" and target == "accepted":
        target = "approved"
    if target not in entry.transitions:
        raise ValidationFailed("status", f"Unknown status for a {entry.label}: {target!r}")

    with store_errors(session, f"update {entry.label} status"):
        row = session.get(entry.model, application_id)
        if row is None:
            raise NotFound(f"{entry.label.capitalize()} {application_id} not found")
        if target not in entry.allowed(row.status):
            raise InvalidTransition(row.status, target)

        now = datetime.now(UTC)
        previous = row.status
        row.status = target
        row.reviewed_at = now
        if reviewer:
            row.reviewed_by = reviewer
        if notes:
            row.review_notes = notes
        if isinstance(row, VolunteerApplication):
            if rejection_reason:
                row.rejection_reason = rejection_reason
            if target == "approved":
                row.assigned_at = now
                row.assigned_by = reviewer
            if target == "active":
                row.last_active_at = now
        session.commit()

    log.info("%s %d: %s -> %s (by %s)", entry.label, application_id, previous, target, reviewer or "unknown")
    return application_out(row)


def approve_volunteer(
    session: Session, application_id: int, reviewer: str | None = None, notes: str | None = None,
) -> dict:
    return transition_application(
        session, "volunteer", application_id, "approved", reviewer=reviewer, notes=notes,
    )


def activate_volunteer(session: Session, application_id: int, reviewer: str | None = None) -> dict:
    return transition_application(session, "volunteer", application_id, "active", reviewer=reviewer)


def complete_volunteer(session: Session, application_id: int, reviewer: str | None = None) -> dict:
    return transition_application(session, "volunteer", application_id, "completed", reviewer=reviewer)


def withdraw_volunteer(session: Session, application_id: int, reviewer: str | None = None) -> dict:
    return transition_application(session, "volunteer", application_id, "withdrawn", reviewer=reviewer)


def reject_volunteer(
    session: Session, application_id: int, reviewer: str | None = None, reason: str | None = None,
) -> dict:
    return transition_application(
        session, "volunteer", application_id, "rejected", reviewer=reviewer, rejection_reason=reason,
    )


def record_contribution(session: Session, application_id: int, hours: float = 0.0, tasks: int = 0) -> dict:
    """Add hours/tasks to an active volunteer."""
    if hours < 0 or tasks < 0:
        raise ValidationFailed("hours", "Contributions must be non-negative")
    with store_errors(session, "record volunteer contribution"):
        row = session.get(VolunteerApplication, application_id)
        if row is None:
            raise NotFound(f"Volunteer application {application_id} not found")
        if row.status != "active":
            raise InvalidTransition(row.status, "active")
        row.hours_contributed = (row.hours_contributed or 0) + hours
        row.tasks_completed = (row.tasks_completed or 0) + tasks
        row.last_active_at = datetime.now(UTC)
        session.commit()
    return application_out(row)


# ---------------------------------------------------------------------------
# Listing and bulk operations
# ---------------------------------------------------------------------------


def list_applications(
    session: Session, kind: str, *, initiative_id: int | None = None, status: str | None = None,
) -> list[dict]:
    """Applications of one kind, newest first. Job applications carry their job title."""
    entry = get_kind(kind)
    model = entry.model
    query = select(model).order_by(model.created_at.desc(), model.id.desc())
    if initiative_id is not None:
        query = query.where(model.initiative_id == initiative_id)
    if status:
        query = query.where(model.status == status)
    with store_errors(session, f"fetch {entry.label}s"):
        rows = session.execute(query).scalars().all()
        titles: dict[int, str] = {}
        if kind == "job":
            job_ids = {r.job_id for r in rows if r.job_id}
            if job_ids:
                titles = dict(session.execute(
                    select(Job.id, Job.title).where(Job.id.in_(job_ids))
                ).all())

    items = [application_out(r) for r in rows]
    if kind == "job":
        for item in items:
            item["job_title"] = titles.get(item["job_id"]) if item["job_id"] else None
    return items


def volunteer_count(session: Session, initiative_id: int) -> int:
    with store_errors(session, "count volunteers"):
        return session.execute(
            select(func.count(VolunteerApplication.id)).where(
                VolunteerApplication.initiative_id == initiative_id,
                VolunteerApplication.status.in_(ENGAGED_VOLUNTEER_STATUSES),
            )
        ).scalar_one()


def delete_applications(session: Session, kind: str, initiative_id: int) -> int:
    entry = get_kind(kind)
    with store_errors(session, f"delete {entry.label}s"):
        result = session.execute(delete(entry.model).where(entry.model.initiative_id == initiative_id))
        session.commit()
    return result.rowcount or 0


def tombstone_applications(session: Session, kind: str, initiative_id: int) -> int:
    """Keep the rows but mark that their initiative is gone."""
    entry = get_kind(kind)
    with store_errors(session, f"mark {entry.label}s as orphaned"):
        result = session.execute(
            update(entry.model)
            .where(entry.model.initiative_id == initiative_id, entry.model.initiative_removed_at.is_(None))
            .values(initiative_removed_at=datetime.now(UTC))
        )
        session.commit()
    return result.rowcount or 0
