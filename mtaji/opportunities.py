from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from mtaji.db import store_errors
from mtaji.errors import NotFound
from mtaji.models import Initiative, Job
from mtaji.repository import read_preferences
from mtaji.schemas import JobIn, OpportunityPreferences, validate_payload
from mtaji.utils import isoformat

log = logging.getLogger(__name__)


def job_out(job: Job) -> dict:
    return {
        "id": job.id, "initiative_id": job.initiative_id, "title": job.title,
        "job_type": job.job_type, "description": job.description,
        "is_active": job.is_active, "created_at": isoformat(job.created_at),
    }


def _require_initiative(session: Session, initiative_id: int) -> Initiative:
    init = session.get(Initiative, initiative_id)
    if init is None:
        raise NotFound(f"Initiative {initiative_id} not found")
    return init


def add_jobs(session: Session, initiative_id: int, jobs: list[JobIn | dict]) -> list[dict]:
    """Attach job postings. Rows with a blank title are dropped, not rejected."""
    cleaned = []
    for raw in jobs:
        job = validate_payload(JobIn, raw)
        if not job.title:
            continue
        cleaned.append(job)
    if not cleaned:
        log.info("No jobs with a title to save for initiative %d", initiative_id)
        return []

    with store_errors(session, "save jobs for initiative"):
        _require_initiative(session, initiative_id)
        rows = [
            Job(
                initiative_id=initiative_id, title=j.title,
                job_type=j.job_type or None, description=j.description or None, is_active=True,
            )
            for j in cleaned
        ]
        session.add_all(rows)
        session.commit()
    log.info("Saved %d jobs for initiative %d (%d blank dropped)", len(rows), initiative_id, len(jobs) - len(rows))
    return [job_out(r) for r in rows]


def list_jobs(session: Session, initiative_id: int) -> list[dict]:
    """Active postings of a live initiative, oldest first."""
    with store_errors(session, "load jobs for this initiative"):
        rows = session.execute(
            select(Job).join(Initiative, Initiative.id == Job.initiative_id)
            .where(Job.initiative_id == initiative_id, Job.is_active.is_(True))
            .order_by(Job.created_at, Job.id)
        ).scalars().all()
    return [job_out(r) for r in rows]


def set_job_active(session: Session, job_id: int, is_active: bool) -> dict:
    with store_errors(session, "update job"):
        job = session.get(Job, job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        job.is_active = is_active
        session.commit()
    return job_out(job)


def delete_jobs(session: Session, initiative_id: int) -> int:
    with store_errors(session, "delete jobs"):
        result = session.execute(delete(Job).where(Job.initiative_id == initiative_id))
        session.commit()
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Channel preferences
# ---------------------------------------------------------------------------


def get_preferences(session: Session, initiative_id: int) -> dict[str, bool]:
    with store_errors(session, "load opportunity preferences"):
        init = _require_initiative(session, initiative_id)
    return read_preferences(init)


def update_preferences(
    session: Session, initiative_id: int, prefs: OpportunityPreferences | dict,
) -> dict[str, bool]:
    prefs = validate_payload(OpportunityPreferences, prefs)
    with store_errors(session, "update opportunity preferences"):
        init = _require_initiative(session, initiative_id)
        init.opportunity_preferences_json = prefs.model_dump_json(by_alias=True)
        session.commit()
    return read_preferences(init)


def accepts(session: Session, initiative_id: int, channel: str) -> bool:
    """True if the initiative takes submissions on *channel* (e.g. ``accept_proposals``)."""
    return bool(get_preferences(session, initiative_id).get(channel, True))
