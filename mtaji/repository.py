"""Initiative persistence: create/read/update/delete of an initiative and its milestones.

Every table write commits on its own. The store gives this layer no
cross-table transaction, so an initiative row can exist without the
milestones that were meant to go with it; those partial results are logged
and the caller sees whatever was durably stored.
"""
from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mtaji.config import get_settings
from mtaji.db import store_errors
from mtaji.errors import NotFound, ValidationFailed, diagnostics
from mtaji.geo import coerce_location, validate_coordinate
from mtaji.identity import AuthSession, resolve_changemaker
from mtaji.models import Initiative, Milestone
from mtaji.schemas import (
    InitiativeDraft,
    InitiativeUpdate,
    MilestoneIn,
    OpportunityPreferences,
    validate_payload,
)
from mtaji.utils import isoformat, json_parse

log = logging.getLogger(__name__)

PUBLIC_STATUSES = ("published", "active", "completed")

VALID_CATEGORIES = ("agriculture", "water", "health", "education", "infrastructure", "economic")

# Older forms offered categories the store does not know about.
_CATEGORY_ALIASES = {
    "social_welfare": "health",
    "environment": "infrastructure",
    "governance": "infrastructure",
    "other": "infrastructure",
}

# Scalar columns copied verbatim from a draft on create/update.
SCALAR_FIELDS = (
    "title", "short_description", "description", "organization_type",
    "target_amount", "raised_amount", "project_duration", "expected_completion", "status",
)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def normalize_category(value: str | None) -> str:
    key = (value or "").strip().lower()
    key = _CATEGORY_ALIASES.get(key, key)
    return key if key in VALID_CATEGORIES else "infrastructure"


def read_preferences(init: Initiative) -> dict[str, bool]:
    raw = json_parse(init.opportunity_preferences_json, None)
    prefs = OpportunityPreferences.model_validate(raw) if isinstance(raw, dict) else OpportunityPreferences()
    return prefs.model_dump()


def milestone_out(m: Milestone) -> dict:
    return {
        "id": m.id, "title": m.title, "target_date": m.target_date.isoformat(),
        "status": m.status, "description": m.description,
        "completed_at": isoformat(m.completed_at),
    }


def initiative_detail(init: Initiative, milestones: list[Milestone]) -> dict:
    location, repaired = coerce_location(json_parse(init.location_json))
    if repaired:
        log.warning("Initiative %d (%s) has an invalid stored location; using placeholder", init.id, init.title)
    return {
        "id": init.id, "changemaker_id": init.changemaker_id, "title": init.title,
        "short_description": init.short_description or "", "description": init.description or "",
        "category": init.category, "organization_type": init.organization_type,
        "target_amount": float(init.target_amount or 0), "raised_amount": float(init.raised_amount or 0),
        "location": location,
        "project_duration": init.project_duration or "",
        "expected_completion": isoformat(init.expected_completion),
        "reference_images": json_parse(init.reference_images_json, []),
        "payment_details": json_parse(init.payment_details_json, {}),
        "status": init.status,
        "opportunity_preferences": read_preferences(init),
        "milestones": [milestone_out(m) for m in milestones],
        "created_at": isoformat(init.created_at),
        "updated_at": isoformat(init.updated_at),
    }


def _location_payload(draft: InitiativeDraft) -> str:
    loc = draft.location
    coord = validate_coordinate(
        loc.coordinates.lat if loc.coordinates else None,
        loc.coordinates.lng if loc.coordinates else None,
    )
    payload: dict[str, Any] = {
        "county": loc.county, "constituency": loc.constituency,
        "specific_area": loc.specific_area, "coordinates": coord.as_dict(),
    }
    if loc.geofence:
        payload["geofence"] = [
            validate_coordinate(p.lat, p.lng, f"location.geofence.{i}").as_dict()
            for i, p in enumerate(loc.geofence)
        ]
    return json.dumps(payload)


def _apply_draft(init: Initiative, draft: InitiativeDraft, location_json: str) -> None:
    for field in SCALAR_FIELDS:
        value = getattr(draft, field)
        if field == "status" and value is None:
            continue
        setattr(init, field, value)
    init.category = normalize_category(draft.category)
    init.location_json = location_json
    init.reference_images_json = json.dumps(draft.reference_images)
    init.payment_details_json = draft.payment_details.model_dump_json(exclude_none=True)
    if draft.opportunity_preferences is not None:
        init.opportunity_preferences_json = draft.opportunity_preferences.model_dump_json(by_alias=True)


def _milestone_rows(initiative_id: int, milestones: list[MilestoneIn]) -> list[Milestone]:
    now = datetime.now(UTC)
    return [
        Milestone(
            initiative_id=initiative_id, title=m.title, target_date=m.target_date,
            status=m.status, description=m.description,
            completed_at=now if m.status == "completed" else None,
        )
        for m in milestones
    ]


def _insert_milestones(session: Session, initiative_id: int, milestones: list[MilestoneIn]) -> bool:
    """Best-effort batch insert. Failures are logged, never raised."""
    if not milestones:
        return True
    try:
        session.add_all(_milestone_rows(initiative_id, milestones))
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        log.warning(
            "Milestones for initiative %d were not saved (%d requested): %s",
            initiative_id, len(milestones), diagnostics(exc),
        )
        return False
    return True


def _milestones_by_initiative(session: Session, ids: list[int]) -> dict[int, list[Milestone]]:
    grouped: dict[int, list[Milestone]] = defaultdict(list)
    if not ids:
        return grouped
    rows = session.execute(
        select(Milestone).where(Milestone.initiative_id.in_(ids))
        .order_by(Milestone.target_date, Milestone.id)
    ).scalars().all()
    for m in rows:
        grouped[m.initiative_id].append(m)
    return grouped


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_initiative(session: Session, initiative_id: int) -> dict | None:
    with store_errors(session, "load initiative"):
        init = session.get(Initiative, initiative_id, populate_existing=True)
        if init is None:
            return None
        milestones = _milestones_by_initiative(session, [init.id])[init.id]
    return initiative_detail(init, milestones)


def list_milestones(session: Session, initiative_id: int) -> list[dict]:
    """Milestones of a live initiative. Rows orphaned by a failed cascade step are not returned."""
    with store_errors(session, "load milestones"):
        rows = session.execute(
            select(Milestone).join(Initiative, Initiative.id == Milestone.initiative_id)
            .where(Milestone.initiative_id == initiative_id)
            .order_by(Milestone.target_date, Milestone.id)
        ).scalars().all()
    return [milestone_out(m) for m in rows]


def _list(session: Session, query, action: str) -> list[dict]:
    with store_errors(session, action):
        inits = session.execute(query).scalars().all()
        grouped = _milestones_by_initiative(session, [i.id for i in inits])
    return [initiative_detail(i, grouped[i.id]) for i in inits]


def list_public(session: Session, limit: int | None = None) -> list[dict]:
    """Published, active and completed initiatives, newest first."""
    limit = limit or get_settings().public_list_limit
    query = (
        select(Initiative).where(Initiative.status.in_(PUBLIC_STATUSES))
        .order_by(Initiative.created_at.desc(), Initiative.id.desc())
        .limit(limit)
    )
    items = _list(session, query, "list public initiatives")
    log.debug("Loaded %d public initiatives", len(items))
    return items


def list_for_changemaker(session: Session, changemaker_id: int) -> list[dict]:
    """Every initiative the changemaker owns, drafts included."""
    query = (
        select(Initiative).where(Initiative.changemaker_id == changemaker_id)
        .order_by(Initiative.created_at.desc(), Initiative.id.desc())
    )
    return _list(session, query, "list changemaker initiatives")


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def create_initiative(
    session: Session, draft: InitiativeDraft | dict, auth: AuthSession,
    changemaker_id: int | None = None,
) -> dict:
    """Persist a new initiative and its milestones, then return it re-read from the store.

    Location problems are rejected before anything is written. A failed
    milestone insert leaves the initiative in place with fewer milestones.
    """
    draft = validate_payload(InitiativeDraft, draft)
    location_json = _location_payload(draft)
    if changemaker_id is None:
        changemaker_id = resolve_changemaker(session, auth)

    init = Initiative(changemaker_id=changemaker_id)
    _apply_draft(init, draft, location_json)
    with store_errors(session, "create initiative"):
        session.add(init)
        session.commit()
    log.info("Created initiative %d (%s) for changemaker %d", init.id, init.title, changemaker_id)

    _insert_milestones(session, init.id, draft.milestones)

    created = get_initiative(session, init.id)
    if created is None:
        raise NotFound(f"Initiative {init.id} vanished after creation")
    return created


def update_initiative(session: Session, initiative_id: int, update: InitiativeUpdate | dict) -> dict:
    """Overwrite the scalar fields, then replace the milestone set when one is given."""
    update = validate_payload(InitiativeUpdate, update)
    location_json = _location_payload(update)
    with store_errors(session, "update initiative"):
        init = session.get(Initiative, initiative_id)
        if init is None:
            raise NotFound(f"Initiative {initiative_id} not found")
        _apply_draft(init, update, location_json)
        session.commit()

    if update.milestones is not None:
        delete_milestones(session, initiative_id)
        _insert_milestones(session, initiative_id, update.milestones)

    updated = get_initiative(session, initiative_id)
    if updated is None:
        raise NotFound(f"Initiative {initiative_id} not found")
    return updated


def delete_milestones(session: Session, initiative_id: int) -> int:
    with store_errors(session, "delete milestones"):
        result = session.execute(delete(Milestone).where(Milestone.initiative_id == initiative_id))
        session.commit()
    return result.rowcount or 0


def delete_initiative_row(session: Session, initiative_id: int) -> bool:
    """Delete only the initiative row. Dependents must already be handled."""
    with store_errors(session, "delete initiative"):
        result = session.execute(delete(Initiative).where(Initiative.id == initiative_id))
        session.commit()
    return bool(result.rowcount)


def set_raised_amount(session: Session, initiative_id: int, raised_amount: float) -> dict:
    if raised_amount < 0:
        raise ValidationFailed("raised_amount", "raised_amount must be non-negative")
    with store_errors(session, "update raised amount"):
        init = session.get(Initiative, initiative_id)
        if init is None:
            raise NotFound(f"Initiative {initiative_id} not found")
        init.raised_amount = raised_amount
        session.commit()
    return get_initiative(session, initiative_id)  # type: ignore[return-value]
