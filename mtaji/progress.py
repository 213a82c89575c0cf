"""Derived progress and dashboard status for initiatives.

Pure functions over the dicts the repository returns.
"""
from __future__ import annotations

from typing import Any

# Persisted lifecycle status -> coarse dashboard status.
DISPLAY_STATUS = {
    "completed": "completed",
    "stalled": "paused",
    "draft": "paused",
    "active": "active",
    "published": "active",
}

# Coarse filters match several persisted statuses; any other filter value is an exact match.
_COARSE_FILTERS = {
    "active": {"active", "published"},
    "completed": {"completed"},
    "paused": {"stalled", "draft"},
}


def funding_progress(initiative: dict[str, Any]) -> float:
    target = float(initiative.get("target_amount") or 0)
    if target <= 0:
        return 0.0
    raised = float(initiative.get("raised_amount") or 0)
    return raised / target * 100


def milestone_progress(initiative: dict[str, Any]) -> int:
    milestones = initiative.get("milestones") or []
    if not milestones:
        return 0
    completed = sum(1 for m in milestones if m.get("status") == "completed")
    return round(completed / len(milestones) * 100)


def display_status(status: str) -> str:
    return DISPLAY_STATUS.get(status, "active")


def matches_status_filter(initiative: dict[str, Any], status_filter: str | None) -> bool:
    if not status_filter or status_filter == "all":
        return True
    status = initiative.get("status")
    if status_filter in _COARSE_FILTERS:
        return status in _COARSE_FILTERS[status_filter]
    return status == status_filter


def _location_label(location: dict[str, Any]) -> str:
    if location.get("specific_area"):
        return location["specific_area"]
    if location.get("county"):
        return location["county"]
    coords = location.get("coordinates") or {}
    if "lat" in coords and "lng" in coords:
        return f"{coords['lat']:.4f}, {coords['lng']:.4f}"
    return "Location not specified"


def dashboard_summary(initiative: dict[str, Any], volunteers: int = 0) -> dict[str, Any]:
    """Operator dashboard row. Keeps both the coarse and the original status."""
    images = initiative.get("reference_images") or []
    return {
        "id": initiative["id"],
        "name": initiative["title"],
        "description": initiative.get("short_description") or initiative.get("description") or "",
        "status": display_status(initiative["status"]),
        "original_status": initiative["status"],
        "category": initiative.get("category", ""),
        "location": _location_label(initiative.get("location") or {}),
        "progress": milestone_progress(initiative),
        "funding_progress": funding_progress(initiative),
        "thumbnail_url": images[0] if images else None,
        "last_updated": initiative.get("updated_at") or initiative.get("created_at"),
        "volunteers": volunteers,
    }


def filter_dashboard(
    initiatives: list[dict[str, Any]], *, status: str | None = None,
    category: str | None = None, search: str | None = None,
) -> list[dict[str, Any]]:
    items = [i for i in initiatives if matches_status_filter(i, status)]
    if category and category != "all":
        items = [i for i in items if i.get("category") == category]
    if search:
        q = search.lower()
        items = [i for i in items if q in i["title"].lower()]
    return items
