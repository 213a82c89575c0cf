"""Autosave of an in-progress initiative form, keyed by the caller's session."""
from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from mtaji.config import get_settings
from mtaji.db import store_errors
from mtaji.errors import ValidationFailed
from mtaji.models import InitiativeDraft as DraftRow
from mtaji.utils import isoformat, json_parse

log = logging.getLogger(__name__)

# File inputs never survive a reload; they are dropped from the snapshot.
ATTACHMENT_FIELDS = frozenset({"images", "pending_uploads", "files"})


def _serializable(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def snapshot(form: dict[str, Any]) -> dict[str, Any]:
    """The persistable part of *form*: no attachments, nothing JSON can't hold."""
    kept = {}
    for key, value in form.items():
        if key in ATTACHMENT_FIELDS:
            continue
        if not _serializable(value):
            log.debug("Draft field %s is not serializable, skipped", key)
            continue
        kept[key] = value
    return kept


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _check_key(session_key: str) -> str:
    key = (session_key or "").strip()
    if not key:
        raise ValidationFailed("session_key", "A session key is required to save a draft")
    return key


def save_draft(session: Session, session_key: str, form: dict[str, Any]) -> dict[str, Any]:
    key = _check_key(session_key)
    payload = snapshot(form)
    with store_errors(session, "save draft"):
        row = session.execute(select(DraftRow).where(DraftRow.session_key == key)).scalars().first()
        if row is None:
            row = DraftRow(session_key=key)
            session.add(row)
        row.payload_json = json.dumps(payload)
        row.saved_at = datetime.now(UTC)
        session.commit()
    return {"session_key": key, "payload": payload, "saved_at": isoformat(row.saved_at)}


def load_draft(session: Session, session_key: str, now: datetime | None = None) -> dict[str, Any] | None:
    """The saved draft, or None when absent or older than ``draft_ttl_days``."""
    key = _check_key(session_key)
    with store_errors(session, "load draft"):
        row = session.execute(select(DraftRow).where(DraftRow.session_key == key)).scalars().first()
    if row is None:
        return None

    now = now or datetime.now(UTC)
    if now - _aware(row.saved_at) > timedelta(days=get_settings().draft_ttl_days):
        log.info("Draft for %s expired, discarding", key)
        clear_draft(session, key)
        return None
    return {"session_key": key, "payload": json_parse(row.payload_json), "saved_at": isoformat(row.saved_at)}


def clear_draft(session: Session, session_key: str) -> bool:
    key = _check_key(session_key)
    with store_errors(session, "clear draft"):
        result = session.execute(delete(DraftRow).where(DraftRow.session_key == key))
        session.commit()
    return bool(result.rowcount)
