from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mtaji.config import get_settings
from mtaji.identity import AccountProfile, AuthSession
from mtaji.models import Base
from mtaji.repository import create_initiative


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point data/blob directories at a temp dir and drop the cached settings."""
    monkeypatch.setenv("MTAJI_HOME", str(tmp_path))
    monkeypatch.delenv("MTAJI_GEOCODER_URL", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def engine():
    """In-memory SQLite shared by every connection (publish runs the create in a worker thread)."""
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def auth() -> AuthSession:
    return AuthSession(AccountProfile(
        user_id="acct-1", email="owner@majisafi.org",
        user_type="organization", organization_name="Maji Safi CBO",
    ))


@pytest.fixture()
def make_draft():
    """Factory for the "Borehole X" draft; keyword overrides replace top-level fields."""
    def _make(**overrides: Any) -> dict[str, Any]:
        draft: dict[str, Any] = {
            "title": "Borehole X",
            "category": "water",
            "target_amount": 500000,
            "raised_amount": 0,
            "location": {
                "county": "Nairobi",
                "constituency": "Langata",
                "specific_area": "Kibera",
                "coordinates": {"lat": -1.29, "lng": 36.82},
            },
            "milestones": [
                {"title": "Survey", "target_date": "2026-03-01", "status": "pending"},
            ],
        }
        draft.update(overrides)
        return draft
    return _make


@pytest.fixture()
def initiative(session, auth, make_draft) -> dict:
    return create_initiative(session, make_draft(), auth)


@pytest.fixture()
def volunteer_form() -> dict[str, Any]:
    return {
        "full_name": "Wanjiru Kamau",
        "email": "Wanjiru@Example.com",
        "skills": ["plumbing", "surveying"],
        "experience_level": "intermediate",
        "availability_days": ["saturday", "sunday"],
        "availability_hours_per_week": 8,
        "commitment_duration": "3 months",
        "motivation": "Clean water for my village",
        "interests": ["water"],
        "emergency_contact_name": "Otieno Kamau",
        "emergency_contact_phone": "+254700000001",
    }
