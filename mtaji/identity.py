"""Authenticated session and changemaker resolution.

A publisher's initiatives hang off a *changemaker* row, one per user account.
The row is created lazily the first time the account publishes, named after
the most specific fact its profile offers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mtaji.db import store_errors
from mtaji.errors import AuthRequired, StoreError
from mtaji.models import Changemaker

log = logging.getLogger(__name__)


@dataclass
class AccountProfile:
    user_id: str
    email: str = ""
    user_type: str | None = None  # organization | government | political_figure | changemaker
    organization_name: str | None = None
    government_entity_name: str | None = None
    political_figure_name: str | None = None
    changemaker_name: str | None = None


ProfileLoader = Callable[[str], AccountProfile]


class AuthSession:
    """Explicit replacement for a process-wide auth context.

    Created on sign-in, invalidated on sign-out, and re-derived through
    ``refresh()`` after writes that change the profile.
    """

    def __init__(self, profile: AccountProfile, loader: ProfileLoader | None = None):
        self._profile: AccountProfile | None = profile
        self._loader = loader

    @classmethod
    def sign_in(cls, user_id: str, loader: ProfileLoader) -> AuthSession:
        return cls(loader(user_id), loader)

    @property
    def is_active(self) -> bool:
        return self._profile is not None

    @property
    def profile(self) -> AccountProfile:
        if self._profile is None:
            raise AuthRequired("You must be logged in to publish an initiative")
        return self._profile

    @property
    def user_id(self) -> str:
        return self.profile.user_id

    def refresh(self) -> AccountProfile:
        current = self.profile
        if self._loader is not None:
            self._profile = self._loader(current.user_id)
        return self.profile

    def invalidate(self) -> None:
        self._profile = None


def profile_from_claims(
    user_id: str, email: str = "", user_type: str | None = None, name: str | None = None,
) -> AccountProfile:
    """Build a profile from flat identity claims, routing *name* by account type."""
    profile = AccountProfile(user_id=user_id, email=email, user_type=user_type)
    if name:
        if user_type == "organization":
            profile.organization_name = name
        elif user_type == "government":
            profile.government_entity_name = name
        elif user_type == "political_figure":
            profile.political_figure_name = name
        else:
            profile.changemaker_name = name
    return profile


# ---------------------------------------------------------------------------
# Display-name strategies, most specific first
# ---------------------------------------------------------------------------


def _organization_name(p: AccountProfile) -> str | None:
    return p.organization_name


def _government_entity_name(p: AccountProfile) -> str | None:
    return p.government_entity_name


def _political_figure_name(p: AccountProfile) -> str | None:
    return p.political_figure_name


def _changemaker_name(p: AccountProfile) -> str | None:
    return p.changemaker_name


def _account_email(p: AccountProfile) -> str | None:
    return p.email


NAME_STRATEGIES: tuple[Callable[[AccountProfile], str | None], ...] = (
    _organization_name,
    _government_entity_name,
    _political_figure_name,
    _changemaker_name,
    _account_email,
)

# Strategies whose result also labels the changemaker's organization.
_ORGANIZATION_STRATEGIES = (_organization_name, _government_entity_name)


def derive_display_name(profile: AccountProfile) -> tuple[str, str | None]:
    """Return ``(name, organization)`` from the first strategy with a value."""
    for strategy in NAME_STRATEGIES:
        value = (strategy(profile) or "").strip()
        if value:
            organization = value if strategy in _ORGANIZATION_STRATEGIES else None
            return value, organization
    return "User", None


def _find_changemaker_id(session: Session, user_id: str) -> int | None:
    return session.execute(
        select(Changemaker.id).where(Changemaker.user_id == user_id)
    ).scalar_one_or_none()


def _insert_changemaker(session: Session, row: Changemaker) -> bool:
    """Insert *row*. Returns False when the account already has a changemaker."""
    with store_errors(session, "create changemaker"):
        try:
            session.add(row)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            log.warning("Changemaker insert for %s conflicted, re-reading: %s", row.user_id, exc.orig)
            return False
    return True


def resolve_changemaker(session: Session, auth: AuthSession) -> int:
    """Find or lazily create the changemaker for the signed-in account."""
    profile = auth.profile
    with store_errors(session, "look up changemaker"):
        existing = _find_changemaker_id(session, profile.user_id)
    if existing is not None:
        return existing

    name, organization = derive_display_name(profile)
    row = Changemaker(
        user_id=profile.user_id, name=name, email=profile.email, organization=organization,
    )
    if _insert_changemaker(session, row):
        log.info("Created changemaker %d (%s) for account %s", row.id, name, profile.user_id)
        return row.id

    # Someone else created it between our read and insert.
    with store_errors(session, "re-read changemaker"):
        existing = _find_changemaker_id(session, profile.user_id)
    if existing is None:
        raise StoreError(f"Failed to create changemaker for account {profile.user_id}")
    return existing
