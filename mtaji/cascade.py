"""Initiative deletion as a recorded sequence of independent steps.

No step shares a transaction with another. A failed step is logged and
recorded, and the sequence moves on, so the caller gets a ``CascadeResult``
describing exactly what happened rather than an all-or-nothing answer.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass, field
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mtaji import intake, opportunities, repository
from mtaji.db import store_errors
from mtaji.errors import StoreError
from mtaji.models import BlogPost, Initiative

log = logging.getLogger(__name__)


class RetentionPolicy(str, enum.Enum):
    RETAIN = "retain"    # keep applications, stamp initiative_removed_at
    CASCADE = "cascade"  # delete them with the initiative


# Application kinds whose fate depends on the retention policy.
RETAINABLE_KINDS = ("job", "proposal", "ambassador", "content_creator")


@dataclass
class StepOutcome:
    step: str
    status: str  # success | failed | skipped
    affected: int = 0
    error: str | None = None


@dataclass
class CascadeResult:
    initiative_id: int
    policy: RetentionPolicy
    deleted: bool = False
    steps: list[StepOutcome] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return any(s.status == "failed" for s in self.steps)

    def outcome(self, step: str) -> StepOutcome | None:
        return next((s for s in self.steps if s.step == step), None)

    def as_dict(self) -> dict:
        return {
            "initiative_id": self.initiative_id,
            "deleted": self.deleted,
            "policy": self.policy.value,
            "degraded": self.degraded,
            "steps": [asdict(s) for s in self.steps],
        }


def unlink_blog_posts(session: Session, initiative_id: int) -> int:
    with store_errors(session, "unlink blog posts"):
        result = session.execute(
            update(BlogPost).where(BlogPost.initiative_id == initiative_id).values(initiative_id=None)
        )
        session.commit()
    return result.rowcount or 0


def _run(session: Session, result: CascadeResult, name: str, action: Callable[[], int | bool]) -> bool:
    try:
        affected = action()
    except (StoreError, SQLAlchemyError) as exc:
        session.rollback()
        log.warning("Cascade step %s failed for initiative %d: %s", name, result.initiative_id, exc)
        result.steps.append(StepOutcome(name, "failed", error=str(exc)))
        return False
    result.steps.append(StepOutcome(name, "success", affected=int(affected)))
    return True


def _skip(result: CascadeResult, *names: str) -> None:
    for name in names:
        result.steps.append(StepOutcome(name, "skipped"))


def _policy_steps(policy: RetentionPolicy) -> list[str]:
    verb = "tombstone" if policy is RetentionPolicy.RETAIN else "delete"
    return [f"{verb}_{kind}_applications" for kind in RETAINABLE_KINDS]


def delete_initiative(
    session: Session, initiative_id: int, policy: RetentionPolicy = RetentionPolicy.RETAIN,
) -> CascadeResult:
    """Remove an initiative and handle its dependents.

    Order: milestones, job postings, volunteer applications, blog post
    unlinking, the initiative row, then the remaining application kinds per
    *policy*. Policy steps only run once the initiative row is gone.
    """
    result = CascadeResult(initiative_id=initiative_id, policy=policy)

    with store_errors(session, "look up initiative for deletion"):
        exists = session.get(Initiative, initiative_id) is not None
    if not exists:
        log.info("Initiative %d not found, nothing to delete", initiative_id)
        _skip(result, "milestones", "jobs", "volunteer_applications", "blog_posts", "initiative",
              *_policy_steps(policy))
        return result

    # Module attribute lookups so each step can be replaced independently.
    _run(session, result, "milestones", lambda: repository.delete_milestones(session, initiative_id))
    _run(session, result, "jobs", lambda: opportunities.delete_jobs(session, initiative_id))
    _run(session, result, "volunteer_applications",
         lambda: intake.delete_applications(session, "volunteer", initiative_id))
    _run(session, result, "blog_posts", lambda: unlink_blog_posts(session, initiative_id))

    ok = _run(session, result, "initiative", lambda: repository.delete_initiative_row(session, initiative_id))
    result.deleted = ok and result.outcome("initiative").affected > 0

    if not result.deleted:
        _skip(result, *_policy_steps(policy))
    else:
        for kind, name in zip(RETAINABLE_KINDS, _policy_steps(policy)):
            if policy is RetentionPolicy.RETAIN:
                _run(session, result, name, lambda k=kind: intake.tombstone_applications(session, k, initiative_id))
            else:
                _run(session, result, name, lambda k=kind: intake.delete_applications(session, k, initiative_id))

    if result.degraded:
        failed = [s.step for s in result.steps if s.status == "failed"]
        log.warning("Initiative %d deletion finished with failed steps: %s", initiative_id, ", ".join(failed))
    else:
        log.info("Deleted initiative %d (%s policy)", initiative_id, policy.value)
    return result
