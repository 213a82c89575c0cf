from __future__ import annotations

import logging
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from mtaji import intake
from mtaji.cascade import CascadeResult, RetentionPolicy, delete_initiative
from mtaji.errors import StoreError
from mtaji.models import BlogPost, Milestone, Proposal, VolunteerApplication
from mtaji.opportunities import add_jobs, list_jobs
from mtaji.repository import get_initiative, list_milestones


@pytest.fixture()
def populated(session, initiative, volunteer_form):
    """An initiative with one of every dependent."""
    iid = initiative["id"]
    add_jobs(session, iid, [{"title": "Driller"}])
    intake.submit_volunteer_application(session, iid, volunteer_form)
    intake.submit_proposal(session, iid, {"name": "A", "email": "a@b.co", "subject": "S", "details": "D"})
    intake.submit_ambassador_application(session, iid, {
        "full_name": "Baraka", "email": "baraka@example.com", "reach": "Church group", "motivation": "Help",
    })
    session.add(BlogPost(title="Groundbreaking day", content="...", initiative_id=iid))
    session.commit()
    return iid


def _count(session, model) -> int:
    return session.execute(select(func.count(model.id))).scalar_one()


def _statuses(result: CascadeResult) -> dict[str, str]:
    return {s.step: s.status for s in result.steps}


class TestDeleteInitiative:
    def test_full_delete_retains_applications(self, session, populated):
        result = delete_initiative(session, populated)

        assert result.deleted
        assert not result.degraded
        assert [s.step for s in result.steps] == [
            "milestones", "jobs", "volunteer_applications", "blog_posts", "initiative",
            "tombstone_job_applications", "tombstone_proposal_applications",
            "tombstone_ambassador_applications", "tombstone_content_creator_applications",
        ]
        assert get_initiative(session, populated) is None
        assert list_jobs(session, populated) == []
        assert list_milestones(session, populated) == []
        assert _count(session, VolunteerApplication) == 0
        assert session.execute(select(BlogPost.initiative_id)).scalar_one() is None

        proposals = intake.list_applications(session, "proposal")
        assert len(proposals) == 1
        assert proposals[0]["initiative_removed_at"] is not None
        assert result.outcome("tombstone_ambassador_applications").affected == 1

    def test_cascade_policy_deletes_applications(self, session, populated):
        result = delete_initiative(session, populated, RetentionPolicy.CASCADE)
        assert result.deleted
        assert _statuses(result)["delete_proposal_applications"] == "success"
        assert _count(session, Proposal) == 0
        assert intake.list_applications(session, "ambassador") == []

    def test_milestone_step_failure_still_deletes(self, session, populated, caplog):
        with patch("mtaji.repository.delete_milestones", side_effect=StoreError("Failed to delete milestones: boom")), \
                caplog.at_level(logging.WARNING, logger="mtaji.cascade"):
            result = delete_initiative(session, populated)

        assert result.deleted
        assert result.degraded
        step = result.outcome("milestones")
        assert step.status == "failed"
        assert "boom" in step.error
        assert _statuses(result)["jobs"] == "success"
        assert get_initiative(session, populated) is None
        # The orphaned row is still there but no longer reachable through the initiative.
        assert _count(session, Milestone) == 1
        assert list_milestones(session, populated) == []
        assert "milestones failed" in caplog.text

    def test_final_delete_failure_skips_policy_steps(self, session, populated):
        with patch("mtaji.repository.delete_initiative_row", side_effect=StoreError("Failed to delete initiative")):
            result = delete_initiative(session, populated)

        assert not result.deleted
        assert result.degraded
        statuses = _statuses(result)
        assert statuses["initiative"] == "failed"
        assert statuses["tombstone_proposal_applications"] == "skipped"
        assert get_initiative(session, populated) is not None
        assert intake.list_applications(session, "proposal")[0]["initiative_removed_at"] is None

    def test_missing_initiative(self, session):
        result = delete_initiative(session, 9999)
        assert not result.deleted
        assert not result.degraded
        assert set(_statuses(result).values()) == {"skipped"}

    def test_as_dict(self, session, populated):
        payload = delete_initiative(session, populated, RetentionPolicy.CASCADE).as_dict()
        assert payload["policy"] == "cascade"
        assert payload["deleted"] is True
        assert payload["degraded"] is False
        assert payload["steps"][0] == {"step": "milestones", "status": "success", "affected": 1, "error": None}
