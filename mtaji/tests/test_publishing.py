"""Publish flow: image uploads, in-flight guard, watchdog."""
from __future__ import annotations

import asyncio
import logging
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from mtaji import repository
from mtaji.errors import BlobStoreError, PublishTimeout, SubmissionInFlight, ValidationFailed
from mtaji.geo import PLACEHOLDER
from mtaji.models import Changemaker, Initiative
from mtaji.publishing import PendingImage, publish_initiative, upload_images
from mtaji.storage import BlobStore, LocalBlobStore
from mtaji.utils import SubmissionGuard


class FlakyStore(BlobStore):
    """Fails for any filename containing "bad"."""

    def __init__(self):
        self.paths: list[str] = []

    def upload(self, path: str, data: bytes) -> str:
        if "bad" in path:
            raise BlobStoreError(f"upload of {path} refused")
        self.paths.append(path)
        return self.get_public_url(path)

    def get_public_url(self, path: str) -> str:
        return f"https://blobs.test/{path}"


def test_upload_images_isolates_failures():
    store = FlakyStore()
    urls, failed = upload_images(store, 3, [
        PendingImage("one.png", b"1"), PendingImage("bad.png", b"2"), PendingImage("three.png", b"3"),
    ])
    assert len(urls) == 2
    assert failed == ["bad.png"]
    assert all(p.startswith("3/") for p in store.paths)


@pytest.mark.asyncio
async def test_publish_with_images(session, auth, make_draft, tmp_path):
    store = LocalBlobStore(tmp_path / "blobs", "http://cdn.test")
    result = await publish_initiative(
        session, make_draft(), auth, guard=SubmissionGuard(), blob_store=store,
        images=[PendingImage("site.jpg", b"a"), PendingImage("map.png", b"b")],
    )
    init = result["initiative"]
    assert init["status"] == "published"
    assert len(init["reference_images"]) == 2
    assert init["reference_images"] == result["uploaded_images"]
    assert result["failed_images"] == []
    assert result["degraded"] is False


@pytest.mark.asyncio
async def test_failed_image_degrades_but_publishes(session, auth, make_draft):
    result = await publish_initiative(
        session, make_draft(), auth, guard=SubmissionGuard(), blob_store=FlakyStore(),
        images=[PendingImage("good.jpg", b"a"), PendingImage("bad.jpg", b"b")],
    )
    assert result["degraded"] is True
    assert result["failed_images"] == ["bad.jpg"]
    assert len(result["initiative"]["reference_images"]) == 1


@pytest.mark.asyncio
async def test_milestone_failure_degrades(session, auth, make_draft):
    boom = OperationalError("INSERT INTO milestones", {}, Exception("constraint failed"))
    with patch("mtaji.repository._milestone_rows", side_effect=boom):
        result = await publish_initiative(session, make_draft(), auth, guard=SubmissionGuard())
    assert result["degraded"] is True
    assert result["initiative"]["milestones"] == []


@pytest.mark.asyncio
async def test_placeholder_rejected_before_uploads(session, auth, make_draft):
    store = MagicMock(spec=BlobStore)
    draft = make_draft(location={"coordinates": PLACEHOLDER.as_dict()})
    with pytest.raises(ValidationFailed):
        await publish_initiative(
            session, draft, auth, guard=SubmissionGuard(), blob_store=store,
            images=[PendingImage("a.png", b"a")],
        )
    store.upload.assert_not_called()
    assert session.execute(select(func.count(Changemaker.id))).scalar_one() == 0


@pytest.mark.asyncio
async def test_double_submit_rejected(session, auth, make_draft):
    guard = SubmissionGuard()
    with guard.claim(auth.user_id):
        with pytest.raises(SubmissionInFlight):
            await publish_initiative(session, make_draft(), auth, guard=guard)
    assert session.execute(select(func.count(Initiative.id))).scalar_one() == 0

    await publish_initiative(session, make_draft(), auth, guard=guard)
    assert not guard.is_busy(auth.user_id)


@pytest.mark.asyncio
async def test_guard_released_after_failure(session, auth, make_draft):
    guard = SubmissionGuard()
    with patch("mtaji.repository.create_initiative", side_effect=RuntimeError("down")):
        with pytest.raises(RuntimeError):
            await publish_initiative(session, make_draft(), auth, guard=guard)
    assert not guard.is_busy(auth.user_id)


async def _wait_until_free(guard, key, limit=5.0):
    deadline = time.monotonic() + limit
    while guard.is_busy(key):
        assert time.monotonic() < deadline, f"{key} still claimed after {limit}s"
        await asyncio.sleep(0.02)


@pytest.mark.asyncio
async def test_watchdog_timeout_keeps_caller_claimed(session, auth, make_draft):
    real_create = repository.create_initiative

    def slow_create(*args, **kwargs):
        time.sleep(0.4)
        return real_create(*args, **kwargs)

    guard = SubmissionGuard()
    with patch("mtaji.repository.create_initiative", side_effect=slow_create):
        with pytest.raises(PublishTimeout, match="check your initiatives"):
            await publish_initiative(session, make_draft(), auth, guard=guard, timeout=0.05)
        assert guard.is_busy(auth.user_id)
        with pytest.raises(SubmissionInFlight):
            await publish_initiative(session, make_draft(), auth, guard=guard, timeout=0.05)
        await _wait_until_free(guard, auth.user_id)

    assert session.execute(select(func.count(Initiative.id))).scalar_one() == 1
    again = await publish_initiative(session, make_draft(title="Borehole Y"), auth, guard=guard)
    assert again["initiative"]["title"] == "Borehole Y"


@pytest.mark.asyncio
async def test_failure_after_watchdog_is_logged(session, auth, make_draft, caplog):
    def slow_failure(*args, **kwargs):
        time.sleep(0.2)
        raise RuntimeError("disk full")

    guard = SubmissionGuard()
    with caplog.at_level(logging.INFO, logger="mtaji.publishing"):
        with patch("mtaji.repository.create_initiative", side_effect=slow_failure):
            with pytest.raises(PublishTimeout):
                await publish_initiative(session, make_draft(), auth, guard=guard, timeout=0.05)
            await _wait_until_free(guard, auth.user_id)
    assert "failed after the watchdog expired: disk full" in caplog.text


@pytest.mark.asyncio
async def test_create_runs_on_its_own_session(session, auth, make_draft):
    seen = []
    real_create = repository.create_initiative

    def recording_create(worker_session, *args, **kwargs):
        seen.append(worker_session)
        return real_create(worker_session, *args, **kwargs)

    with patch("mtaji.repository.create_initiative", side_effect=recording_create):
        result = await publish_initiative(session, make_draft(), auth, guard=SubmissionGuard())
    assert len(seen) == 1
    assert seen[0] is not session
    assert repository.get_initiative(session, result["initiative"]["id"])["title"] == "Borehole X"


@pytest.mark.asyncio
async def test_geocoder_fills_empty_fields_only(session, auth, make_draft):
    geocoder = MagicMock()
    geocoder.reverse_geocode = AsyncMock(return_value="Kibera, Nairobi, Kenya")
    draft = make_draft(location={"county": "Nairobi", "coordinates": {"lat": -1.31, "lng": 36.79}})
    result = await publish_initiative(session, draft, auth, guard=SubmissionGuard(), geocoder=geocoder)
    location = result["initiative"]["location"]
    assert location["county"] == "Nairobi"
    assert location["specific_area"] == "Kibera, Nairobi, Kenya"
    geocoder.reverse_geocode.assert_awaited_once_with(-1.31, 36.79)
