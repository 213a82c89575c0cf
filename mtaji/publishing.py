"""Publish flow wrapped around ``repository.create_initiative``.

Validates the location, uploads reference images one at a time, and bounds
the create call with a watchdog. A duplicate submit from the same caller is
refused until the create has actually finished, even after the watchdog has
given up waiting for it.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from sqlalchemy.orm import Session, sessionmaker

from mtaji import repository
from mtaji.config import get_settings
from mtaji.errors import BlobStoreError, PublishTimeout
from mtaji.geo import validate_coordinate
from mtaji.geocoder import Geocoder, autofill_location
from mtaji.identity import AuthSession, resolve_changemaker
from mtaji.schemas import InitiativeDraft, LocationIn, validate_payload
from mtaji.storage import BlobStore, object_path
from mtaji.utils import SubmissionGuard, default_guard

log = logging.getLogger(__name__)


@dataclass
class PendingImage:
    filename: str
    data: bytes


def upload_images(
    store: BlobStore, changemaker_id: int, images: Iterable[PendingImage],
) -> tuple[list[str], list[str]]:
    """Upload sequentially. Returns ``(urls, failed_filenames)``; one failure never stops the rest."""
    urls: list[str] = []
    failed: list[str] = []
    for image in images:
        path = object_path(changemaker_id, image.filename)
        try:
            urls.append(store.upload(path, image.data))
        except (BlobStoreError, OSError) as exc:
            log.warning("Image %s was not uploaded: %s", image.filename, exc)
            failed.append(image.filename)
    return urls, failed


def _create_in_own_session(
    session_factory: Callable[[], Session], draft: InitiativeDraft, auth: AuthSession, changemaker_id: int,
) -> dict:
    # May outlive the caller, so it gets a session of its own.
    session = session_factory()
    try:
        return repository.create_initiative(session, draft, auth, changemaker_id)
    finally:
        session.close()


async def publish_initiative(
    session: Session,
    draft: InitiativeDraft | dict,
    auth: AuthSession,
    *,
    images: Iterable[PendingImage] = (),
    blob_store: BlobStore | None = None,
    geocoder: Geocoder | None = None,
    timeout: float | None = None,
    guard: SubmissionGuard | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> dict:
    """Publish *draft* for the signed-in account.

    Returns ``{"initiative", "uploaded_images", "failed_images", "degraded"}``.
    ``degraded`` is set when fewer milestones or images were stored than
    requested. Raises ``PublishTimeout`` if the create call outlives the
    watchdog; the initiative may still have been created in that case, and
    the caller stays claimed in *guard* until the create returns.

    The create runs in a worker thread on a session from *session_factory*,
    by default a new session on the engine *session* is bound to.
    """
    draft = validate_payload(InitiativeDraft, draft)
    coords = draft.location.coordinates
    validate_coordinate(coords.lat if coords else None, coords.lng if coords else None)

    guard = guard or default_guard
    timeout = timeout if timeout is not None else get_settings().publish_timeout_seconds
    images = list(images)
    if session_factory is None:
        session_factory = sessionmaker(bind=session.get_bind(), autoflush=False, expire_on_commit=False)

    key = auth.user_id
    guard.acquire(key)
    create: asyncio.Future | None = None
    abandoned = False
    try:
        changemaker_id = resolve_changemaker(session, auth)

        location = await autofill_location(draft.location.model_dump(exclude_none=True), geocoder)
        draft = draft.model_copy(update={"location": LocationIn.model_validate(location)})

        uploaded: list[str] = []
        failed: list[str] = []
        if images:
            if blob_store is None:
                log.warning("No blob store configured; %d images skipped", len(images))
                failed = [i.filename for i in images]
            else:
                uploaded, failed = upload_images(blob_store, changemaker_id, images)
        if uploaded:
            draft = draft.model_copy(update={"reference_images": [*draft.reference_images, *uploaded]})

        def _finished(task: asyncio.Future) -> None:
            guard.release(key)
            if abandoned and not task.cancelled() and task.exception() is not None:
                log.error("Publish of %r for %s failed after the watchdog expired: %s",
                          draft.title, key, task.exception())
            elif abandoned:
                log.info("Publish of %r for %s finished after the watchdog expired", draft.title, key)

        create = asyncio.ensure_future(
            asyncio.to_thread(_create_in_own_session, session_factory, draft, auth, changemaker_id)
        )
        create.add_done_callback(_finished)
        try:
            initiative = await asyncio.wait_for(asyncio.shield(create), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("Publish of %r for %s exceeded %.1fs", draft.title, key, timeout)
            raise PublishTimeout(
                "Publishing is taking longer than expected. It may still complete; "
                "check your initiatives before trying again."
            ) from None
    finally:
        if create is None or create.done():
            guard.release(key)
        else:
            abandoned = True

    degraded = bool(failed) or len(initiative["milestones"]) < len(draft.milestones)
    if degraded:
        log.warning(
            "Initiative %d published with %d/%d milestones and %d/%d images",
            initiative["id"], len(initiative["milestones"]), len(draft.milestones),
            len(uploaded), len(images),
        )
    return {
        "initiative": initiative,
        "uploaded_images": uploaded,
        "failed_images": failed,
        "degraded": degraded,
    }
