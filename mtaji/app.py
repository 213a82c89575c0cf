from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Generator

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from mtaji import cascade, drafts, intake, opportunities, progress, repository
from mtaji.cascade import RetentionPolicy
from mtaji.db import get_session, init_db
from mtaji.errors import (
    AuthRequired,
    InvalidTransition,
    MtajiError,
    NotFound,
    PublishTimeout,
    StoreError,
    SubmissionInFlight,
    ValidationFailed,
)
from mtaji.geocoder import Geocoder
from mtaji.identity import AuthSession, profile_from_claims
from mtaji.publishing import PendingImage, publish_initiative
from mtaji.schemas import (
    CascadeResultOut,
    DashboardItemOut,
    InitiativeOut,
    JobIn,
    JobOut,
    OpportunityPreferences,
    StatusChange,
)
from mtaji.storage import BlobStore, LocalBlobStore
from mtaji.utils import default_guard

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Mtaji",
    version="0.1.0",
    description=(
        "Community initiative publishing and engagement API. "
        "Publish initiatives with milestones, post opportunities, and review applications. "
        "Publishing requires X-Account-* identity headers."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Initiatives", "description": "Publish, browse, edit and delete initiatives."},
        {"name": "Changemakers", "description": "A changemaker's own initiatives and dashboard."},
        {"name": "Opportunities", "description": "Job postings and engagement channel preferences."},
        {"name": "Applications", "description": "Submit and review applications of every kind."},
        {"name": "Drafts", "description": "Autosaved initiative form drafts."},
    ],
)

_STATUS_CODES: dict[type[MtajiError], int] = {
    ValidationFailed: 422,
    NotFound: 404,
    InvalidTransition: 409,
    SubmissionInFlight: 429,
    PublishTimeout: 504,
    AuthRequired: 401,
    StoreError: 502,
}


@app.exception_handler(MtajiError)
async def mtaji_error_handler(request: Request, exc: MtajiError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500)
    body: dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, ValidationFailed):
        body["field"] = exc.field
    return JSONResponse(status_code=status, content=body)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def blob_store() -> BlobStore:
    return LocalBlobStore.from_settings()


def geocoder() -> Geocoder | None:
    return Geocoder.from_settings()


def current_auth(
    x_account_id: str | None = Header(None),
    x_account_email: str | None = Header(None),
    x_account_type: str | None = Header(None),
    x_account_name: str | None = Header(None),
) -> AuthSession:
    if not x_account_id:
        raise AuthRequired("You must be logged in to publish an initiative")
    return AuthSession(profile_from_claims(x_account_id, x_account_email or "", x_account_type, x_account_name))


# ---------------------------------------------------------------------------
# Routes: Initiatives
# ---------------------------------------------------------------------------


@app.get("/api/initiatives", response_model=list[InitiativeOut],
         tags=["Initiatives"], summary="List public initiatives, newest first")
async def list_initiatives(
    limit: int | None = Query(None, ge=1, le=500),
    session: Session = Depends(db_session),
):
    return repository.list_public(session, limit)


@app.get("/api/initiatives/{initiative_id}", response_model=InitiativeOut,
         tags=["Initiatives"], summary="Get an initiative with its milestones")
async def get_initiative(initiative_id: int, session: Session = Depends(db_session)):
    init = repository.get_initiative(session, initiative_id)
    if init is None:
        raise NotFound("Initiative not found")
    return init


@app.post("/api/initiatives", status_code=201,
          tags=["Initiatives"], summary="Publish an initiative (multipart: draft JSON + images)")
async def create_initiative(
    draft: str = Form(..., description="Initiative draft as a JSON object"),
    images: list[UploadFile] = File(default=[]),
    auth: AuthSession = Depends(current_auth),
    store: BlobStore = Depends(blob_store),
    geo: Geocoder | None = Depends(geocoder),
    session: Session = Depends(db_session),
):
    try:
        payload = json.loads(draft)
    except json.JSONDecodeError as exc:
        raise ValidationFailed("draft", f"draft is not valid JSON: {exc.msg}") from None
    pending = [PendingImage(f.filename or "upload", await f.read()) for f in images]
    return await publish_initiative(session, payload, auth, images=pending, blob_store=store, geocoder=geo)


@app.put("/api/initiatives/{initiative_id}", response_model=InitiativeOut,
         tags=["Initiatives"], summary="Replace initiative fields; a milestone list replaces all milestones")
async def update_initiative(initiative_id: int, body: dict[str, Any], session: Session = Depends(db_session)):
    return repository.update_initiative(session, initiative_id, body)


@app.delete("/api/initiatives/{initiative_id}", response_model=CascadeResultOut,
            tags=["Initiatives"], summary="Delete an initiative and handle its dependents")
async def delete_initiative(
    initiative_id: int,
    policy: RetentionPolicy = Query(RetentionPolicy.RETAIN),
    session: Session = Depends(db_session),
):
    result = cascade.delete_initiative(session, initiative_id, policy)
    if not result.deleted and result.outcome("initiative").status == "skipped":
        raise NotFound("Initiative not found")
    return result.as_dict()


# ---------------------------------------------------------------------------
# Routes: Changemakers
# ---------------------------------------------------------------------------


@app.get("/api/changemakers/{changemaker_id}/initiatives", response_model=list[InitiativeOut],
         tags=["Changemakers"], summary="All initiatives owned by a changemaker, drafts included")
async def changemaker_initiatives(changemaker_id: int, session: Session = Depends(db_session)):
    return repository.list_for_changemaker(session, changemaker_id)


@app.get("/api/changemakers/{changemaker_id}/dashboard", response_model=list[DashboardItemOut],
         tags=["Changemakers"], summary="Dashboard rows with progress, filterable by status/category/search")
async def changemaker_dashboard(
    changemaker_id: int,
    status: str | None = Query(None, description="all, active, paused, completed, or an exact status"),
    category: str | None = Query(None),
    search: str | None = Query(None, description="Case-insensitive match on title"),
    session: Session = Depends(db_session),
):
    items = repository.list_for_changemaker(session, changemaker_id)
    items = progress.filter_dashboard(items, status=status, category=category, search=search)
    return [progress.dashboard_summary(i, intake.volunteer_count(session, i["id"])) for i in items]


# ---------------------------------------------------------------------------
# Routes: Opportunities
# ---------------------------------------------------------------------------


@app.get("/api/initiatives/{initiative_id}/jobs", response_model=list[JobOut],
         tags=["Opportunities"], summary="Active job postings for an initiative")
async def list_jobs(initiative_id: int, session: Session = Depends(db_session)):
    return opportunities.list_jobs(session, initiative_id)


@app.post("/api/initiatives/{initiative_id}/jobs", response_model=list[JobOut], status_code=201,
          tags=["Opportunities"], summary="Add job postings; rows without a title are dropped")
async def add_jobs(initiative_id: int, body: list[JobIn], session: Session = Depends(db_session)):
    return opportunities.add_jobs(session, initiative_id, body)


@app.get("/api/initiatives/{initiative_id}/preferences",
         tags=["Opportunities"], summary="Which engagement channels the initiative accepts")
async def get_preferences(initiative_id: int, session: Session = Depends(db_session)):
    return opportunities.get_preferences(session, initiative_id)


@app.put("/api/initiatives/{initiative_id}/preferences",
         tags=["Opportunities"], summary="Update engagement channel preferences")
async def update_preferences(
    initiative_id: int, body: OpportunityPreferences, session: Session = Depends(db_session),
):
    return opportunities.update_preferences(session, initiative_id, body)


# ---------------------------------------------------------------------------
# Routes: Applications
# ---------------------------------------------------------------------------


@app.post("/api/initiatives/{initiative_id}/applications/{kind}", status_code=201,
          tags=["Applications"], summary="Submit an application of the given kind")
async def submit_application(
    initiative_id: int, kind: str, body: dict[str, Any], session: Session = Depends(db_session),
):
    return intake.submit_application(session, kind, initiative_id, body, guard=default_guard)


@app.get("/api/applications/{kind}", tags=["Applications"],
         summary="List applications of a kind, newest first")
async def list_applications(
    kind: str,
    initiative_id: int | None = Query(None),
    status: str | None = Query(None),
    session: Session = Depends(db_session),
):
    return intake.list_applications(session, kind, initiative_id=initiative_id, status=status)


@app.post("/api/applications/{kind}/{application_id}/status", tags=["Applications"],
          summary="Move an application through its review flow")
async def change_application_status(
    kind: str, application_id: int, body: StatusChange, session: Session = Depends(db_session),
):
    return intake.transition_application(
        session, kind, application_id, body.status,
        reviewer=body.reviewer, notes=body.notes, rejection_reason=body.rejection_reason,
    )


# ---------------------------------------------------------------------------
# Routes: Drafts
# ---------------------------------------------------------------------------


@app.get("/api/drafts/{session_key}", tags=["Drafts"], summary="Load an autosaved draft")
async def load_draft(session_key: str, session: Session = Depends(db_session)):
    saved = drafts.load_draft(session, session_key)
    if saved is None:
        raise NotFound("No saved draft")
    return saved


@app.put("/api/drafts/{session_key}", tags=["Drafts"], summary="Autosave the in-progress form")
async def save_draft(session_key: str, body: dict[str, Any], session: Session = Depends(db_session)):
    return drafts.save_draft(session, session_key, body)


@app.delete("/api/drafts/{session_key}", tags=["Drafts"], summary="Discard an autosaved draft")
async def clear_draft(session_key: str, session: Session = Depends(db_session)):
    return {"ok": drafts.clear_draft(session, session_key)}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("mtaji.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
