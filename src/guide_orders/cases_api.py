"""Cases API router: intake, status workflow, history and admin override."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from starlette.requests import Request

from guide_orders.auth import require_actor
from guide_orders.engine import CaseStatusEngine
from guide_orders.identity import Actor
from guide_orders.schemas import (
    AllowedTransitionsResponse,
    AttachmentRequest,
    AttachmentResponse,
    CaseCreateRequest,
    CaseResponse,
    CommentRequest,
    CommentResponse,
    HistoryEntryResponse,
    OverrideRequest,
    TransitionRequest,
    TransitionResponse,
)

cases_router = APIRouter(tags=["cases"])


def get_case_engine(request: Request) -> CaseStatusEngine:
    """The engine built at startup (see api.lifespan)."""
    return request.app.state.case_engine


@cases_router.post("/cases", response_model=CaseResponse, status_code=201)
def submit_case(
    body: CaseCreateRequest,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> CaseResponse:
    """Client intake: create a case in `submitted` with its first history entry."""
    return engine.submit_case(actor, body)


@cases_router.get("/cases", response_model=list[CaseResponse])
def list_cases(
    status: str | None = Query(None),
    client_profile_id: int | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> list[CaseResponse]:
    return engine.list_cases(actor, status=status, client_profile_id=client_profile_id, limit=limit)


@cases_router.get("/cases/{case_id}", response_model=CaseResponse)
def get_case(
    case_id: int,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> CaseResponse:
    return engine.get_case(case_id, actor)


@cases_router.post("/cases/{case_id}/status", response_model=TransitionResponse)
def request_transition(
    case_id: int,
    body: TransitionRequest,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> TransitionResponse:
    """Move the case to target_status. Errors carry kind and, when illegal, allowed_statuses."""
    return engine.request_transition(
        case_id,
        body.target_status,
        actor,
        notes=body.notes,
        expected_version=body.expected_version,
    )


@cases_router.get("/cases/{case_id}/allowed-statuses", response_model=AllowedTransitionsResponse)
def allowed_statuses(
    case_id: int,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> AllowedTransitionsResponse:
    case = engine.get_case(case_id, actor)
    return AllowedTransitionsResponse(
        case_id=case_id,
        current_status=case.status,
        allowed_statuses=engine.get_allowed_transitions(case_id, actor),
    )


@cases_router.get("/cases/{case_id}/history", response_model=list[HistoryEntryResponse])
def status_history(
    case_id: int,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> list[HistoryEntryResponse]:
    """Status history, oldest first."""
    return engine.get_history(case_id, actor)


@cases_router.post("/cases/{case_id}/override", response_model=TransitionResponse)
def override_status(
    case_id: int,
    body: OverrideRequest,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> TransitionResponse:
    """Admin-only manual status change, recorded as an override entry."""
    return engine.override_status(case_id, body.target_status, actor, body.reason)


@cases_router.post("/cases/{case_id}/comments", response_model=CommentResponse, status_code=201)
def add_comment(
    case_id: int,
    body: CommentRequest,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> CommentResponse:
    return engine.add_comment(case_id, actor, body)


@cases_router.get("/cases/{case_id}/comments", response_model=list[CommentResponse])
def list_comments(
    case_id: int,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> list[CommentResponse]:
    return engine.list_comments(case_id, actor)


@cases_router.post(
    "/cases/{case_id}/attachments", response_model=AttachmentResponse, status_code=201
)
def add_attachment(
    case_id: int,
    body: AttachmentRequest,
    actor: Actor = Depends(require_actor),
    engine: CaseStatusEngine = Depends(get_case_engine),
) -> AttachmentResponse:
    return engine.add_attachment(case_id, actor, body)
