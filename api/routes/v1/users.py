"""
api/routes/v1/users.py -- Identity administration (ADMIN only).

Routes:
  POST  /api/v1/users                                     -- create any role
  GET   /api/v1/users                                     -- list
  GET   /api/v1/users/by-username/{username}              -- detail by username
  GET   /api/v1/users/audit/by-username/{username}        -- history of one identity
  GET   /api/v1/users/audit/by-editor?editor_id=&username= -- identity changes made by one editor
  GET   /api/v1/users/{id}                                -- detail
  PUT   /api/v1/users/{id}                                -- role, links, optional new password
  PATCH /api/v1/users/{id}/status                         -- activate / deactivate
  GET   /api/v1/users/{id}/audit                          -- history by id

Deactivation takes effect on the identity's next request: the gate re-reads
is_active every time.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse, IdentityResponse, IdentityUpdate, RegisterRequest, StatusUpdate
from auth.authorization import Action
from auth.dependencies import authorize
from auth.models import AuthContext
from auth.service import IdentityService
from core.errors import ValidationFailure

# Auth policy: every route requires ADMIN (require_admin equivalent via the policy table).
router = APIRouter()

_manage = authorize(Action.IDENTITY_MANAGE)
_audit = authorize(Action.IDENTITY_AUDIT)


def _service(request: Request) -> IdentityService:
    return request.app.state.identity_service


def _entries(entries) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in entries]


@router.post("/users", response_model=IdentityResponse, status_code=201)
def create_user(
    request: Request,
    body: RegisterRequest,
    ctx: AuthContext = Depends(_manage),
) -> IdentityResponse:
    created = _service(request).register(
        ctx, body.username, body.password, body.role, body.driver_id, body.client_id
    )
    return IdentityResponse.model_validate(created)


@router.get("/users", response_model=list[IdentityResponse])
def list_users(request: Request, ctx: AuthContext = Depends(_manage)) -> list[IdentityResponse]:
    return [IdentityResponse.model_validate(i) for i in _service(request).list_all()]


@router.get("/users/by-username/{username}", response_model=IdentityResponse)
def get_user_by_username(
    request: Request,
    username: str,
    ctx: AuthContext = Depends(_manage),
) -> IdentityResponse:
    return IdentityResponse.model_validate(_service(request).get_by_username(username))


@router.get("/users/audit/by-username/{username}", response_model=list[AuditEntryResponse])
def user_history_by_username(
    request: Request,
    username: str,
    ctx: AuthContext = Depends(_audit),
) -> list[AuditEntryResponse]:
    return _entries(_service(request).history_by_username(username))


@router.get("/users/audit/by-editor", response_model=list[AuditEntryResponse])
def user_edits_by(
    request: Request,
    editor_id: Optional[int] = Query(default=None),
    username: Optional[str] = Query(default=None),
    ctx: AuthContext = Depends(_audit),
) -> list[AuditEntryResponse]:
    if editor_id is None and not username:
        raise ValidationFailure("Provide editor_id or username.")
    return _entries(_service(request).edits_by(editor_id=editor_id, editor_username=username or None))


@router.get("/users/{user_id}", response_model=IdentityResponse)
def get_user(request: Request, user_id: int, ctx: AuthContext = Depends(_manage)) -> IdentityResponse:
    return IdentityResponse.model_validate(_service(request).get(user_id))


@router.put("/users/{user_id}", response_model=IdentityResponse)
def update_user(
    request: Request,
    user_id: int,
    body: IdentityUpdate,
    ctx: AuthContext = Depends(_manage),
) -> IdentityResponse:
    updated = _service(request).update(ctx, user_id, body.role, body.driver_id, body.client_id, body.password)
    return IdentityResponse.model_validate(updated)


@router.patch("/users/{user_id}/status", response_model=IdentityResponse)
def set_user_status(
    request: Request,
    user_id: int,
    body: StatusUpdate,
    ctx: AuthContext = Depends(_manage),
) -> IdentityResponse:
    return IdentityResponse.model_validate(_service(request).set_status(ctx, user_id, body.is_active))


@router.get("/users/{user_id}/audit", response_model=list[AuditEntryResponse])
def user_history(request: Request, user_id: int, ctx: AuthContext = Depends(_audit)) -> list[AuditEntryResponse]:
    return _entries(_service(request).history(user_id))
