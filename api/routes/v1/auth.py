"""
api/routes/v1/auth.py -- Login, self-registration and current identity.

Routes:
  POST /api/v1/auth/login     -- password login; returns a bearer token
  POST /api/v1/auth/register  -- create a CONDUCTOR or CLIENTE identity
  GET  /api/v1/auth/me        -- current identity (requires auth)

Security:
  POST /login is rate-limited per client address (Settings.login_rate_limit).
  authenticate() provides timing equalization; use it, never inline the
  lookup + bcrypt check.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import IdentityResponse, LoginRequest, LoginResponse, RegisterRequest
from auth.authorization import Action
from auth.dependencies import authorize, get_auth_context
from auth.models import AuthContext
from auth.service import IdentityService
from auth.tokens import authenticate, issue_for_identity
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/login:     public
# - POST /auth/register:  public for CONDUCTOR / CLIENTE; ADMIN role needs an ADMIN caller
# - GET  /auth/me:        any authenticated identity
router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(lambda: get_settings().login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange username and password for a bearer token.

    Unknown user, wrong password and deactivated account all produce the same
    401 so the response does not reveal which one it was.
    """
    service: IdentityService = request.app.state.identity_service
    identity = authenticate(service.store, body.username, body.password)
    if identity is None:
        resp = JSONResponse(
            status_code=401,
            content={
                "status": 401,
                "error": "Unauthorized",
                "message": "Invalid username or password.",
                "path": request.url.path,
            },
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=issue_for_identity(identity),
            token_type="bearer",  # noqa: S106 # nosec B106 -- token type, not a password
            expires_in=_settings.token_expire_seconds,
            username=identity.username,
            role=identity.role,
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", response_model=IdentityResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    ctx: AuthContext = Depends(get_auth_context),
) -> IdentityResponse:
    """Create an identity. The response never contains the password hash."""
    service: IdentityService = request.app.state.identity_service
    created = service.register(ctx, body.username, body.password, body.role, body.driver_id, body.client_id)
    return IdentityResponse.model_validate(created)


@router.get("/auth/me", response_model=IdentityResponse)
def me(ctx: AuthContext = Depends(authorize(Action.IDENTITY_ME))) -> IdentityResponse:
    """Return the identity behind the bearer token."""
    return IdentityResponse.model_validate(ctx.identity)
