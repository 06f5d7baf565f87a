"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and
route policy.

The gate middleware has already attached an AuthContext to request.state.auth
before any dependency runs. These helpers only read it:

  get_auth_context()  -- soft variant, anonymous context when nothing attached
  require_identity()  -- raises Unauthenticated (401) for anonymous callers
  authorize(action)   -- dependency factory evaluating the policy table before
                         the handler body runs; raises 401 / 403

Usage:
    @router.get("/drivers/{driver_id}")
    def get_driver(driver_id: int, ctx: AuthContext = Depends(authorize(Action.DRIVER_READ, owns_path_driver))):
        ...

Layer rule: may import from fastapi/starlette because this module is part of
the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import Request

from auth.authorization import Action, enforce
from auth.models import AuthContext
from core.errors import Unauthenticated

# (request, ctx) -> bool, evaluated only when the policy says OWNERSHIP.
OwnershipCheck = Callable[[Request, AuthContext], bool]


def get_auth_context(request: Request) -> AuthContext:
    """Return the attached context, or an anonymous one. Never raises."""
    ctx = getattr(request.state, "auth", None)
    return ctx if ctx is not None else AuthContext.anonymous()


def require_identity(request: Request) -> AuthContext:
    """Require authentication. Raises Unauthenticated if no identity is attached."""
    ctx = get_auth_context(request)
    if not ctx.is_authenticated:
        raise Unauthenticated()
    return ctx


def authorize(action: Action, ownership: Optional[OwnershipCheck] = None) -> Callable[[Request], AuthContext]:
    """Build a dependency that enforces the policy for action.

    ownership receives the request (for path parameters and app.state stores)
    and the context.
    """

    def dependency(request: Request) -> AuthContext:
        ctx = require_identity(request)
        check = (lambda: ownership(request, ctx)) if ownership is not None else None
        enforce(ctx, action, check)
        return ctx

    return dependency


def path_int(request: Request, name: str) -> Optional[int]:
    """Integer path parameter, or None when missing or not numeric."""
    raw = request.path_params.get(name)
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
