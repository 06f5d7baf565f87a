"""
auth/gate.py -- Authentication gate: bearer token -> AuthContext.

Runs once per request (wired as HTTP middleware in api/main.py):
  1. No "Authorization: Bearer <token>" header   -> anonymous
  2. Token malformed, badly signed or expired     -> anonymous (logged at DEBUG)
  3. Subject unknown or identity deactivated      -> anonymous
  4. Otherwise                                    -> AuthContext for the identity

Failures never raise here. Routes that need an identity fail closed later via
auth.dependencies.require_identity(). The gate performs no writes and keeps no
cache: every request re-verifies the token and re-reads the identity, so a
deactivated account loses access on its very next request.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from starlette.requests import Request

from auth.models import AuthContext
from auth.store import IdentityStore
from auth.tokens import TokenError, verify_token

logger = logging.getLogger("urbanfleet.auth")

_BEARER_PREFIX = "bearer "


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an Authorization header value, or None."""
    if not authorization or not authorization.lower().startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


class AuthenticationGate:
    """Resolves the security context for one request."""

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    def resolve(self, authorization: Optional[str], now: Optional[datetime] = None) -> AuthContext:
        token = bearer_token(authorization)
        if token is None:
            return AuthContext.anonymous()

        try:
            claims = verify_token(token, now)
        except TokenError as exc:
            logger.debug("Token rejected (%s)", exc.kind)
            return AuthContext.anonymous()

        identity = self.store.get_by_username(claims.subject)
        if identity is None:
            logger.debug("Token subject %r no longer exists", claims.subject)
            return AuthContext.anonymous()
        if not identity.is_active:
            logger.debug("Token subject %r is deactivated", claims.subject)
            return AuthContext.anonymous()
        return AuthContext.for_identity(identity)


def attach_context(request: Request, ctx: AuthContext) -> None:
    """Attach ctx to the request. A second attachment is a programming error."""
    if getattr(request.state, "auth", None) is not None:
        raise RuntimeError("Security context already attached to this request.")
    request.state.auth = ctx
