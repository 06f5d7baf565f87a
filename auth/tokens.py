"""
auth/tokens.py -- Token codec and password hashing.

Security design decisions:
  Tokens: python-jose JWT with HS256, signed with SECRET_KEY. The payload
       carries the subject (username), iat, exp, the role and the Spring-style
       authority list ("roles": ["ROLE_ADMIN"]). Times are JWT NumericDate
       whole seconds, so `now` is truncated to the second at issue time.

       verify_token() distinguishes three failure kinds so the gate can log
       them: MalformedToken (cannot be parsed as a JWS at all), BadSignature
       (parsed, but the signature does not match this key) and ExpiredToken
       (signature fine, now >= exp). Expiry is compared against the caller's
       `now` with no grace window.

  Passwords: bcrypt used directly (no passlib wrapper). The _DUMMY_HASH
       constant enables timing equalization in authenticate() so response time
       does not reveal whether a username exists.

  No revocation list. auth/gate.py re-resolves the identity and checks
  is_active on every request instead.

Layer rule: no imports from api/, audit/, or fleet/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError
from jose.utils import base64url_decode, base64url_encode

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Identity
    from auth.store import IdentityStore

logger = logging.getLogger("urbanfleet.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# bcrypt only looks at the first 72 bytes and bcrypt>=4.1 rejects longer input.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Failure kinds
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for token verification failures."""

    kind = "invalid"


class MalformedToken(TokenError):
    kind = "malformed"


class BadSignature(TokenError):
    kind = "bad_signature"


class ExpiredToken(TokenError):
    kind = "expired"


@dataclass(frozen=True)
class TokenClaims:
    """Verified token content."""

    subject: str
    issued_at: datetime
    expires_at: datetime
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def role(self) -> str | None:
        return self.claims.get("role")


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def _secret_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_secret_bytes(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A stored value that is not a bcrypt hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(_secret_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("urbanfleet_timing_dummy")


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


def _utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def issue_token(
    subject: str,
    claims: dict[str, Any] | None = None,
    now: datetime | None = None,
    ttl_seconds: int = 0,
) -> str:
    """Encode a signed token for subject.

    Args:
        subject:     Username stored as the "sub" claim.
        claims:      Extra claims; must include at least "role" for the gate.
        now:         Issue instant. Defaults to the current UTC time.
        ttl_seconds: Lifetime. If 0 (default), uses Settings.token_expire_seconds.
    """
    issued_at = _utc(now).replace(microsecond=0)
    duration = ttl_seconds if ttl_seconds > 0 else _settings.token_expire_seconds
    payload: dict[str, Any] = dict(claims or {})
    payload.update(
        {
            "sub": subject,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + timedelta(seconds=duration)).timestamp()),
        }
    )
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def issue_for_identity(identity: Identity, now: datetime | None = None) -> str:
    """Issue a token carrying the identity's role and authority list."""
    return issue_token(
        identity.username,
        {"role": identity.role.value, "roles": [identity.role.authority]},
        now=now,
    )


def _is_canonical(segment: str) -> bool:
    try:
        raw = base64url_decode(segment.encode("ascii"))
    except (UnicodeEncodeError, ValueError):
        return False
    return base64url_encode(raw).decode("ascii") == segment


def verify_token(token: str, now: datetime | None = None) -> TokenClaims:
    """Verify signature and expiry of token at instant now.

    Raises MalformedToken, BadSignature or ExpiredToken. Returns TokenClaims
    when the signature matches and now < exp.
    """
    if not token or not isinstance(token, str):
        raise MalformedToken("empty token")

    # Structural parse first: anything that is not a three-part JWS with a
    # decodable header is malformed rather than badly signed.
    try:
        jwt.get_unverified_header(token)
    except JWTError as exc:
        raise MalformedToken(str(exc)) from exc

    # The last base64url character of a segment carries unused low bits, so
    # several spellings decode to the same bytes. Only the canonical one is
    # the signed text.
    for segment in token.split(".")[1:]:
        if not _is_canonical(segment):
            raise BadSignature("non-canonical segment encoding")

    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False, "verify_aud": False},
        )
    except JWTClaimsError as exc:
        raise MalformedToken(str(exc)) from exc
    except JWTError as exc:
        raise BadSignature(str(exc)) from exc

    subject = payload.get("sub")
    exp = payload.get("exp")
    iat = payload.get("iat")
    if not isinstance(subject, str) or not subject:
        raise MalformedToken("missing subject")
    if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
        raise MalformedToken("missing iat/exp")

    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
    if _utc(now) >= expires_at:
        raise ExpiredToken(f"expired at {expires_at.isoformat()}")

    extra = {k: v for k, v in payload.items() if k not in ("sub", "iat", "exp")}
    return TokenClaims(
        subject=subject,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=expires_at,
        claims=extra,
    )


# ---------------------------------------------------------------------------
# Login (constant-time)
# ---------------------------------------------------------------------------


def authenticate(store: IdentityStore, username: str, password: str) -> Identity | None:
    """Check a username/password pair with timing equalization.

    Always runs bcrypt whether or not the identity exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash

    Returns the Identity on success, None on any failure (unknown user, bad
    password, or deactivated account are indistinguishable to the caller).
    """
    identity = store.get_by_username(username)
    if identity is None or not identity.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not store.verify_secret(password, identity.hashed_password):
        return None
    if not identity.is_active:
        return None
    return identity
