"""Unit tests for auth/gate.py -- bearer token to AuthContext resolution.

Covers:
- missing / non-bearer headers resolve to anonymous
- a valid token for an active identity resolves to that identity
- expired, forged and unknown-subject tokens resolve to anonymous
- a deactivated identity's still-valid token is rejected on the next resolve
- attach_context refuses a second attachment
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from auth.gate import AuthenticationGate, attach_context, bearer_token
from auth.models import AuthContext, Role
from auth.tokens import issue_for_identity, issue_token


@pytest.fixture
def gate(identity_store) -> AuthenticationGate:
    return AuthenticationGate(identity_store)


class TestBearerToken:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            (None, None),
            ("", None),
            ("Basic abc", None),
            ("Bearer ", None),
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc.def.ghi", "abc.def.ghi"),
        ],
    )
    def test_extraction(self, header, expected) -> None:
        assert bearer_token(header) == expected


class TestResolve:
    def test_no_header_is_anonymous(self, gate) -> None:
        ctx = gate.resolve(None)
        assert not ctx.is_authenticated

    def test_valid_token_resolves_identity(self, gate, admin_ctx) -> None:
        token = issue_for_identity(admin_ctx.identity)
        ctx = gate.resolve(f"Bearer {token}")
        assert ctx.is_authenticated
        assert ctx.username == admin_ctx.username
        assert ctx.authorities == ("ROLE_ADMIN",)

    def test_expired_token_is_anonymous(self, gate, admin_ctx) -> None:
        issued = datetime(2026, 1, 1, tzinfo=timezone.utc)
        token = issue_token(admin_ctx.username, {"role": "ADMIN"}, now=issued, ttl_seconds=60)
        ctx = gate.resolve(f"Bearer {token}", now=issued + timedelta(seconds=60))
        assert not ctx.is_authenticated

    def test_garbage_token_is_anonymous(self, gate) -> None:
        assert not gate.resolve("Bearer garbage").is_authenticated

    def test_unknown_subject_is_anonymous(self, gate) -> None:
        token = issue_token("nobody", {"role": "ADMIN"})
        assert not gate.resolve(f"Bearer {token}").is_authenticated

    def test_deactivated_identity_rejected_on_next_request(self, gate, identity_service, admin_ctx) -> None:
        """Revocation is passive: flipping is_active is enough, the token itself is untouched."""
        driver_user = identity_service.register(admin_ctx, "carlos", "password123", Role.CONDUCTOR)
        token = issue_for_identity(driver_user)
        assert gate.resolve(f"Bearer {token}").is_authenticated, "Active identity must resolve"

        identity_service.set_status(admin_ctx, driver_user.id, False)

        assert not gate.resolve(f"Bearer {token}").is_authenticated, "Deactivated identity must not resolve"


class TestAttachContext:
    def test_second_attachment_raises(self) -> None:
        request = SimpleNamespace(state=SimpleNamespace())
        attach_context(request, AuthContext.anonymous())
        with pytest.raises(RuntimeError):
            attach_context(request, AuthContext.anonymous())

    def test_attached_identity_cannot_be_edited(self, admin_ctx) -> None:
        """Neither the context nor the identity inside it accepts assignment."""
        request = SimpleNamespace(state=SimpleNamespace())
        attach_context(request, admin_ctx)
        with pytest.raises(FrozenInstanceError):
            request.state.auth.identity.role = Role.CLIENTE
        with pytest.raises(FrozenInstanceError):
            request.state.auth.identity = None
        assert request.state.auth.role is Role.ADMIN
