"""
tests/conftest.py -- Shared test fixtures for urbanfleet tests.

This module provides:
  - engine / identity_store / fleet_store / recorder / fleet_service /
    identity_service: a fresh in-memory stack per test for unit tests
  - admin_ctx: an AuthContext for a persisted ADMIN identity
  - _patch_lifespan(): wires a test engine into app.state, bypassing real startup
  - api_client: TestClient on the real app, with the admin/admin account seeded
  - auth_headers(), login(): helpers for bearer requests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because route handlers and the authentication gate run in a
thread pool. Plain :memory: DBs are per-connection and would present a blank
schema to each worker thread. Unit tests stay on one thread and use plain
:memory:.

Environment variables must be set before any api/auth/core import:
  DEBUG=true            -> get_settings() auto-generates SECRET_KEY
  ALLOWED_HOSTS         -> TestClient sends Host: testserver
  LOGIN_RATE_LIMIT      -> high enough that repeated logins never hit 429
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_state
from audit.recorder import AuditRecorder
from auth.models import AuthContext, Role
from auth.service import IdentityService
from auth.store import IdentityStore
from core.db import make_engine
from fleet.services import FleetService
from fleet.store import FleetStore

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin"

# ---------------------------------------------------------------------------
# Unit-test stack (one thread, plain in-memory DB)
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = make_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def identity_store(engine) -> IdentityStore:
    return IdentityStore(engine)


@pytest.fixture
def fleet_store(engine) -> FleetStore:
    return FleetStore(engine)


@pytest.fixture
def recorder(engine) -> AuditRecorder:
    return AuditRecorder(engine)


@pytest.fixture
def fleet_service(fleet_store, recorder) -> FleetService:
    return FleetService(fleet_store, recorder)


@pytest.fixture
def identity_service(identity_store, fleet_store, recorder) -> IdentityService:
    return IdentityService(identity_store, fleet_store, recorder)


@pytest.fixture
def admin_ctx(identity_service) -> AuthContext:
    """Context for a persisted ADMIN so audit entries carry a real editor id."""
    admin = identity_service.ensure_admin("root", "root-password")
    return AuthContext.for_identity(admin)


# ---------------------------------------------------------------------------
# API integration stack
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str):
    """Return an async context manager that replaces the real lifespan.

    Builds the full store/service graph on db_url and seeds admin/admin the
    same way the production lifespan does.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        engine = make_engine(db_url)
        wire_state(app, engine)
        app.state.identity_service.ensure_admin(ADMIN_USERNAME, ADMIN_PASSWORD)
        yield
        engine.dispose()

    return test_lifespan


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def login(client: TestClient, username: str, password: str) -> str:
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, f"Login as {username} failed: {resp.status_code} {resp.text}"
    return resp.json()["token"]


def create_user(
    client: TestClient,
    admin_token: str,
    username: str,
    role: Role,
    password: str = "password123",
    driver_id: int | None = None,
    client_id: int | None = None,
) -> str:
    """Create an identity through the admin API and return a token for it."""
    body = {"username": username, "password": password, "role": role.value}
    if driver_id is not None:
        body["driver_id"] = driver_id
    if client_id is not None:
        body["client_id"] = client_id
    resp = client.post("/api/v1/users", json=body, headers=auth_headers(admin_token))
    assert resp.status_code == 201, f"Creating {username} failed: {resp.status_code} {resp.text}"
    return login(client, username, password)


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str], None, None]:
    """Yield (client, admin_token) for API integration tests.

    Each test module gets its own named in-memory database.
    """
    db_url = f"sqlite:///file:test_api_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    app.router.lifespan_context = _patch_lifespan(db_url)

    with TestClient(app, raise_server_exceptions=False) as client:
        token = login(client, ADMIN_USERNAME, ADMIN_PASSWORD)
        yield client, token
