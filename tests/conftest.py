"""
tests/conftest.py -- Shared test fixtures for proID integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users + vault
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with an admin JWT, shared by one test module
  - member: a regular (non-admin) account registered through the API
  - fresh_client: TestClient over an empty user table (first-run behaviour)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any core/auth/api import:
  DEBUG=true               -- get_settings() auto-generates SECRET_KEY and the
                              error envelope carries error/details
  RATE_LIMIT_ENABLED=false -- the suite registers and logs in many times
  UPLOAD_DIR               -- a throwaway directory instead of ./uploads
"""

from __future__ import annotations

import os
import tempfile
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: configure before any core/auth/api import, get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="proid-test-uploads-"))

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import get_settings
from vault.files import UploadStorage
from vault.store import VaultStore

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
MEMBER_EMAIL = "member@example.com"
MEMBER_PASSWORD = "memberpass123"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, VaultStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   never see each other's rows.
    """
    user_store = UserStore(db_url=f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true")
    vault = VaultStore(db_url=f"sqlite:///file:test_vault_{db_suffix}?mode=memory&cache=shared&uri=true")
    return user_store, vault


def _patch_lifespan(user_store: UserStore, vault: VaultStore):
    """Return an async context manager that replaces the real lifespan.

    Uploads go to UPLOAD_DIR so the /uploads static mount in asgi.py serves
    the files the tests write.
    """
    settings = get_settings()

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.vault = vault
        app.state.uploads = UploadStorage(settings.upload_dir, settings.max_upload_bytes)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for an admin account.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    """
    user_store, vault = _make_test_stores(uuid.uuid4().hex[:8])

    admin = User(
        email=ADMIN_EMAIL,
        name="Test Admin",
        username="testadmin",
        hashed_password=hash_password(ADMIN_PASSWORD),
        is_admin=True,
    )
    uid = user_store.create_user(admin)
    token = create_access_token(user_id=uid, email=ADMIN_EMAIL, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, vault)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()
    vault.close()


@pytest.fixture(scope="module")
def member(api_client: tuple[TestClient, str, int]) -> tuple[str, int]:
    """Register a regular account through the API and return (token, user_id)."""
    client, _token, _uid = api_client
    resp = client.post(
        "/api/auth/register",
        json={"name": "Mia Member", "email": MEMBER_EMAIL, "password": MEMBER_PASSWORD},
    )
    assert resp.status_code == 201, f"Member registration failed: {resp.status_code} {resp.text}"
    data = resp.json()
    return data["token"], data["user"]["id"]


@pytest.fixture
def fresh_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, user_store) over a database with no accounts yet.

    app.state is shared with any module-scoped api_client that is still open,
    so the previous stores are put back afterwards.
    """
    previous = {name: getattr(app.state, name, None) for name in ("user_store", "vault", "uploads")}
    user_store, vault = _make_test_stores(uuid.uuid4().hex[:8])
    app.router.lifespan_context = _patch_lifespan(user_store, vault)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store

    for name, value in previous.items():
        setattr(app.state, name, value)
    user_store.close()
    vault.close()
