"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig uses in-memory SQLite unless TEST_DATABASE_URL points at a
    real database (e.g. the Postgres instance used in CI).
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)      → user dict
  - login(client, ...)         → dict with tokens + user
  - auth_headers(token)        → {"Authorization": "Bearer <token>"}
  - make_admin(app, ...)       → creates an admin directly through the service

These are plain functions so they can be called with arbitrary arguments in
any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest

from sessionguard.app import create_app
from sessionguard.app.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test. refresh_tokens goes first even though
    CASCADE would handle it.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        from sqlalchemy import text
        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM refresh_tokens"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(
    client,
    username: str = "alice",
    email: str | None = None,
    password: str = "Password1",
) -> dict:
    """Registers a new user and returns the user dict."""
    if email is None:
        email = f"{username}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={
            "username": username,
            "email": email,
            "password": password,
            "first_name": username.capitalize(),
            "last_name": "Tester",
        },
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]["user"]


def login(client, identifier: str, password: str = "Password1", **headers) -> dict:
    """
    Logs in and returns the response data dict:
    {"access_token", "refresh_token", "token_type", "expires_in", "user"}
    """
    resp = client.post(
        "/api/v1/auth/login",
        json={"identifier": identifier, "password": password},
        headers=headers or None,
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_admin(app, username: str = "root", password: str = "Password1") -> dict:
    """Creates an admin account through the service layer (no admin API for that)."""
    from sessionguard.app.models.user import UserRole
    from sessionguard.app.services import auth_service

    with app.app_context():
        result = auth_service.register_user(
            email=f"{username}@test.com",
            username=username,
            password=password,
            first_name="Root",
            last_name="Admin",
            session=_db.session,
            role=UserRole.ADMIN,
        )
        _db.session.commit()
    return result["user"]
