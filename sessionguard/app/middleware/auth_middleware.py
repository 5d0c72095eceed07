"""
middleware/auth_middleware.py — Access-token authentication decorators.

@require_auth:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Verifies signature and expiry through the app's AccessTokenIssuer
  3. Attaches user_id (int), role (str) and the raw claims to flask.g
  4. Raises the matching 401 error if any step fails

@require_role(*roles):
  Runs @require_auth, then raises FORBIDDEN (403) unless g.role is allowed.

Access tokens are not checked against the session store: a token issued
before logout stays usable until its exp.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, invalid signature, or bad payload
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
  FORBIDDEN      (403) — authenticated but role not permitted
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g, request

from sessionguard.app.errors import AppError, ErrorCode, InvalidToken
from sessionguard.app.services.token_service import get_token_issuer


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces access-token authentication.

    Usage:
        @auth_bp.route("/me")
        @require_auth
        def me():
            user_id = g.user_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: str) -> Callable:
    """Route decorator: authenticated AND role in `roles`."""
    allowed = {getattr(role, "value", role) for role in roles}

    def wrapper(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            _authenticate_request()
            if g.role not in allowed:
                raise AppError(
                    ErrorCode.FORBIDDEN,
                    "You do not have permission to perform this action.",
                    403,
                )
            return f(*args, **kwargs)

        return decorated

    return wrapper


def _authenticate_request() -> None:
    """
    Performs the full authentication sequence and sets flask.g.

    Separated from the decorator wrapper so tests can call it directly inside
    a request context.
    """
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise InvalidToken("Authorization header must be in the format: Bearer <token>.")

    # ── Step 3: Decode and verify ─────────────────────────────────────────
    # ExpiredAccessToken / InvalidToken propagate to the global handler.
    claims = get_token_issuer().decode(parts[1])

    # ── Step 4: Extract the subject ───────────────────────────────────────
    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise InvalidToken("The 'sub' claim in the access token is not a valid user ID.")

    g.user_id = user_id
    g.role = claims.get("role")
    g.claims = claims
