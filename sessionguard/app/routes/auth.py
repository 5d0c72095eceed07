"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard response envelope: {"data": {...}, "warnings": []}

No business logic here. No DB queries.
AppError propagates to the global error handler in app/__init__.py — routes
never catch it.

Endpoints (url_prefix=/api/v1/auth):
  POST   /auth/register    → 201
  POST   /auth/login       → 200
  POST   /auth/refresh     → 200
  POST   /auth/logout      → 200
  POST   /auth/logout-all  → 200  (auth required)
  GET    /auth/me          → 200  (auth required)
  GET    /auth/sessions    → 200  (auth required)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from sessionguard.app.extensions import db
from sessionguard.app.middleware.auth_middleware import require_auth
from sessionguard.app.schemas.auth_schema import LoginSchema, RefreshTokenSchema, RegisterSchema
from sessionguard.app.services import auth_service

auth_bp = Blueprint("auth", __name__)


def _client_ip() -> str | None:
    """
    Peer address. Behind TRUSTED_PROXY_COUNT proxies, ProxyFix has already
    replaced it with the client address from X-Forwarded-For.
    """
    addr = request.remote_addr
    return addr[:45] if addr else None


def _user_agent() -> str | None:
    agent = request.headers.get("User-Agent")
    return agent[:512] if agent else None


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create account. (No auth required.)"""
    data = RegisterSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.register_user(
        email=data["email"],
        username=data["username"],
        password=data["password"],
        first_name=data["first_name"],
        last_name=data["last_name"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate with email or username; return tokens."""
    data = LoginSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.login(
        identifier=data["identifier"],
        password=data["password"],
        session=db.session,
        ip_address=_client_ip(),
        user_agent=_user_agent(),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Exchange refresh token for new access token."""
    data = RefreshTokenSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.refresh(
        raw_refresh_token=data["refresh_token"],
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """POST /auth/logout — Revoke one refresh token. Possession of the token is the credential."""
    data = RefreshTokenSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.logout(
        raw_refresh_token=data["refresh_token"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/logout-all", methods=["POST"])
@require_auth
def logout_all():
    """POST /auth/logout-all — Revoke every session of the caller. (Auth required.)"""
    result = auth_service.logout_all(user_id=g.user_id, session=db.session)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Return current user profile. (Auth required.)"""
    result = auth_service.get_current_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/sessions", methods=["GET"])
@require_auth
def sessions():
    """GET /auth/sessions — List the caller's sessions with their state. (Auth required.)"""
    result = auth_service.list_sessions(user_id=g.user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200
