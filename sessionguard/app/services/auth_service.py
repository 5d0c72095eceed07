"""
services/auth_service.py — Authentication use cases called by the routes.

Responsibilities:
  - User registration
  - Login: credential validation + token pair issuance
  - Refresh: refresh token → new access token
  - Logout (one session) and logout-all
  - Profile and session listing for the authenticated user
  - Admin activation / deactivation of accounts

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes
  - current_app.config is read ONLY to build the token issuer and session
    manager (secrets, TTLs, bcrypt cost). Everything below that is Flask-free.

Response shapes:
  login   → {"access_token", "refresh_token", "token_type", "expires_in", "user"}
  refresh → {"access_token", "token_type", "expires_in"}
  logout  → {"revoked": bool}
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from sessionguard.app.errors import AppError, ErrorCode
from sessionguard.app.models.user import User, UserRole
from sessionguard.app.services import credential_service
from sessionguard.app.services.refresh_token_store import (
    SqlAlchemyRefreshTokenStore,
    as_utc,
    translate_storage_errors,
)
from sessionguard.app.services.session_manager import SessionManager
from sessionguard.app.services.token_service import get_token_issuer


# ── Private helpers ────────────────────────────────────────────────────────

def build_session_manager(session: Session) -> SessionManager:
    """Wires the session manager for one unit of work from app config."""
    return SessionManager(
        store=SqlAlchemyRefreshTokenStore(session),
        issuer=get_token_issuer(),
        refresh_ttl=current_app.config["JWT_REFRESH_TOKEN_EXPIRES"],
        token_bytes=current_app.config.get("REFRESH_TOKEN_BYTES", 64),
    )


def _build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. Never includes the password hash."""
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "is_active": user.is_active,
        "role": user.role.value,
        "created_at": as_utc(user.created_at).isoformat(),
        "updated_at": as_utc(user.updated_at).isoformat(),
    }


def _get_user_or_404(user_id: int, session: Session) -> User:
    with translate_storage_errors("get_user"):
        user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return user


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        email: str,
        username: str,
        password: str,
        first_name: str,
        last_name: str,
        session: Session,
        role: UserRole = UserRole.USER,
) -> dict:
    """
    Creates a new, active user account. Does not log the user in.

    Raises:
      AppError(INVALID_FIELD, 400)      — username contains "@"
      AppError(DUPLICATE_EMAIL, 409)    — email already registered
      AppError(DUPLICATE_USERNAME, 409) — username already taken

    Returns: {"user": {...}}
    """
    # Login matches email before username, so an email-shaped username
    # could be shadowed by another account.
    if "@" in username:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "Username must not contain '@'.",
            400,
            field="username",
        )

    with translate_storage_errors("register_user"):
        existing_email = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if existing_email is not None:
            raise AppError(
                ErrorCode.DUPLICATE_EMAIL,
                f"The email address '{email}' is already registered.",
                409,
                field="email",
            )

        existing_username = session.execute(
            select(User).where(User.username == username)
        ).scalar_one_or_none()
        if existing_username is not None:
            raise AppError(
                ErrorCode.DUPLICATE_USERNAME,
                f"The username '{username}' is already taken.",
                409,
                field="username",
            )

        user = User(
            email=email,
            username=username,
            password_hash=credential_service.hash_password(
                password,
                rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12),
            ),
            first_name=first_name,
            last_name=last_name,
            is_active=True,
            role=role,
        )
        session.add(user)
        session.flush()
        session.refresh(user)  # load server-side timestamps

    current_app.logger.info("User %s registered.", user.id)
    return {"user": _build_user_dict(user)}


def login(
        identifier: str,
        password: str,
        session: Session,
        ip_address: str | None = None,
        user_agent: str | None = None,
) -> dict:
    """
    Validates credentials (email or username) and opens a new session.

    Raises:
      InvalidCredentials (401) — unknown identifier, wrong password, inactive user.
      StorageError (503)       — store unavailable.
    """
    user = credential_service.validate_credentials(
        identifier,
        password,
        session,
        rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12),
    )
    pair = build_session_manager(session).login(
        user,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return {
        "access_token": pair.access_token,
        "refresh_token": pair.refresh_token,
        "token_type": pair.token_type,
        "expires_in": pair.expires_in,
        "user": _build_user_dict(user),
    }


def refresh(raw_refresh_token: str, session: Session) -> dict:
    """
    Exchanges a valid refresh token for a new access token.
    The refresh token itself stays valid (no rotation on use).

    Raises:
      InvalidRefreshToken / RevokedRefreshToken / ExpiredRefreshToken (401).
    """
    manager = build_session_manager(session)
    access_token = manager.rotate_access_token(raw_refresh_token)
    return {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": manager.issuer.expires_in(access_token),
    }


def logout(raw_refresh_token: str, session: Session) -> dict:
    """Revokes one session. Unknown tokens report revoked=False, not an error."""
    return {"revoked": build_session_manager(session).revoke(raw_refresh_token)}


def logout_all(user_id: int, session: Session) -> dict:
    """Revokes every session of the user."""
    return {"revoked": build_session_manager(session).revoke_all(user_id)}


def list_sessions(user_id: int, session: Session) -> list[dict]:
    return build_session_manager(session).list_sessions(user_id)


def purge_expired_tokens(session: Session) -> int:
    return build_session_manager(session).purge_expired()


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      AppError(USER_NOT_FOUND, 404) — user_id from the JWT no longer exists
        (deleted between token issue and request).
    """
    return _build_user_dict(_get_user_or_404(user_id, session))


def set_user_active(user_id: int, active: bool, session: Session) -> dict:
    """
    Activates or deactivates an account. Deactivation also revokes every
    session so the user cannot keep refreshing.
    """
    user = _get_user_or_404(user_id, session)
    user.is_active = active
    with translate_storage_errors("set_user_active"):
        session.flush()
    if not active:
        build_session_manager(session).revoke_all(user.id)
    with translate_storage_errors("set_user_active"):
        session.refresh(user)
    current_app.logger.info("User %s %s.", user.id, "activated" if active else "deactivated")
    return _build_user_dict(user)
