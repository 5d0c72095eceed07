"""
services/credential_service.py — Password hashing and credential validation.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Read-only: validating credentials never writes.

Password storage:
  - bcrypt with a per-password salt; cost factor supplied by the caller
    (BCRYPT_LOG_ROUNDS, 12 in production, 4 under test).
  - Raw passwords and hashes are never logged.
"""

from __future__ import annotations

import functools

import bcrypt
from sqlalchemy import select
from sqlalchemy.orm import Session

from sessionguard.app.errors import InvalidCredentials
from sessionguard.app.models.user import User
from sessionguard.app.services.refresh_token_store import translate_storage_errors


@functools.lru_cache(maxsize=None)
def dummy_hash(rounds: int) -> bytes:
    """
    Hash compared against when the identifier matches no user. Built at the
    same cost as stored hashes so the unknown-user path does the same bcrypt
    work as a wrong password.
    """
    return bcrypt.hashpw(b"sessionguard-dummy-password", bcrypt.gensalt(rounds=rounds))


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time bcrypt comparison. A malformed stored hash counts as a mismatch."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def find_user_by_identifier(identifier: str, session: Session) -> User | None:
    """Exact match on email first, then on username. Both columns are unique."""
    with translate_storage_errors("find_user_by_identifier"):
        user = session.execute(
            select(User).where(User.email == identifier)
        ).scalar_one_or_none()
        if user is None:
            user = session.execute(
                select(User).where(User.username == identifier)
            ).scalar_one_or_none()
    return user


def validate_credentials(
        identifier: str,
        password: str,
        session: Session,
        rounds: int = 12,
) -> User:
    """
    Returns the User whose email or username equals `identifier` and whose
    password matches. `rounds` is the configured bcrypt cost.

    Raises:
      InvalidCredentials — unknown identifier, wrong password, or inactive user.
      The same error for all three avoids account enumeration.
    """
    user = find_user_by_identifier(identifier, session)

    if user is None:
        bcrypt.checkpw(password.encode("utf-8"), dummy_hash(rounds))
        raise InvalidCredentials()

    if not verify_password(password, user.password_hash):
        raise InvalidCredentials()

    if not user.is_active:
        raise InvalidCredentials()

    return user
