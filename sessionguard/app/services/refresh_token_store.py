"""
services/refresh_token_store.py — Persistence for refresh-token records.

The store is the only shared mutable resource of the session core. It relies
on the database's own single-statement atomicity: revoke and revoke-all are
one UPDATE each, purge is one DELETE. No application-level locking.

Token values:
  Callers always pass the raw token. The store hashes it (SHA-256) before
  any read or write, so the raw value never reaches the database or the logs.

Failure model:
  Connectivity problems and timeouts (OperationalError, InterfaceError, pool
  TimeoutError) surface as StorageError. The store never swallows them.

Layer rules:
  - No Flask imports. Works with any SQLAlchemy Session.
  - Commits are the caller's responsibility — only flush here.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
from datetime import datetime, timezone
from typing import Iterator, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, joinedload

from sessionguard.app.errors import DuplicateToken, StorageError
from sessionguard.app.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token string."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def as_utc(value: datetime) -> datetime:
    """Some drivers (SQLite) hand back naive datetimes; stored values are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@contextlib.contextmanager
def translate_storage_errors(operation: str) -> Iterator[None]:
    """Re-raises connectivity / timeout failures as StorageError."""
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        # Only the exception type: the DBAPI message can echo bound parameters.
        logger.error("Session store %s failed: %s", operation, type(exc).__name__)
        raise StorageError() from exc


class RefreshTokenStore(Protocol):
    """Operations the session manager needs from a refresh-token backend."""

    def create(
            self,
            user_id: int,
            token: str,
            expires_at: datetime,
            ip_address: str | None = None,
            user_agent: str | None = None,
    ) -> RefreshToken: ...

    def find_by_token(self, token: str) -> RefreshToken | None: ...

    def find_all_by_user(self, user_id: int) -> list[RefreshToken]: ...

    def revoke(self, token: str) -> bool: ...

    def revoke_all_for_user(self, user_id: int) -> bool: ...

    def delete_expired(self, now: datetime) -> int: ...


class SqlAlchemyRefreshTokenStore:

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(
            self,
            user_id: int,
            token: str,
            expires_at: datetime,
            ip_address: str | None = None,
            user_agent: str | None = None,
    ) -> RefreshToken:
        """
        Inserts a new record inside a SAVEPOINT so a unique-constraint clash
        rolls back only this insert, not the caller's transaction.

        Raises:
          DuplicateToken — a record with the same token already exists.
          StorageError   — database unreachable / timed out.
        """
        record = RefreshToken(
            token=hash_token(token),
            user_id=user_id,
            expires_at=expires_at,
            is_revoked=False,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        with translate_storage_errors("create"):
            try:
                with self.session.begin_nested():
                    self.session.add(record)
            except IntegrityError:
                if self.find_by_token(token) is not None:
                    raise DuplicateToken()
                raise
        return record

    def find_by_token(self, token: str) -> RefreshToken | None:
        with translate_storage_errors("find_by_token"):
            return self.session.execute(
                select(RefreshToken)
                .options(joinedload(RefreshToken.user))
                .where(RefreshToken.token == hash_token(token))
            ).scalar_one_or_none()

    def find_all_by_user(self, user_id: int) -> list[RefreshToken]:
        with translate_storage_errors("find_all_by_user"):
            return list(
                self.session.execute(
                    select(RefreshToken)
                    .where(RefreshToken.user_id == user_id)
                    .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
                ).scalars().all()
            )

    def revoke(self, token: str) -> bool:
        """Sets is_revoked on the matching record. True if a record exists."""
        with translate_storage_errors("revoke"):
            result = self.session.execute(
                update(RefreshToken)
                .where(RefreshToken.token == hash_token(token))
                .values(is_revoked=True)
            )
        return result.rowcount > 0

    def revoke_all_for_user(self, user_id: int) -> bool:
        """Revokes every record the user owns, expired ones included."""
        with translate_storage_errors("revoke_all_for_user"):
            result = self.session.execute(
                update(RefreshToken)
                .where(RefreshToken.user_id == user_id)
                .values(is_revoked=True)
            )
        return result.rowcount > 0

    def delete_expired(self, now: datetime) -> int:
        """
        Deletes records with expires_at < now. Records expiring at or after
        `now` stay, revoked or not (revoked rows are kept for audit).
        """
        with translate_storage_errors("delete_expired"):
            result = self.session.execute(
                delete(RefreshToken)
                .where(RefreshToken.expires_at < now)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0
