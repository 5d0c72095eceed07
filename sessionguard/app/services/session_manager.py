"""
services/session_manager.py — Refresh-token session lifecycle.

States of a refresh token:

    ACTIVE ──logout / logout-all──▶ REVOKED   (terminal)
       │
       └──────time passes─────────▶ EXPIRED   (terminal)

Nothing leads back to ACTIVE. Expiry is detected lazily here (validate) and
eagerly by the expiry sweeper (purge_expired).

Policy notes:
  - Multiple concurrent sessions per user, no upper bound.
  - Refresh tokens are NOT rotated on use and reuse is not detected: the
    same refresh token keeps minting access tokens until it expires or is
    revoked. Hardening this means rotation-on-use with reuse detection,
    which changes the API (the refresh token value would change per call).
  - A revoke racing a concurrent validate of the same token may let one
    last refresh through; validate always re-reads the row.

Layer rules:
  - No Flask imports. Collaborators (store, issuer) are passed in.
  - Commits are the caller's responsibility.
"""

from __future__ import annotations

import enum
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sessionguard.app.errors import (
    DuplicateToken,
    ExpiredRefreshToken,
    InvalidRefreshToken,
    RevokedRefreshToken,
)
from sessionguard.app.services.refresh_token_store import RefreshTokenStore, as_utc
from sessionguard.app.services.token_service import AccessTokenIssuer

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_TTL = timedelta(days=30)
DEFAULT_TOKEN_BYTES = 64
MAX_TOKEN_ATTEMPTS = 3


class SessionState(str, enum.Enum):
    ACTIVE  = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


def session_state(record, now: datetime) -> SessionState:
    """Revocation wins over expiry: a revoked token reports REVOKED forever."""
    if record.is_revoked:
        return SessionState.REVOKED
    if as_utc(record.expires_at) <= now:
        return SessionState.EXPIRED
    return SessionState.ACTIVE


def generate_refresh_token(num_bytes: int = DEFAULT_TOKEN_BYTES) -> str:
    """Opaque hex token from the OS CSPRNG. Never fewer than 32 bytes (256 bits)."""
    return secrets.token_hex(max(32, num_bytes))


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: int
    token_type: str = "Bearer"


class SessionManager:

    def __init__(
            self,
            store: RefreshTokenStore,
            issuer: AccessTokenIssuer,
            refresh_ttl: timedelta = DEFAULT_REFRESH_TTL,
            token_bytes: int = DEFAULT_TOKEN_BYTES,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.refresh_ttl = refresh_ttl
        self.token_bytes = token_bytes

    # ── Issuing ────────────────────────────────────────────────────────────

    def login(
            self,
            user,
            ip_address: str | None = None,
            user_agent: str | None = None,
    ) -> TokenPair:
        """
        Issues one access token and one new refresh-token record for `user`.
        The caller has already verified the user's credentials.

        Raises:
          DuplicateToken — MAX_TOKEN_ATTEMPTS consecutive collisions (never in practice).
          StorageError   — store unavailable.
        """
        expires_at = datetime.now(timezone.utc) + self.refresh_ttl

        for _ in range(MAX_TOKEN_ATTEMPTS):
            raw_token = generate_refresh_token(self.token_bytes)
            try:
                record = self.store.create(
                    user_id=user.id,
                    token=raw_token,
                    expires_at=expires_at,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
                break
            except DuplicateToken:
                logger.warning("Refresh token collision for user %s; regenerating.", user.id)
        else:
            raise DuplicateToken()

        access_token = self.issuer.issue(user)
        logger.info("Session %s opened for user %s.", record.id, user.id)

        return TokenPair(
            access_token=access_token,
            refresh_token=raw_token,
            expires_in=self.issuer.expires_in(access_token),
            session_id=record.id,
        )

    # ── Validation ─────────────────────────────────────────────────────────

    def validate(self, token: str, now: datetime | None = None):
        """
        Resolves a refresh token to its owning user. The only path by which a
        refresh token turns into trust.

        Raises:
          InvalidRefreshToken — no such token.
          RevokedRefreshToken — token was revoked (checked before expiry).
          ExpiredRefreshToken — expires_at <= now.
        """
        now = now or datetime.now(timezone.utc)
        record = self.store.find_by_token(token)

        if record is None:
            raise InvalidRefreshToken()

        state = session_state(record, now)
        if state is SessionState.REVOKED:
            raise RevokedRefreshToken()
        if state is SessionState.EXPIRED:
            raise ExpiredRefreshToken()

        return record.user

    def rotate_access_token(self, token: str) -> str:
        """New access token from a valid refresh token. The refresh token is not consumed."""
        user = self.validate(token)
        return self.issuer.issue(user)

    # ── Revocation ─────────────────────────────────────────────────────────

    def revoke(self, token: str) -> bool:
        revoked = self.store.revoke(token)
        if revoked:
            logger.info("Refresh token revoked (single session).")
        return revoked

    def revoke_all(self, user_id: int) -> bool:
        """Revokes every session of the user, whatever their individual state."""
        revoked = self.store.revoke_all_for_user(user_id)
        logger.info("All sessions revoked for user %s (any affected: %s).", user_id, revoked)
        return revoked

    # ── Housekeeping ───────────────────────────────────────────────────────

    def purge_expired(self, now: datetime | None = None) -> int:
        """Deletes records past expiry. Idempotent: a re-run deletes 0 rows."""
        now = now or datetime.now(timezone.utc)
        return self.store.delete_expired(now)

    def list_sessions(self, user_id: int, now: datetime | None = None) -> list[dict]:
        """The user's sessions, newest first. Never includes the token digest."""
        now = now or datetime.now(timezone.utc)
        return [
            {
                "id": record.id,
                "state": session_state(record, now).value,
                "ip_address": record.ip_address,
                "user_agent": record.user_agent,
                "created_at": as_utc(record.created_at).isoformat(),
                "expires_at": as_utc(record.expires_at).isoformat(),
            }
            for record in self.store.find_all_by_user(user_id)
        ]
