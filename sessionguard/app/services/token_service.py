"""
services/token_service.py — Access token issuance and verification.

Access token (HS256 JWT by default):
  sub       user id (str — PyJWT requires a string subject)
  email, username, role
  iat, exp  issued-at / expiry, TTL from JWT_ACCESS_TOKEN_EXPIRES
  jti       random id so two tokens minted in the same second still differ

Access tokens are self-contained and carry no revocation state. Logging out
revokes the refresh token only; an access token already handed out stays
usable until its own exp (at most JWT_ACCESS_TOKEN_EXPIRES).

The issuer is built once per app from config and cached on
app.extensions["token_issuer"]. Its secret is never mutated afterwards.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from flask import current_app

from sessionguard.app.errors import ExpiredAccessToken, InvalidToken

REQUIRED_CLAIMS = ("sub", "iat", "exp")


class AccessTokenIssuer:

    def __init__(self, secret: str, ttl: timedelta, algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError("An access-token signing secret is required.")
        self._secret = secret
        self._algorithm = algorithm
        self.ttl = ttl

    def issue(self, user) -> str:
        """Signs an access token for `user` (anything with id/email/username/role)."""
        now = datetime.now(timezone.utc)
        role = getattr(user.role, "value", user.role)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "username": user.username,
            "role": role,
            "iat": now,
            "exp": now + self.ttl,
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> dict[str, Any]:
        """
        Verifies signature and expiry and returns the claims.

        Raises:
          ExpiredAccessToken — signature fine, exp in the past.
          InvalidToken       — anything else (bad signature, malformed, missing claims).
        """
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": list(REQUIRED_CLAIMS)},
            )
        except jwt.ExpiredSignatureError:
            raise ExpiredAccessToken()
        except jwt.InvalidTokenError:
            raise InvalidToken()

    def expires_in(self, token: str) -> int:
        """Seconds of validity the token was issued with (exp - iat)."""
        claims = self.decode(token)
        return int(claims["exp"]) - int(claims["iat"])


def get_token_issuer() -> AccessTokenIssuer:
    """Returns the app-wide issuer, building it from config on first use."""
    issuer = current_app.extensions.get("token_issuer")
    if issuer is None:
        issuer = AccessTokenIssuer(
            secret=current_app.config["JWT_SECRET_KEY"],
            ttl=current_app.config["JWT_ACCESS_TOKEN_EXPIRES"],
            algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
        )
        current_app.extensions["token_issuer"] = issuer
    return issuer
