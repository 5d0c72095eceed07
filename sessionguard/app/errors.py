"""
errors.py — AppError base class, typed session errors and the error code registry.

Every error returned by the SessionGuard API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Messages never contain raw tokens, token digests or password hashes.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    DUPLICATE_USERNAME         = "DUPLICATE_USERNAME"
    DUPLICATE_TOKEN            = "DUPLICATE_TOKEN"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    REFRESH_TOKEN_REVOKED      = "REFRESH_TOKEN_REVOKED"  # 401
    REFRESH_TOKEN_EXPIRED      = "REFRESH_TOKEN_EXPIRED"  # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors ──────────────────────────────────────────────────────
    STORAGE_UNAVAILABLE        = "STORAGE_UNAVAILABLE"    # 503, retryable
    INTERNAL_ERROR             = "INTERNAL_ERROR"         # 500


# ── Typed errors ───────────────────────────────────────────────────────────
#
# Raised by the session core. Each one pins its code and status so callers
# can catch by type while the global handler still renders the envelope.
# ──────────────────────────────────────────────────────────────────────────

class InvalidCredentials(AppError):
    """Unknown identifier, wrong password, or inactive account. Same error for all three."""

    def __init__(self, message: str = "The email/username or password is incorrect.") -> None:
        super().__init__(ErrorCode.INVALID_CREDENTIALS, message, 401)


class InvalidRefreshToken(AppError):

    def __init__(self, message: str = "The refresh token is not recognised.") -> None:
        super().__init__(ErrorCode.REFRESH_TOKEN_INVALID, message, 401)


class RevokedRefreshToken(AppError):

    def __init__(self, message: str = "The refresh token has been revoked.") -> None:
        super().__init__(ErrorCode.REFRESH_TOKEN_REVOKED, message, 401)


class ExpiredRefreshToken(AppError):

    def __init__(self, message: str = "The refresh token has expired. Log in again.") -> None:
        super().__init__(ErrorCode.REFRESH_TOKEN_EXPIRED, message, 401)


class InvalidToken(AppError):
    """Access-token decode failure: bad signature, malformed, or missing claims."""

    def __init__(
            self,
            message: str = "The access token is invalid or has been tampered with.",
            code: str = ErrorCode.TOKEN_INVALID,
    ) -> None:
        super().__init__(code, message, 401)


class ExpiredAccessToken(InvalidToken):

    def __init__(
            self,
            message: str = "The access token has expired. Use POST /auth/refresh to obtain a new one.",
    ) -> None:
        super().__init__(message, code=ErrorCode.TOKEN_EXPIRED)


class DuplicateToken(AppError):

    def __init__(self, message: str = "A refresh token with this value already exists.") -> None:
        super().__init__(ErrorCode.DUPLICATE_TOKEN, message, 409)


class StorageError(AppError):
    """Persistence layer unreachable or timed out. Safe for the client to retry."""

    retryable = True

    def __init__(self, message: str = "The session store is temporarily unavailable. Please retry.") -> None:
        super().__init__(ErrorCode.STORAGE_UNAVAILABLE, message, 503)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["error"]["retryable"] = True
        return payload
