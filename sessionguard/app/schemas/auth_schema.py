"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field presence, types, lengths, formats.
  - services/: DUPLICATE_EMAIL / DUPLICATE_USERNAME checks and credential
    correctness (they need a DB lookup — not a schema concern).

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests. See extensions.py.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, pre_load, validate, validates


class RegisterSchema(Schema):
    """
    POST /auth/register

    Field rules:
      email      : valid email, max 255 chars
      username   : 3–50 chars, letters, digits and underscores only
      password   : min 8 chars, at least one letter and one digit
      first_name : required, 1–100 chars
      last_name  : required, 1–100 chars
    """

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    username = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=3,
                max=50,
                error="Username must be between 3 and 50 characters.",
            ),
            validate.Regexp(
                r"^[a-zA-Z0-9_]+$",
                error="Username may only contain letters, numbers, and underscores.",
            ),
        ],
    )

    password = fields.Str(required=True, load_only=True)

    first_name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    last_name  = fields.Str(required=True, validate=validate.Length(min=1, max=100))

    @pre_load
    def strip_names(self, data, **kwargs):
        if isinstance(data, dict):
            data = dict(data)
            for key in ("email", "username", "first_name", "last_name"):
                if isinstance(data.get(key), str):
                    data[key] = data[key].strip()
        return data

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long.")
        if not any(c.isalpha() for c in value):
            raise ValidationError("Password must contain at least one letter.")
        if not any(c.isdigit() for c in value):
            raise ValidationError("Password must contain at least one digit.")


class LoginSchema(Schema):
    """
    POST /auth/login

    `identifier` is an email address or a username. Credential correctness
    is checked in credential_service (INVALID_CREDENTIALS, 401).
    """

    identifier = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    password = fields.Str(required=True, load_only=True, validate=validate.Length(min=1))


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh, POST /auth/logout

    Token validity (unknown, revoked, expired) is checked in the session
    manager, not here.
    """

    refresh_token = fields.Str(required=True, validate=validate.Length(min=1, max=512))
