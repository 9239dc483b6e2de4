"""
auth/errors.py -- Exception taxonomy for the authentication core.

Every failure the core reports is one of these classes. Collaborator errors
(SQLAlchemy, bcrypt, Authlib, httpx) are caught at the component boundary and
re-raised as one of them, so callers never see driver- or SDK-specific shapes.

code and status_code are class attributes: the HTTP layer maps any AuthError
to a response with a single exception handler and needs no per-class table.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by auth/."""

    code = "auth_error"
    status_code = 400
    default_message = "Authentication error."

    def __init__(self, message: str | None = None, errors: list[dict] | None = None) -> None:
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input. The caller can fix it and retry."""

    code = "validation_error"
    status_code = 400
    default_message = "Invalid input."


class DuplicateIdentity(AuthError):
    """The email or provider link is already taken by another account."""

    code = "duplicate_identity"
    status_code = 409
    default_message = "An account with that identity already exists."


class InvalidCredentials(AuthError):
    """Login failed.

    Raised with the same message for an unknown email, an OAuth-only account,
    and a wrong password.
    """

    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid email or password."


class TokenError(AuthError):
    """A bearer token could not be accepted."""

    code = "invalid_token"
    status_code = 401
    default_message = "Invalid token."


class InvalidToken(TokenError):
    """Malformed, wrongly signed, or wrong-purpose token."""


class ExpiredToken(TokenError):
    """Correctly signed token whose exp claim is in the past."""

    code = "expired_token"
    default_message = "Token has expired."


class Unauthorized(AuthError):
    """Guard failure: no usable credential on the request."""

    code = "unauthorized"
    status_code = 401
    default_message = "Not authorized to access this route."


class StoreUnavailable(AuthError):
    """The credential store failed for a reason other than a uniqueness conflict."""

    code = "store_unavailable"
    status_code = 503
    default_message = "Credential store unavailable."
