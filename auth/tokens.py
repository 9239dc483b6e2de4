"""
auth/tokens.py -- JWT issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with the configured secret
       and carry sub (user id), iat, exp, and a type claim. The secret and
       lifetimes are constructor arguments; this module reads no settings.

  Failure kinds: verify() raises ExpiredToken for a correctly signed token
       whose exp is in the past and InvalidToken for everything else
       (malformed, bad signature, wrong algorithm, wrong type, missing sub).
       Callers that do not care about the difference catch TokenError.

  Type claim: access tokens and email-verification tokens are signed with the
       same key, so each carries a "type" claim and each verify method rejects
       the other kind. Without it, a verification link leaked from a mailbox
       would work as a 24h bearer token.

  Revocation: there is none. A token stays valid until exp. Logout is the
       client discarding its copy.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import ExpiredToken, InvalidToken

logger = logging.getLogger("authkit.auth")

_ALGORITHM = "HS256"
_ACCESS = "access"
_EMAIL_VERIFY = "email_verify"


class TokenIssuer:
    """Creates and verifies signed, time-limited bearer tokens.

    Usage:
        issuer = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
        token = issuer.issue(user.id)
        user_id = issuer.verify(token)
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = 7 * 24 * 3600,
        email_verify_expire_seconds: int = 24 * 3600,
    ) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self.email_verify_expire_seconds = email_verify_expire_seconds

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue(self, user_id: str, expire_seconds: int | None = None) -> str:
        """Encode a signed access token for user_id.

        Args:
            user_id:        Store-assigned user id, carried as the sub claim.
            expire_seconds: Lifetime override. None uses the configured default.
        """
        duration = self.expire_seconds if expire_seconds is None else expire_seconds
        return self._encode({"sub": user_id, "type": _ACCESS}, duration)

    def verify(self, token: str) -> str:
        """Verify an access token and return the user id it carries."""
        payload = self._decode(token, _ACCESS)
        return payload["sub"]

    # ------------------------------------------------------------------
    # Email verification tokens
    # ------------------------------------------------------------------

    def issue_email_verification(self, user_id: str, email: str) -> str:
        """Encode a verification token bound to both the user and the address.

        Binding the email means a link sent before an address change cannot
        verify the new address.
        """
        return self._encode(
            {"sub": user_id, "email": email, "type": _EMAIL_VERIFY},
            self.email_verify_expire_seconds,
        )

    def verify_email_verification(self, token: str) -> tuple[str, str]:
        """Verify an email-verification token. Returns (user_id, email)."""
        payload = self._decode(token, _EMAIL_VERIFY)
        email = payload.get("email")
        if not isinstance(email, str) or not email:
            raise InvalidToken("Verification token carries no email.")
        return payload["sub"], email

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _encode(self, claims: dict, duration: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=duration)).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def _decode(self, token: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise ExpiredToken() from exc
        except JWTError as exc:
            raise InvalidToken() from exc

        if payload.get("type") != expected_type:
            logger.debug("Rejected token of type %r (expected %r)", payload.get("type"), expected_type)
            raise InvalidToken()
        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise InvalidToken()
        return payload
