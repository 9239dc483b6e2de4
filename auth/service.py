"""
auth/service.py -- AuthService, the transport-independent facade.

AuthService sequences the resolver, token issuer, store, and mailer. It holds
no logic of its own beyond that sequencing: which identity matches is the
resolver's job, how a token is signed is the issuer's.

Nothing here knows about HTTP. protect() takes the raw Authorization header
value so any transport can call it; auth/dependencies.py adapts it to FastAPI.

Failure collapsing:
  current_user() and protect() raise Unauthorized for every token problem
  (bad signature, expiry, deleted user). The specific reason is logged at
  DEBUG level and chained as __cause__, never returned to the caller.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.errors import TokenError, Unauthorized, ValidationError
from auth.mailer import MailerError
from auth.models import AuthResult, ProviderProfile, User
from auth.resolver import IdentityResolver
from auth.store import UserStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("authkit.auth")


class Mailer(Protocol):
    def send_verification(self, email: str, name: str, link: str) -> None: ...


class AuthService:
    """Register, login, and authorize requests.

    Usage:
        service = AuthService(store, resolver, issuer, mailer, verify_link_base)
        result = service.register("Ada", "ada@example.com", "hunter22")
        user = service.protect(f"Bearer {result.token}")
    """

    def __init__(
        self,
        store: UserStore,
        resolver: IdentityResolver,
        issuer: TokenIssuer,
        mailer: Mailer | None = None,
        verify_link_base: str = "",
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.issuer = issuer
        self.mailer = mailer
        self.verify_link_base = verify_link_base

    # ------------------------------------------------------------------
    # Credential flows
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str) -> AuthResult:
        user = self.resolver.register(name, email, password)
        self.send_verification(user)
        return AuthResult(user=user, token=self.issuer.issue(user.id))

    def login(self, email: str, password: str) -> AuthResult:
        user = self.resolver.login(email, password)
        logger.info("Password login for user %s", user.id)
        return AuthResult(user=user, token=self.issuer.issue(user.id))

    def oauth_login(self, profile: ProviderProfile) -> AuthResult:
        user = self.resolver.resolve_oauth(profile)
        logger.info("%s login for user %s", profile.provider, user.id)
        return AuthResult(user=user, token=self.issuer.issue(user.id))

    # ------------------------------------------------------------------
    # Request authorization
    # ------------------------------------------------------------------

    def current_user(self, token: str) -> User:
        """Resolve a bearer token to a live user, or raise Unauthorized."""
        try:
            user_id = self.issuer.verify(token)
        except TokenError as exc:
            logger.debug("Token rejected: %s", exc.code)
            raise Unauthorized() from exc

        user = self.store.find_by_id(user_id)
        if user is None:
            logger.debug("Token for unknown user %s", user_id)
            raise Unauthorized()
        return user

    def protect(self, authorization: str | None) -> User:
        """Authorize a request from its Authorization header value.

        Only the "Bearer <token>" scheme is accepted (scheme name is
        case-insensitive). A missing header, another scheme, or an empty token
        raises Unauthorized without touching the issuer.
        """
        if not authorization:
            raise Unauthorized()
        scheme, _, token = authorization.strip().partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise Unauthorized()
        return self.current_user(token)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def send_verification(self, user: User) -> bool:
        """Mail a verification link to an unverified user.

        Returns True if a link was handed to the mailer. Returns False when
        there is nothing to send (no mailer, no email, already verified) or
        the mailer failed; failures are logged, not raised.
        """
        if self.mailer is None or not user.email or user.is_email_verified:
            return False
        token = self.issuer.issue_email_verification(user.id, user.email)
        link = f"{self.verify_link_base}{token}"
        try:
            self.mailer.send_verification(user.email, user.name, link)
        except MailerError:
            logger.exception("Could not send verification mail for user %s", user.id)
            return False
        return True

    def verify_email(self, token: str) -> User:
        """Mark the account named by a verification token as verified.

        A bad, expired, or stale token (email changed since issue, user gone)
        raises ValidationError -- the link is input the caller supplied.
        """
        try:
            user_id, email = self.issuer.verify_email_verification(token)
        except TokenError as exc:
            raise ValidationError("Invalid or expired verification link") from exc

        user = self.store.find_by_id(user_id)
        if user is None or user.email != email:
            raise ValidationError("Invalid or expired verification link")
        if not user.is_email_verified:
            self.store.mark_email_verified(user.id)
            logger.info("Email verified for user %s", user.id)
            user = self.store.find_by_id(user.id)
        return user
