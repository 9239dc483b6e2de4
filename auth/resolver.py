"""
auth/resolver.py -- Turns credentials or OAuth profiles into user records.

IdentityResolver is stateless: it holds references to the store and hasher
plus two policy values, and every method is a self-contained operation.

Enumeration resistance [C1]:
  login() raises InvalidCredentials with one fixed message for an unknown
  email, an OAuth-only account, and a wrong password. It also runs bcrypt on
  every path, so response time does not reveal which case occurred.

OAuth email collisions:
  A provider profile whose verified email already belongs to another account
  is handled by email_policy. "link" attaches the provider to that account
  (the provider has proven control of the address); "reject" raises
  DuplicateIdentity. Creating a second account with the same email is never
  an option -- the store's UNIQUE(email) forbids it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email

from auth.errors import DuplicateIdentity, InvalidCredentials, Unauthorized, ValidationError
from auth.models import ProviderProfile, User
from auth.passwords import PasswordHasher
from auth.store import UserStore

logger = logging.getLogger("authkit.auth")


class IdentityResolver:
    """Creates, matches, and verifies identities.

    Args:
        store:               Credential store.
        hasher:              Password hasher.
        password_min_length: Minimum accepted password length on register.
        email_policy:        "link" or "reject" -- see module docstring.
    """

    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        password_min_length: int = 6,
        email_policy: str = "link",
    ) -> None:
        if email_policy not in ("link", "reject"):
            raise ValueError(f"Unknown OAuth email policy: {email_policy!r}")
        self.store = store
        self.hasher = hasher
        self.password_min_length = password_min_length
        self.email_policy = email_policy

    # ------------------------------------------------------------------
    # Password accounts
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str) -> User:
        """Create a password account.

        Raises:
            ValidationError:   blank name, malformed email, or short password.
                               All problems are collected and reported together.
            DuplicateIdentity: the email is already registered.
        """
        errors: list[dict] = []
        name = (name or "").strip()
        if not name:
            errors.append({"field": "name", "message": "Name is required"})

        normalized: str | None = None
        try:
            normalized = normalize_email(email)
        except ValidationError:
            errors.append({"field": "email", "message": "Please include a valid email"})

        if len(password or "") < self.password_min_length:
            errors.append(
                {
                    "field": "password",
                    "message": f"Please enter a password with {self.password_min_length} or more characters",
                }
            )
        if errors:
            raise ValidationError(errors[0]["message"], errors=errors)

        if self.store.find_by_email(normalized) is not None:
            raise DuplicateIdentity("User already exists")

        draft = User(
            name=name,
            email=normalized,
            password_hash=self.hasher.hash(password),
            is_email_verified=False,
        )
        # A concurrent register for the same email that passed the check above
        # loses at the UNIQUE constraint and surfaces as DuplicateIdentity here.
        user = self.store.create(draft)
        logger.info("Registered user %s", user.id)
        return user

    def login(self, email: str, password: str) -> User:
        """Return the user whose credentials match, or raise InvalidCredentials."""
        try:
            normalized = normalize_email(email)
        except ValidationError:
            normalized = None

        user = self.store.find_by_email(normalized) if normalized else None
        if user is None or user.password_hash is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self.hasher.burn(password or "")
            raise InvalidCredentials()
        if not self.hasher.verify(password or "", user.password_hash):
            raise InvalidCredentials()
        return user

    # ------------------------------------------------------------------
    # OAuth accounts
    # ------------------------------------------------------------------

    def resolve_oauth(self, profile: ProviderProfile) -> User:
        """Return the user for an OAuth profile, linking or creating as needed.

        Order:
          1. Existing (provider, subject) link -- returned unchanged.
          2. Existing account with the profile's email -- linked or rejected
             per email_policy.
          3. New account carrying the link, is_email_verified=True.
        """
        user = self.store.find_by_provider_link(profile.provider, profile.subject_id)
        if user is not None:
            return user

        if profile.email:
            existing = self.store.find_by_email(profile.email)
            if existing is not None:
                return self._link_existing(existing, profile)

        draft = User(
            name=(profile.display_name or profile.email or f"{profile.provider} user").strip(),
            email=profile.email,
            provider_links={profile.provider: profile.subject_id},
            is_email_verified=True,
        )
        try:
            user = self.store.create(draft)
        except DuplicateIdentity:
            # Two first logins for the same provider account raced; the other
            # request created the record. Anything else is a real conflict.
            winner = self.store.find_by_provider_link(profile.provider, profile.subject_id)
            if winner is None:
                raise
            return winner
        logger.info("Created user %s from %s profile", user.id, profile.provider)
        return user

    def _link_existing(self, existing: User, profile: ProviderProfile) -> User:
        if self.email_policy == "reject":
            logger.info("Refused %s login: email belongs to user %s", profile.provider, existing.id)
            raise DuplicateIdentity("An account with this email already exists. Log in with your password.")
        if profile.provider in existing.provider_links:
            # The account is already tied to a different subject at this provider.
            raise DuplicateIdentity(f"This account is already linked to another {profile.provider} identity.")

        try:
            self.store.link_provider(existing.id, profile.provider, profile.subject_id)
        except DuplicateIdentity:
            # A concurrent first login for the same provider account may have
            # linked it already. Only a link to this same account is a success.
            owner = self.store.find_by_provider_link(profile.provider, profile.subject_id)
            if owner is None or owner.id != existing.id:
                raise
        if not existing.is_email_verified:
            self.store.mark_email_verified(existing.id)
        linked = self.store.find_by_id(existing.id)
        if linked is None:
            # The account was deleted between the email lookup and the link.
            raise Unauthorized("OAuth authentication failed.")
        logger.info("Linked %s identity to existing user %s", profile.provider, existing.id)
        return linked


def normalize_email(email: str | None) -> str:
    """Validate email syntax and return the lowercased address.

    Deliverability (DNS) is not checked: registration must not depend on the
    network. Raises ValidationError for anything that is not an address.
    """
    if not email or not isinstance(email, str):
        raise ValidationError("Please include a valid email")
    try:
        result = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("Please include a valid email") from exc
    return result.normalized.lower()
