"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, resolver, and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """An identity record.

    The same class doubles as the draft passed to UserStore.create(): a draft
    has id=None and created_at=None, and the store fills both in.

    email is None only for accounts created from an OAuth profile that carried
    no verified address. password_hash is None for OAuth-only accounts, which
    can therefore never pass a password login.

    provider_links maps provider name ("github", "google") to the provider's
    stable subject id. At most one entry per provider.
    """

    name: str
    email: str | None = None
    id: str | None = None
    password_hash: str | None = None
    provider_links: dict[str, str] = field(default_factory=dict)
    is_email_verified: bool = False
    created_at: str | None = None


@dataclass(frozen=True)
class ProviderProfile:
    """Normalized OAuth profile handed from a provider adapter to the resolver.

    email is only set when the provider confirmed the address is verified.
    """

    provider: str
    subject_id: str
    email: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class AuthResult:
    """A user together with a freshly minted bearer token."""

    user: User
    token: str
