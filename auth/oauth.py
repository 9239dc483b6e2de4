"""
auth/oauth.py -- OAuth provider adapters and the Authlib client registry.

A fixed set of adapter classes, one per supported provider, all exposing the
same two methods:

  register(oauth)                     -- add the provider's endpoints to an
                                         Authlib OAuth registry.
  resolve_profile(client, token)      -- turn the token returned by the code
                                         exchange into a ProviderProfile.

build_providers(settings) picks the adapters whose client ID and secret are
both configured. That dict is built once at startup; routes look providers up
in it by name and never branch on provider type themselves.

Security notes:
  [H1] Only verified emails leave this module. A provider that cannot confirm
       verification yields a profile with email=None. The resolver links
       accounts by email, so an unverified address -- which could be a
       victim's address added by an attacker -- must never reach it.

  OAuth state parameter (CSRF protection) is handled by Authlib via
  Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Supported providers:
  github -- Authorization code flow; static endpoints; email from /user/emails.
  google -- Authorization code flow; OIDC discovery; email from id_token.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import httpx
from authlib.integrations.starlette_client import OAuth

from auth.errors import Unauthorized
from auth.models import ProviderProfile

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authkit.auth.oauth")

_FAILED = "OAuth authentication failed."


class OAuthProvider(Protocol):
    name: str
    label: str

    def register(self, oauth: OAuth) -> None: ...

    async def resolve_profile(self, client, token: dict) -> ProviderProfile: ...


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class GitHubProvider:
    """GitHub OAuth app. GitHub has no OIDC id_token, so two API calls are needed."""

    name = "github"
    label = "GitHub"

    def __init__(self, client_id: str, client_secret: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret

    def register(self, oauth: OAuth) -> None:
        oauth.register(
            name=self.name,
            client_id=self.client_id,
            client_secret=self.client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )

    async def resolve_profile(self, client, token: dict) -> ProviderProfile:
        """Build a profile from GET /user and GET /user/emails.

        [H1] Only the email where both primary=true AND verified=true is
        accepted. A user with no such entry gets email=None rather than a
        failed login.
        """
        try:
            resp = await client.get("user", token=token)
            resp.raise_for_status()
            profile = resp.json()
            subject_id = str(profile["id"])

            emails_resp = await client.get("user/emails", token=token)
            emails_resp.raise_for_status()
            emails = emails_resp.json()
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.warning("GitHub profile fetch failed: %s", exc)
            raise Unauthorized(_FAILED) from exc

        if not isinstance(profile, dict) or not isinstance(emails, list):
            logger.warning("GitHub returned an unexpected profile or email list shape")
            raise Unauthorized(_FAILED)

        email: str | None = None
        for entry in emails:
            if not isinstance(entry, dict):
                continue
            if entry.get("primary") and entry.get("verified"):
                email = entry.get("email")
                break

        return ProviderProfile(
            provider=self.name,
            subject_id=subject_id,
            email=email,
            display_name=profile.get("name") or profile.get("login"),
        )


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


class GoogleProvider:
    """Google sign-in via OIDC discovery. Everything needed is in the id_token."""

    name = "google"
    label = "Google"

    def __init__(self, client_id: str, client_secret: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret

    def register(self, oauth: OAuth) -> None:
        oauth.register(
            name=self.name,
            client_id=self.client_id,
            client_secret=self.client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )

    async def resolve_profile(self, client, token: dict) -> ProviderProfile:
        """Build a profile from the parsed id_token claims (token["userinfo"]).

        [H1] The email claim is only kept when email_verified is true. A
        missing email_verified claim counts as unverified.
        """
        userinfo = token.get("userinfo")
        if not userinfo or not userinfo.get("sub"):
            logger.warning("Google token response carried no userinfo/sub")
            raise Unauthorized(_FAILED)

        verified = userinfo.get("email_verified") in (True, "true")
        return ProviderProfile(
            provider=self.name,
            subject_id=str(userinfo["sub"]),
            email=userinfo.get("email") if verified else None,
            display_name=userinfo.get("name"),
        )


# ---------------------------------------------------------------------------
# Startup wiring
# ---------------------------------------------------------------------------


def build_providers(settings: Settings) -> dict[str, OAuthProvider]:
    """Return the adapters enabled by configuration, keyed by provider name."""
    providers: dict[str, OAuthProvider] = {}
    if settings.github_client_id and settings.github_client_secret:
        providers["github"] = GitHubProvider(settings.github_client_id, settings.github_client_secret)
    if settings.google_client_id and settings.google_client_secret:
        providers["google"] = GoogleProvider(settings.google_client_id, settings.google_client_secret)
    return providers


def build_oauth_registry(providers: dict[str, OAuthProvider]) -> OAuth:
    """Create an Authlib registry with every enabled provider registered."""
    oauth = OAuth()
    for provider in providers.values():
        provider.register(oauth)
        logger.info("%s OAuth provider registered", provider.label)
    return oauth
