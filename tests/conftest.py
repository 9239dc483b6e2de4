"""
tests/conftest.py -- Shared test fixtures for AuthKit.

This module provides:
  - make_settings(): Settings with a fixed secret, cheap bcrypt, no rate limit
  - store / hasher / issuer / resolver / service: unit-level components
  - RecordingMailer: captures verification links instead of sending them
  - app / api_client: the real FastAPI app from create_app(), driven by TestClient

Design: every test gets its own SQLite file under tmp_path. A file DB (not
shared-cache :memory:) lets TestClient's worker threads and the concurrency
tests open independent connections that see one database and wait on each
other's write locks instead of failing with "table is locked".

Settings are built from keyword arguments, which take precedence over the
environment, so a developer's .env cannot leak into the suite.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.main import create_app
from auth.passwords import PasswordHasher
from auth.resolver import IdentityResolver
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"


def make_settings(database_url: str, **overrides) -> Settings:
    """Return Settings suitable for tests; overrides win over the defaults here."""
    values = {
        "debug": False,
        "secret_key": TEST_SECRET,
        "database_url": database_url,
        "bcrypt_rounds": 4,
        "rate_limit_enabled": False,
        "allowed_hosts": ["testserver"],
        "base_url": "http://testserver",
        "github_client_id": "",
        "github_client_secret": "",
        "google_client_id": "",
        "google_client_secret": "",
        "oauth_success_redirect": "",
        "oauth_failure_redirect": "",
        "mail_api_url": "",
    }
    values.update(overrides)
    return Settings(**values)


class RecordingMailer:
    """Mailer double that records (email, name, link) instead of sending."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send_verification(self, email: str, name: str, link: str) -> None:
        self.sent.append((email, name, link))


# ---------------------------------------------------------------------------
# Unit-level components
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture
def store(db_url: str) -> Generator[UserStore, None, None]:
    s = UserStore(db_url)
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, expire_seconds=3600, email_verify_expire_seconds=600)


@pytest.fixture
def resolver(store: UserStore, hasher: PasswordHasher) -> IdentityResolver:
    return IdentityResolver(store, hasher, password_min_length=6, email_policy="link")


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def service(
    store: UserStore,
    resolver: IdentityResolver,
    issuer: TokenIssuer,
    mailer: RecordingMailer,
) -> AuthService:
    return AuthService(store, resolver, issuer, mailer=mailer, verify_link_base="http://testserver/verify/")


# ---------------------------------------------------------------------------
# HTTP-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings_factory(db_url: str):
    """Return a callable building test Settings with per-test overrides."""

    def factory(**overrides) -> Settings:
        return make_settings(db_url, **overrides)

    return factory


@pytest.fixture
def settings(settings_factory) -> Settings:
    return settings_factory()


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture
def api_client(app: FastAPI) -> Generator[TestClient, None, None]:
    """TestClient over the real app. Entering the context runs the lifespan."""
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
