"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth/* through the real ASGI stack.

Covers:
  - register -> login -> /me happy path, status codes and envelopes
  - failure envelope {"success": false, "message": ...} for 400/401/404/409
  - the protect() guard never runs a handler for an unauthenticated request
  - email verification routes
  - OAuth: provider list, redirect, and callback (success, redirect targets,
    provider errors, email-policy conflicts)
  - rate limiting returns 429 with Retry-After

OAuth callbacks run against a fake Authlib registry swapped into
app.state.oauth after startup, so nothing leaves the process.
"""

from __future__ import annotations

import httpx
import pytest
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.starlette_client import OAuthError
from fastapi import Depends
from fastapi.testclient import TestClient

from api.main import create_app
from auth.dependencies import protect
from auth.models import User

REGISTER = "/api/v1/auth/register"
LOGIN = "/api/v1/auth/login"
ME = "/api/v1/auth/me"
CALLBACK = "/api/v1/auth/oauth/github/callback"

ADA = {"name": "Ada", "email": "ada@example.com", "password": "hunter22"}


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _assert_failure(resp, status: int) -> dict:
    assert resp.status_code == status
    body = resp.json()
    assert body["success"] is False
    assert isinstance(body["message"], str) and body["message"]
    return body


# ---------------------------------------------------------------------------
# Fake OAuth registry
# ---------------------------------------------------------------------------


class FakeGitHubClient:
    """Stands in for an Authlib StarletteOAuth2App registered as "github"."""

    def __init__(self, user: dict, emails, error: str | None = None, exc: Exception | None = None) -> None:
        self.user = user
        self.emails = emails
        self.error = error
        self.exc = exc

    async def authorize_access_token(self, request) -> dict:
        if self.error:
            raise OAuthError(error=self.error, description="provider refused")
        if self.exc is not None:
            raise self.exc
        return {"access_token": "gho_test", "token_type": "bearer"}

    async def get(self, path: str, token: dict) -> httpx.Response:
        payload = {"user": self.user, "user/emails": self.emails}[path]
        return httpx.Response(200, json=payload, request=httpx.Request("GET", f"https://api.github.com/{path}"))


class FakeRegistry:
    def __init__(self, client: FakeGitHubClient) -> None:
        self.client = client

    def create_client(self, name: str) -> FakeGitHubClient:
        return self.client


def _github_user(email: str | None = "ada@example.com", subject: int = 1001) -> FakeGitHubClient:
    emails = [{"email": email, "primary": True, "verified": True}] if email else []
    return FakeGitHubClient({"id": subject, "login": "ada", "name": "Ada Lovelace"}, emails)


@pytest.fixture
def github_settings(settings_factory):
    def build(**overrides):
        return settings_factory(github_client_id="gh-id", github_client_secret="gh-secret", **overrides)

    return build


# ---------------------------------------------------------------------------
# Password accounts
# ---------------------------------------------------------------------------


class TestPasswordFlow:
    def test_documented_scenario(self, api_client: TestClient) -> None:
        user = {"name": "Test User", "email": "test@example.com", "password": "password123"}
        resp = api_client.post(REGISTER, json=user)
        assert resp.status_code == 201
        assert resp.json()["token"]

        resp = api_client.post(LOGIN, json={"email": "test@example.com", "password": "password123"})
        assert resp.status_code == 200
        token = resp.json()["token"]

        resp = api_client.get(ME, headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == "test@example.com"

        assert api_client.post(LOGIN, json={"email": "test@example.com", "password": "wrongpassword"}).status_code == 401
        assert api_client.get(ME).status_code == 401

    def test_register_login_me(self, api_client: TestClient) -> None:
        resp = api_client.post(REGISTER, json=ADA)
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["token"]
        assert body["user"]["email"] == "ada@example.com"
        assert resp.headers["cache-control"] == "no-store"

        resp = api_client.post(LOGIN, json={"email": "ada@example.com", "password": "hunter22"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        token = resp.json()["token"]
        assert resp.headers["cache-control"] == "no-store"

        resp = api_client.get(ME, headers=_bearer(token))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["email"] == "ada@example.com"
        assert data["name"] == "Ada"
        assert data["is_email_verified"] is False
        assert data["providers"] == []
        assert "password_hash" not in data

    def test_register_token_works_immediately(self, api_client: TestClient) -> None:
        token = api_client.post(REGISTER, json=ADA).json()["token"]
        assert api_client.get(ME, headers=_bearer(token)).status_code == 200

    def test_login_email_is_case_insensitive(self, api_client: TestClient) -> None:
        api_client.post(REGISTER, json=ADA)
        resp = api_client.post(LOGIN, json={"email": "ADA@Example.com", "password": "hunter22"})
        assert resp.status_code == 200

    def test_wrong_password_and_unknown_email_look_the_same(self, api_client: TestClient) -> None:
        api_client.post(REGISTER, json=ADA)
        wrong = api_client.post(LOGIN, json={"email": "ada@example.com", "password": "nope-nope"})
        unknown = api_client.post(LOGIN, json={"email": "ghost@example.com", "password": "hunter22"})
        assert _assert_failure(wrong, 401) == _assert_failure(unknown, 401)
        assert wrong.json()["message"] == "Invalid email or password."
        assert "token" not in wrong.json()

    def test_duplicate_registration_conflicts(self, api_client: TestClient) -> None:
        assert api_client.post(REGISTER, json=ADA).status_code == 201
        body = _assert_failure(api_client.post(REGISTER, json={**ADA, "email": "ADA@example.com"}), 409)
        assert body["message"] == "User already exists"

    def test_invalid_email_rejected(self, api_client: TestClient) -> None:
        body = _assert_failure(api_client.post(REGISTER, json={**ADA, "email": "not-an-email"}), 400)
        assert body["message"] == "Please include a valid email"
        assert body["errors"] == [{"field": "email", "message": "Please include a valid email"}]

    def test_short_password_rejected(self, api_client: TestClient) -> None:
        body = _assert_failure(api_client.post(REGISTER, json={**ADA, "password": "12345"}), 400)
        assert [e["field"] for e in body["errors"]] == ["password"]

    def test_missing_field_rejected_with_400(self, api_client: TestClient) -> None:
        body = _assert_failure(api_client.post(REGISTER, json={"name": "Ada", "email": "ada@example.com"}), 400)
        assert "password" in [e["field"] for e in body["errors"]]

    def test_failed_registration_creates_nothing(self, api_client: TestClient) -> None:
        api_client.post(REGISTER, json={**ADA, "password": "x"})
        resp = api_client.post(LOGIN, json={"email": "ada@example.com", "password": "x"})
        _assert_failure(resp, 401)

    def test_logout_acknowledged(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json()["success"] is True


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


class TestProtectGuard:
    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": ""},
            {"Authorization": "Bearer"},
            {"Authorization": "Bearer not-a-token"},
            {"Authorization": "Basic YWRhOmh1bnRlcjIy"},
        ],
    )
    def test_me_rejects_missing_or_bad_token(self, api_client: TestClient, headers: dict) -> None:
        resp = api_client.get(ME, headers=headers)
        body = _assert_failure(resp, 401)
        assert body["message"] == "Not authorized to access this route."
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_expired_token_rejected(self, api_client: TestClient) -> None:
        user_id = api_client.post(REGISTER, json=ADA).json()["user"]["id"]
        issuer = api_client.app.state.auth_service.issuer
        _assert_failure(api_client.get(ME, headers=_bearer(issuer.issue(user_id, expire_seconds=-5))), 401)

    def test_handler_never_runs_without_auth(self, settings) -> None:
        app = create_app(settings)
        calls: list[str] = []

        @app.get("/api/v1/protected")
        def protected_route(user: User = Depends(protect)) -> dict:
            calls.append(user.id)
            return {"id": user.id}

        with TestClient(app) as client:
            for headers in ({}, {"Authorization": "Bearer garbage"}):
                assert client.get("/api/v1/protected", headers=headers).status_code == 401
            assert calls == []

            token = client.post(REGISTER, json=ADA).json()["token"]
            resp = client.get("/api/v1/protected", headers=_bearer(token))
            assert resp.status_code == 200
            assert calls == [resp.json()["id"]]


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


class TestEmailVerification:
    def test_verify_link_marks_account(self, api_client: TestClient) -> None:
        body = api_client.post(REGISTER, json=ADA).json()
        issuer = api_client.app.state.auth_service.issuer
        link_token = issuer.issue_email_verification(body["user"]["id"], "ada@example.com")

        resp = api_client.get(f"/api/v1/auth/verify/{link_token}")
        assert resp.status_code == 200
        assert resp.json()["data"]["is_email_verified"] is True
        me = api_client.get(ME, headers=_bearer(body["token"])).json()["data"]
        assert me["is_email_verified"] is True

    def test_bad_link_rejected(self, api_client: TestClient) -> None:
        body = _assert_failure(api_client.get("/api/v1/auth/verify/garbage"), 400)
        assert body["message"] == "Invalid or expired verification link"

    def test_resend_requires_auth(self, api_client: TestClient) -> None:
        _assert_failure(api_client.post("/api/v1/auth/verify/resend"), 401)

    def test_resend_accepted(self, api_client: TestClient) -> None:
        token = api_client.post(REGISTER, json=ADA).json()["token"]
        resp = api_client.post("/api/v1/auth/verify/resend", headers=_bearer(token))
        assert resp.status_code == 202
        assert resp.json()["success"] is True


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


class TestOAuthRoutes:
    def test_no_providers_by_default(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/providers")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": []}

    def test_configured_provider_listed(self, github_settings) -> None:
        with TestClient(create_app(github_settings())) as client:
            data = client.get("/api/v1/auth/providers").json()["data"]
        assert data == [{"name": "github", "label": "GitHub"}]

    def test_unknown_provider_404(self, api_client: TestClient) -> None:
        _assert_failure(api_client.get("/api/v1/auth/oauth/github", follow_redirects=False), 404)
        _assert_failure(api_client.get("/api/v1/auth/oauth/myspace/callback"), 404)

    def test_redirect_to_provider(self, github_settings) -> None:
        with TestClient(create_app(github_settings())) as client:
            resp = client.get("/api/v1/auth/oauth/github", follow_redirects=False)
        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith("https://github.com/login/oauth/authorize")
        assert "client_id=gh-id" in location
        assert "state=" in location

    def test_callback_creates_verified_user(self, github_settings) -> None:
        with TestClient(create_app(github_settings())) as client:
            client.app.state.oauth = FakeRegistry(_github_user())
            resp = client.get(CALLBACK)
            assert resp.status_code == 200
            body = resp.json()
            assert body["success"] is True
            assert body["user"]["email"] == "ada@example.com"
            assert body["user"]["is_email_verified"] is True
            assert body["user"]["providers"] == ["github"]
            assert resp.headers["cache-control"] == "no-store"

            me = client.get(ME, headers=_bearer(body["token"])).json()["data"]
            assert me["id"] == body["user"]["id"]

            # Second login through the same GitHub account lands on the same user.
            again = client.get(CALLBACK).json()
            assert again["user"]["id"] == body["user"]["id"]

    def test_callback_links_existing_password_account(self, github_settings) -> None:
        with TestClient(create_app(github_settings())) as client:
            user_id = client.post(REGISTER, json=ADA).json()["user"]["id"]
            client.app.state.oauth = FakeRegistry(_github_user())
            body = client.get(CALLBACK).json()
        assert body["user"]["id"] == user_id
        assert body["user"]["providers"] == ["github"]

    def test_callback_without_verified_email(self, github_settings) -> None:
        with TestClient(create_app(github_settings())) as client:
            client.app.state.oauth = FakeRegistry(_github_user(email=None))
            body = client.get(CALLBACK).json()
        assert body["user"]["email"] is None

    def test_reject_policy_conflict(self, github_settings) -> None:
        with TestClient(create_app(github_settings(oauth_email_policy="reject"))) as client:
            client.post(REGISTER, json=ADA)
            client.app.state.oauth = FakeRegistry(_github_user())
            _assert_failure(client.get(CALLBACK), 409)

    def test_provider_error_is_401(self, github_settings) -> None:
        with TestClient(create_app(github_settings())) as client:
            client.app.state.oauth = FakeRegistry(FakeGitHubClient({}, [], error="access_denied"))
            body = _assert_failure(client.get(CALLBACK), 401)
        assert body["message"] == "OAuth authentication failed."

    @pytest.mark.parametrize(
        "exc",
        [
            httpx.ConnectError("connection refused"),
            httpx.ReadTimeout("token endpoint timed out"),
            AuthlibBaseError(error="invalid_claim", description="id_token audience mismatch"),
        ],
    )
    def test_token_exchange_failure_is_401(self, github_settings, exc: Exception) -> None:
        with TestClient(create_app(github_settings())) as client:
            client.app.state.oauth = FakeRegistry(FakeGitHubClient({}, [], exc=exc))
            body = _assert_failure(client.get(CALLBACK), 401)
        assert body["message"] == "OAuth authentication failed."

    def test_network_failure_follows_failure_redirect(self, github_settings) -> None:
        settings = github_settings(oauth_failure_redirect="http://frontend.test/login")
        with TestClient(create_app(settings)) as client:
            client.app.state.oauth = FakeRegistry(FakeGitHubClient({}, [], exc=httpx.ConnectError("refused")))
            resp = client.get(CALLBACK, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://frontend.test/login?error=unauthorized"

    def test_malformed_email_list_is_401(self, github_settings) -> None:
        user = {"id": 1001, "login": "ada", "name": "Ada Lovelace"}
        with TestClient(create_app(github_settings())) as client:
            client.app.state.oauth = FakeRegistry(FakeGitHubClient(user, {"message": "Resource not accessible"}))
            body = _assert_failure(client.get(CALLBACK), 401)
        assert body["message"] == "OAuth authentication failed."

    def test_success_redirect(self, github_settings) -> None:
        settings = github_settings(oauth_success_redirect="http://frontend.test/welcome")
        with TestClient(create_app(settings)) as client:
            client.app.state.oauth = FakeRegistry(_github_user())
            resp = client.get(CALLBACK, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("http://frontend.test/welcome#token=")

    def test_failure_redirect(self, github_settings) -> None:
        settings = github_settings(oauth_failure_redirect="http://frontend.test/login")
        with TestClient(create_app(settings)) as client:
            client.app.state.oauth = FakeRegistry(FakeGitHubClient({}, [], error="access_denied"))
            resp = client.get(CALLBACK, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://frontend.test/login?error=unauthorized"


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TestTransport:
    def test_unknown_route_uses_failure_envelope(self, api_client: TestClient) -> None:
        _assert_failure(api_client.get("/api/v1/nope"), 404)

    def test_rate_limit_returns_429(self, settings_factory) -> None:
        settings = settings_factory(rate_limit="2/minute", rate_limit_enabled=True)
        with TestClient(create_app(settings)) as client:
            assert client.get("/api/v1/health").status_code == 200
            assert client.get("/api/v1/health").status_code == 200
            resp = client.get("/api/v1/health")
        body = _assert_failure(resp, 429)
        assert body["message"] == "Too many requests, please try again later."
        assert "retry-after" in resp.headers

    def test_untrusted_host_rejected(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/health", headers={"Host": "evil.example"})
        assert resp.status_code == 400
