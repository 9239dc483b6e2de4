"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register                 -- create password account; 201 + token
  POST /api/v1/auth/login                    -- password login; 200 + token
  POST /api/v1/auth/logout                   -- client-side logout acknowledgement
  GET  /api/v1/auth/me                       -- current user (requires auth)
  GET  /api/v1/auth/providers                -- list enabled OAuth providers (public)
  POST /api/v1/auth/verify/resend            -- mail a new verification link (requires auth)
  GET  /api/v1/auth/verify/{token}           -- confirm email address
  GET  /api/v1/auth/oauth/{provider}         -- redirect to the provider
  GET  /api/v1/auth/oauth/{provider}/callback -- provider callback; issues token

Every handler is a thin adapter: parse the body, call AuthService, map the
result to a response model. Failures are AuthError subclasses raised by the
service and turned into {"success": false, "message": ...} by the handler in
api/main.py, so no route builds an error response by hand -- except the OAuth
callback, which may redirect failures to a configured page instead.

Security:
  [C1] Login failure messages are identical for unknown email and wrong
       password; AuthService guarantees it, routes must not add detail.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import logging

import httpx
from authlib.common.errors import AuthlibBaseError
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OAuthLoginResponse,
    ProviderInfo,
    ProviderListResponse,
    RegisterRequest,
    RegisterResponse,
    UserEnvelope,
    UserOut,
)
from auth.dependencies import get_auth_service, protect
from auth.errors import AuthError, Unauthorized
from auth.models import User
from auth.oauth import OAuthProvider
from auth.service import AuthService

logger = logging.getLogger("authkit.api.auth")

# Auth policy:
# - POST /auth/register, /auth/login, /auth/logout:  public
# - GET  /auth/providers, /auth/verify/{token}:      public
# - GET  /auth/oauth/{provider}[/callback]:          public (provider does the auth)
# - GET  /auth/me, POST /auth/verify/resend:         requires auth (protect)
router = APIRouter()


# ---------------------------------------------------------------------------
# Password accounts
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(
    body: RegisterRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    """Create a password account and return a token for it.

    400 on malformed input, 409 if the email is taken.
    """
    result = service.register(body.name, body.email, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return RegisterResponse(token=result.token, user=UserOut.from_user(result.user))


@router.post("/auth/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Exchange email and password for a token. 401 on any mismatch [C1]."""
    result = service.login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return LoginResponse(token=result.token)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    """Acknowledge a logout.

    Tokens are stateless and there is no revocation list: the token stays
    valid until it expires. Logging out means the client deletes its copy.
    """
    return MessageResponse(message="Logged out. Discard the token on the client.")


@router.get("/auth/me", response_model=UserEnvelope)
def me(current_user: User = Depends(protect)) -> UserEnvelope:
    """Return the currently authenticated user."""
    return UserEnvelope(data=UserOut.from_user(current_user))


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/auth/verify/resend", response_model=MessageResponse, status_code=202)
def resend_verification(
    current_user: User = Depends(protect),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Mail a fresh verification link to the current user."""
    if current_user.is_email_verified:
        return MessageResponse(message="Email address is already verified.")
    service.send_verification(current_user)
    return MessageResponse(message="If the address can receive mail, a verification link is on its way.")


@router.get("/auth/verify/{token}", response_model=UserEnvelope)
def verify_email(token: str, service: AuthService = Depends(get_auth_service)) -> UserEnvelope:
    """Confirm an email address from a mailed link. 400 if the link is bad or expired."""
    user = service.verify_email(token)
    return UserEnvelope(data=UserOut.from_user(user))


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=ProviderListResponse)
async def list_providers(request: Request) -> ProviderListResponse:
    """Return the configured OAuth providers so a client can render buttons."""
    providers: dict[str, OAuthProvider] = request.app.state.oauth_providers
    return ProviderListResponse(data=[ProviderInfo(name=p.name, label=p.label) for p in providers.values()])


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the enabled set first, so a crafted
    name can never select an unregistered client.
    """
    adapter = _get_provider(request, provider)
    client = request.app.state.oauth.create_client(adapter.name)
    redirect_uri = str(request.url_for("oauth_callback", provider=adapter.name))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> Response:
    """Finish the provider handshake, resolve the user, and issue a token.

    Flow:
      1. Exchange the authorization code (Authlib checks state via the session).
      2. The adapter turns the token into a ProviderProfile.
      3. AuthService resolves or creates the user and mints a token.
      4. Redirect to oauth_success_redirect#token=... if configured,
         otherwise answer with JSON.
    Failures redirect to oauth_failure_redirect?error=<code> if configured,
    otherwise propagate to the AuthError handler (401/409/503).
    """
    adapter = _get_provider(request, provider)
    settings = request.app.state.settings
    service: AuthService = request.app.state.auth_service
    client = request.app.state.oauth.create_client(adapter.name)

    try:
        try:
            token = await client.authorize_access_token(request)
        except (AuthlibBaseError, httpx.HTTPError) as exc:
            # AuthlibBaseError covers OAuthError and id_token (JoseError) failures.
            logger.warning("OAuth token exchange failed for provider %r: %r", adapter.name, exc)
            raise Unauthorized("OAuth authentication failed.") from exc
        profile = await adapter.resolve_profile(client, token)
        result = await run_in_threadpool(service.oauth_login, profile)
    except AuthError as exc:
        if not settings.oauth_failure_redirect:
            raise
        target = settings.oauth_failure_redirect
        separator = "&" if "?" in target else "?"
        return RedirectResponse(f"{target}{separator}error={exc.code}", status_code=302)

    if settings.oauth_success_redirect:
        resp: Response = RedirectResponse(f"{settings.oauth_success_redirect}#token={result.token}", status_code=302)
    else:
        resp = JSONResponse(
            content=OAuthLoginResponse(token=result.token, user=UserOut.from_user(result.user)).model_dump()
        )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_provider(request: Request, name: str) -> OAuthProvider:
    providers: dict[str, OAuthProvider] = request.app.state.oauth_providers
    adapter = providers.get(name)
    if adapter is None:
        raise HTTPException(status_code=404, detail="Unknown or disabled OAuth provider.")
    return adapter
