"""
api/main.py -- FastAPI application factory for AuthKit.

create_app(settings) builds a fully wired application from one Settings
instance. Nothing is read from the environment here; asgi.py passes in
get_settings() and the tests pass in their own Settings.

Run with:      python main.py
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  0. log_requests, security_headers -- @app.middleware("http") functions
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces the default per-IP rate limit
  4. SessionMiddleware     -- holds the OAuth state between redirect and callback

Lifespan builds the auth components on startup (store, hasher, issuer,
resolver, service, OAuth registry) and closes the store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import build_limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.mailer import HttpMailer, LogMailer
from auth.oauth import build_oauth_registry, build_providers
from auth.passwords import PasswordHasher
from auth.resolver import IdentityResolver
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings

VERSION = "0.1.0"

logger = logging.getLogger("authkit.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_auth_service(settings: Settings, store: UserStore) -> AuthService:
    """Assemble AuthService and its collaborators from settings."""
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    issuer = TokenIssuer(
        settings.secret_key,
        expire_seconds=settings.token_expire_seconds,
        email_verify_expire_seconds=settings.email_verify_expire_seconds,
    )
    resolver = IdentityResolver(
        store,
        hasher,
        password_min_length=settings.password_min_length,
        email_policy=settings.oauth_email_policy,
    )
    if settings.mail_api_url:
        mailer = HttpMailer(settings.mail_api_url, settings.mail_api_key, settings.mail_from)
    else:
        mailer = LogMailer()
    return AuthService(
        store,
        resolver,
        issuer,
        mailer=mailer,
        verify_link_base=f"{settings.base_url.rstrip('/')}/api/v1/auth/verify/",
    )


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"success": false, "message": ...} envelope so
# clients can parse errors uniformly without inspecting status codes.
# ---------------------------------------------------------------------------


def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map any AuthError to its status code and the failure envelope."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=exc.message, errors=exc.errors).model_dump(),
        headers=headers,
    )


def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the request body fails schema validation.

    400 rather than FastAPI's default 422: a missing field and a malformed
    email are the same kind of client mistake and get the same status.
    """
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())[1:]), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(message="Request validation failed.", errors=errors).model_dump(),
    )


def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when the rate limit is exceeded.

    Sync on purpose: SlowAPIMiddleware calls this directly without awaiting.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(message="Too many requests, please try again later.").model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only. The client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(message="Internal server error").model_dump(),
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings) -> FastAPI:
    """Build the AuthKit application for the given settings."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Build auth components on startup; close the store on shutdown."""
        logger.info("AuthKit API starting up")
        store = UserStore(settings.database_url)
        app.state.user_store = store
        app.state.auth_service = build_auth_service(settings, store)
        app.state.oauth_providers = build_providers(settings)
        app.state.oauth = build_oauth_registry(app.state.oauth_providers)
        logger.info("Auth initialized (oauth providers: %s)", ", ".join(app.state.oauth_providers) or "none")

        yield

        store.close()
        logger.info("AuthKit API shutdown complete")

    app = FastAPI(
        title="AuthKit API",
        description="Password, JWT, and OAuth authentication service.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # -----------------------------------------------------------------------
    # Middleware stack
    #
    # Starlette wraps middleware in reverse registration order: the last
    # add_middleware() call is outermost. Register innermost first.
    # -----------------------------------------------------------------------

    # SessionMiddleware is required by Authlib to store the OAuth state value
    # between the authorization redirect and the callback. It carries nothing
    # else; authentication itself is the bearer token.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        https_only=settings.secure_cookies,
        same_site="lax",
    )

    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = build_limiter(
        settings.rate_limit,
        storage_uri=settings.rate_limit_storage_uri,
        enabled=settings.rate_limit_enabled,
    )
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )

    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # -----------------------------------------------------------------------
    # Security headers and request logging
    # -----------------------------------------------------------------------

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    # -----------------------------------------------------------------------
    # Routers and handlers
    # -----------------------------------------------------------------------

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/api/v1/health", tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Return liveness, version, and a database check."""
        database = "ok" if request.app.state.user_store.ping() else "error"
        return HealthResponse(version=VERSION, components={"app": "ok", "database": database})

    return app
