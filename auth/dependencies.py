"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

protect() is the route guard: it reads the Authorization header, asks
AuthService to resolve it, and stores the user on request.state.user. On any
failure it raises Unauthorized, which the API's AuthError handler turns into
401 {"success": false, "message": ...}. Because FastAPI resolves
dependencies before calling the endpoint, the handler body never runs for an
unauthenticated request.

Only the Authorization header is consulted. No cookie fallback: the token
contract is transport-agnostic and browsers are not assumed.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. It does not import api/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import User
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService built by the application lifespan."""
    return request.app.state.auth_service


def protect(request: Request, service: AuthService = Depends(get_auth_service)) -> User:
    """Require a valid bearer token. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(protect)): ...
    """
    user = service.protect(request.headers.get("Authorization"))
    request.state.user = user
    return user
