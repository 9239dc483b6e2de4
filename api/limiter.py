"""
api/limiter.py -- slowapi rate limiter construction.

One Limiter per application, built by create_app() and attached to
app.state.limiter, where SlowAPIMiddleware looks for it by convention. The
limit is a default limit, so the middleware applies it to every route without
per-route decorators; a decorator would need a module-level limiter and
therefore a module-level limit.

Counters live in the storage named by rate_limit_storage_uri ("memory://" by
default). Each Limiter gets its own storage, so two apps in one process (as
in the test suite) never share counters.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address


def build_limiter(limit: str, storage_uri: str = "memory://", enabled: bool = True) -> Limiter:
    """Return a per-client-IP limiter enforcing limit on every route."""
    return Limiter(
        key_func=get_remote_address,
        default_limits=[limit],
        storage_uri=storage_uri,
        enabled=enabled,
    )
