"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules (to
apply per-route limits with @limiter.limit()). The limit decorator goes
below the @router.* decorators, so the route registers the wrapped function.

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limits are read from Settings when a request is checked, so LOGIN_RATE_LIMIT,
REGISTER_RATE_LIMIT and PASSWORD_RESET_RATE_LIMIT apply without code changes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def register_limit() -> str:
    return get_settings().register_rate_limit


def password_reset_limit() -> str:
    return get_settings().password_reset_rate_limit
