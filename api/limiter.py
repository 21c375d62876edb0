"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules (to
apply per-route limits with @limiter.limit()).

A single shared instance means all routes share one in-memory counter store.
Instantiating it per module would give each module its own counter and the
login limit would never trigger.

Limits are passed as strings. SlowAPIMiddleware only enforces static limits;
a callable limit is evaluated by the decorator wrapper, which FastAPI never
calls when @limiter.limit sits above @router.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

# Read once at import. Changing LOGIN_RATE_LIMIT requires a restart.
LOGIN_RATE_LIMIT = get_settings().login_rate_limit
