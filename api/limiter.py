"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

The limit strings are read from Settings once, at import. They must stay
plain strings: SlowAPIMiddleware only enforces static limits, and callable
limits are only checked by the decorator wrapper, which FastAPI never sees
when @limiter.limit sits above @router.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

LOGIN_LIMIT: str = get_settings().login_rate_limit  # POST /auth/login [H2]
RESET_LIMIT: str = get_settings().reset_rate_limit  # forgot/reset password
