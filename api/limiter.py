"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Limits are passed as callables reading get_settings(), so LOGIN_RATE_LIMIT,
REGISTER_RATE_LIMIT and RESET_RATE_LIMIT take effect without code changes.
One shared instance means all routes share the same in-memory counter store.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
