"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/reconcile.py (to apply per-route limits with @limiter.limit()).

A single shared instance means every trigger route counts against the same
in-memory store. Each /export or /update-tls hit fans out into dozens of
Cloudflare calls, so the limit protects the Cloudflare quota, not this app.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def trigger_limit() -> str:
    """Resolve the trigger-route limit lazily so tests can set the env first."""
    return get_settings().trigger_rate_limit
