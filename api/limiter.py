"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware via app.state.limiter) and by
api/routes/v1/auth.py (per-route limit on POST /auth/login).

A single shared instance keeps one in-memory counter store for every route.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
