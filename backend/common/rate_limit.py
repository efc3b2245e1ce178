"""Rate limiting configuration using slowapi.

A module-level Limiter shared by routers for per-endpoint limits and wired
into the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Routes opt in with @limiter.limit(...); authentication endpoints use the
# tighter limits below.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
)

LOGIN_RATE_LIMIT = "10/minute"
REGISTER_RATE_LIMIT = "5/minute"
