# utils/rate_limit.py
# -*- coding: utf-8 -*-
"""
Rate limiting for the Dokus API.

SECURITY: protects against DoS and brute force.

Default limits:
- General: 100 requests/minute per IP
- Login/register/password reset: 10 requests/minute per IP
- AI processing: 10 requests/minute per user
- Uploads: 20 requests/minute per user

Usage:
    from utils.rate_limit import limiter, rate_limit_exceeded_handler

    # main.py
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # routers
    @router.post("/endpoint")
    @limiter.limit(LIMITS["ai"])
    async def endpoint(request: Request):
        ...
"""

import os
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# ==================================================
# CLIENT IDENTIFICATION
# ==================================================

def get_real_ip(request: Request) -> str:
    """
    Real client IP, honouring proxy headers.

    Priority:
    1. X-Forwarded-For (first address)
    2. X-Real-IP
    3. Socket address
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def get_user_identifier(request: Request) -> str:
    """
    Rate limit key: the authenticated user when a valid bearer token is
    present, the client IP otherwise.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        from auth.security import decode_token
        payload = decode_token(auth_header[len("Bearer "):])
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"

    return f"ip:{get_real_ip(request)}"


# ==================================================
# LIMITER INSTANCE
# ==================================================

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "100/minute")
RATE_LIMIT_LOGIN = os.getenv("RATE_LIMIT_LOGIN", "10/minute")
RATE_LIMIT_AI = os.getenv("RATE_LIMIT_AI", "10/minute")
RATE_LIMIT_UPLOAD = os.getenv("RATE_LIMIT_UPLOAD", "20/minute")

# Storage: in-memory by default, Redis in production (redis://...)
RATE_LIMIT_STORAGE = os.getenv("RATE_LIMIT_STORAGE", "memory://")

limiter = Limiter(
    key_func=get_real_ip,
    default_limits=[RATE_LIMIT_DEFAULT],
    enabled=RATE_LIMIT_ENABLED,
    storage_uri=RATE_LIMIT_STORAGE,
)


# ==================================================
# HANDLERS
# ==================================================

async def rate_limit_exceeded_handler(request: Request, exc: Exception) -> JSONResponse:
    """JSON 429 response for slowapi's RateLimitExceeded."""
    exc_detail = getattr(exc, 'detail', str(exc))

    logger.warning(
        f"Rate limit exceeded: {get_real_ip(request)} - {request.url.path} - {exc_detail}"
    )

    retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": "RATE_LIMIT_EXCEEDED",
            "message": "Too many requests. Try again in a minute.",
            "details": {"limit": str(exc_detail)},
        },
        headers={
            "Retry-After": retry_after,
        }
    )


# ==================================================
# CONSTANTS FOR @limiter.limit()
# ==================================================

LIMITS = {
    "login": RATE_LIMIT_LOGIN,
    "ai": RATE_LIMIT_AI,
    "default": RATE_LIMIT_DEFAULT,
    "upload": RATE_LIMIT_UPLOAD,
}
