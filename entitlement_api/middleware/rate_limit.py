"""Rate limiting middleware using slowapi.

Per-endpoint limits for client-invoked endpoints. Platform callbacks
(App Store, Play, Stripe) are exempt.

Limits:
- Global: 100 req/min per IP
- Purchase validation: 30 req/min
- Health: 120 req/min
- Stripe checkout/portal/cancel and account deletion: 10 req/min

Set RATE_LIMIT_ENABLED=false to disable (local development, tests).
"""

from __future__ import annotations

import logging
import os

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger

logger = logging.getLogger("entitlements.rate_limit")

RATE_LIMIT_ENABLED = os.environ.get("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes", "on")

limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["100/minute"],
    storage_uri="memory://",
    enabled=RATE_LIMIT_ENABLED,
)

rate_limit_validate = limiter.limit("30/minute")
rate_limit_write = limiter.limit("10/minute")
rate_limit_health = limiter.limit("120/minute")


def setup_rate_limiting(app):
    """Configure rate limiting on the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _custom_rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limiting %s", "enabled" if limiter.enabled else "disabled")


async def _custom_rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Log the event and return 429 with Retry-After."""
    security_logger.rate_limit_exceeded(
        ip=get_client_ip(request),
        path=request.url.path,
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "code": "RATE_LIMIT_EXCEEDED",
            "details": {"limit": str(exc.detail)},
        },
        headers={"Retry-After": "60"},
    )
