"""Client IP extraction with trusted proxy support.

Only trusts X-Forwarded-For when TRUST_PROXY is "1" or "true" (Cloud Run and
most load balancers append the caller address there). Otherwise the direct
peer address is used, so the header cannot be spoofed to dodge rate limits.
"""

from __future__ import annotations

import os
import logging
from fastapi import Request

logger = logging.getLogger("entitlements.client_ip")

TRUST_PROXY = os.environ.get("TRUST_PROXY", "").lower() in ("1", "true")


def get_client_ip(request: Request) -> str:
    """Get client IP address from request."""
    if TRUST_PROXY:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # First IP in the chain is the original client
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"
