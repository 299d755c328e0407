"""Health check router.

Endpoints:
    GET /api/health - liveness and configuration summary (no auth)
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from ..config import Settings
from ..dependencies import get_app_settings
from ..middleware.rate_limit import rate_limit_health

router = APIRouter()
logger = logging.getLogger("entitlements.routers.health")

API_VERSION = "1.0.0"


@router.get("/health")
@rate_limit_health
async def health_check(request: Request, settings: Settings = Depends(get_app_settings)) -> dict:
    """Basic health check.

    Reports which platforms are configured, never the secrets themselves.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": API_VERSION,
        "platforms": {
            "apple": bool(settings.apple_shared_secret),
            "appleNotifications": bool(settings.apple_root_cert_paths),
            "googlePlay": bool(settings.google_play_package_name),
            "stripe": bool(settings.stripe_secret_key and settings.stripe_webhook_secret),
        },
    }
