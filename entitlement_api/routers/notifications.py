"""Platform-pushed notification router.

Endpoints:
    POST /api/notifications/app-store   - App Store Server Notifications V2
    POST /api/notifications/play-store  - Google Play RTDN via Pub/Sub push

Both always answer 200: Apple and Pub/Sub redeliver on any other status, and a
payload that failed once (unverifiable, unlinkable) will fail every time.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from ..billing.apple_notifications import AppleNotificationVerifier
from ..billing.google_play import GooglePlayVerifier
from ..billing.notifications import process_app_store_notification, process_play_notification
from ..billing.store import EntitlementStore
from ..config import Settings
from ..dependencies import (
    get_app_settings,
    optional_apple_notification_verifier,
    get_google_play_verifier,
    get_store,
)
from ..middleware.rate_limit import limiter
from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger

router = APIRouter()
logger = logging.getLogger("entitlements.routers.notifications")


async def _json_body(request: Request) -> dict:
    raw = await request.body()
    try:
        body = json.loads(raw or b"{}")
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/notifications/app-store", response_class=PlainTextResponse)
@limiter.exempt
async def app_store_notification(
    request: Request,
    store: EntitlementStore = Depends(get_store),
    verifier: Optional[AppleNotificationVerifier] = Depends(optional_apple_notification_verifier),
    settings: Settings = Depends(get_app_settings),
) -> PlainTextResponse:
    body = await _json_body(request)
    try:
        result = process_app_store_notification(store, verifier, body.get("signedPayload"), settings)
    except Exception:
        logger.exception("App Store notification processing error")
        result = "Error logged"
    if result in ("Verification failed", "Transaction verification failed"):
        security_logger.notification_unverified(
            ip=get_client_ip(request), path=request.url.path, reason=result
        )
    return PlainTextResponse(result, status_code=200)


@router.post("/notifications/play-store", response_class=PlainTextResponse)
@limiter.exempt
async def play_store_notification(
    request: Request,
    store: EntitlementStore = Depends(get_store),
    verifier: GooglePlayVerifier = Depends(get_google_play_verifier),
    settings: Settings = Depends(get_app_settings),
) -> PlainTextResponse:
    body = await _json_body(request)
    try:
        result = process_play_notification(store, verifier, body, settings)
    except Exception:
        logger.exception("Play notification processing error")
        result = "Error logged"
    return PlainTextResponse(result, status_code=200)
