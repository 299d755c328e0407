"""Stripe webhook router.

POST /api/webhooks/stripe

Signature failures return 400 and processing failures 500, so Stripe retries
with backoff; everything else is 200 {"received": true}.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..billing.errors import BillingError
from ..billing.store import EntitlementStore
from ..billing.stripe_events import StripeWebhookVerifier
from ..billing.stripe_sync import process_stripe_event
from ..config import Settings
from ..dependencies import get_app_settings, get_store, get_stripe_webhook_verifier
from ..middleware.rate_limit import limiter
from ..models import ErrorResponse, WebhookReceivedResponse
from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger
from .common import error_response

router = APIRouter()
logger = logging.getLogger("entitlements.routers.stripe_webhook")


@router.post(
    "/webhooks/stripe",
    response_model=WebhookReceivedResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
@limiter.exempt
async def stripe_webhook(
    request: Request,
    store: EntitlementStore = Depends(get_store),
    verifier: StripeWebhookVerifier = Depends(get_stripe_webhook_verifier),
    settings: Settings = Depends(get_app_settings),
):
    payload = await request.body()
    try:
        event = verifier.construct_event(payload, request.headers.get("Stripe-Signature"))
    except BillingError as exc:
        if exc.status_code == 400:
            security_logger.webhook_signature_failure(
                ip=get_client_ip(request), path=request.url.path, code=exc.code
            )
        logger.warning("Stripe webhook rejected code=%s", exc.code)
        return error_response(exc)

    event_type = event.get("type")
    try:
        handled = process_stripe_event(store, event, settings)
    except Exception:
        logger.exception("Stripe webhook processing failed type=%s id=%s", event_type, event.get("id"))
        return JSONResponse(
            status_code=500,
            content={"error": "Webhook processing failed", "code": "STRIPE_WEBHOOK_PROCESSING_FAILED", "category": "internal"},
        )

    logger.info("Stripe webhook type=%s id=%s handled=%s", event_type, event.get("id"), handled)
    return WebhookReceivedResponse(received=True)
