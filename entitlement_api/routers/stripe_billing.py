"""Stripe billing router (web subscriptions).

Endpoints:
    POST /api/billing/stripe/checkout - Checkout session URL for a plan
    POST /api/billing/stripe/portal   - Billing portal URL
    POST /api/billing/stripe/cancel   - cancel at period end
"""

import logging

from fastapi import APIRouter, Depends, Request

from ..billing.errors import BillingError
from ..billing.store import EntitlementStore
from ..billing.stripe_sync import cancel_subscription, create_checkout_session, create_portal_session
from ..config import Settings
from ..dependencies import get_app_settings, get_store, verify_firebase_token
from ..middleware.rate_limit import rate_limit_write
from ..models import ErrorResponse, StripeCheckoutRequest, StripeUrlResponse, SuccessResponse
from .common import build_correlation_id, error_response

router = APIRouter()
logger = logging.getLogger("entitlements.routers.stripe_billing")

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    412: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


@router.post("/billing/stripe/checkout", response_model=StripeUrlResponse, responses=_ERROR_RESPONSES)
@rate_limit_write
async def create_stripe_checkout(
    request: Request,
    payload: StripeCheckoutRequest,
    decoded_token: dict = Depends(verify_firebase_token),
    store: EntitlementStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    correlation_id = build_correlation_id(request)
    uid = decoded_token["uid"]
    try:
        url = create_checkout_session(
            store,
            uid=uid,
            email=decoded_token.get("email"),
            plan=payload.plan,
            trial=payload.trial,
            settings=settings,
        )
    except BillingError as exc:
        logger.warning("Stripe checkout failed uid=%s code=%s corr=%s", uid, exc.code, correlation_id)
        return error_response(exc, correlationId=correlation_id)
    return StripeUrlResponse(url=url)


@router.post("/billing/stripe/portal", response_model=StripeUrlResponse, responses=_ERROR_RESPONSES)
@rate_limit_write
async def create_stripe_portal(
    request: Request,
    decoded_token: dict = Depends(verify_firebase_token),
    store: EntitlementStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    correlation_id = build_correlation_id(request)
    try:
        url = create_portal_session(store, uid=decoded_token["uid"], settings=settings)
    except BillingError as exc:
        logger.warning("Stripe portal failed code=%s corr=%s", exc.code, correlation_id)
        return error_response(exc, correlationId=correlation_id)
    return StripeUrlResponse(url=url)


@router.post("/billing/stripe/cancel", response_model=SuccessResponse, responses=_ERROR_RESPONSES)
@rate_limit_write
async def cancel_stripe_subscription(
    request: Request,
    decoded_token: dict = Depends(verify_firebase_token),
    store: EntitlementStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    correlation_id = build_correlation_id(request)
    try:
        cancel_subscription(store, uid=decoded_token["uid"], settings=settings)
    except BillingError as exc:
        logger.warning("Stripe cancel failed code=%s corr=%s", exc.code, correlation_id)
        return error_response(exc, correlationId=correlation_id)
    return SuccessResponse(success=True)
