"""Purchase validation router.

Endpoints:
    POST /api/billing/validate       - verify a store purchase and update the entitlement
    GET  /api/billing/account-token  - appAccountToken to pass to StoreKit
"""

import logging

from fastapi import APIRouter, Depends, Request

from ..billing.apple import AppleReceiptVerifier
from ..billing.errors import BillingError, TrialAlreadyUsedError
from ..billing.google_play import GooglePlayVerifier
from ..billing.identity import platform_account_token_for
from ..billing.purchases import validate_purchase
from ..billing.store import EntitlementStore
from ..config import Settings
from ..dependencies import (
    get_app_settings,
    get_apple_receipt_verifier,
    get_google_play_verifier,
    get_store,
    verify_firebase_token,
)
from ..middleware.rate_limit import rate_limit_validate
from ..models import AccountTokenResponse, ErrorResponse, ValidatePurchaseRequest, ValidatePurchaseResponse
from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger
from .common import build_correlation_id, error_response

router = APIRouter()
logger = logging.getLogger("entitlements.routers.purchases")


@router.post(
    "/billing/validate",
    response_model=ValidatePurchaseResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        412: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
@rate_limit_validate
async def validate_purchase_endpoint(
    request: Request,
    payload: ValidatePurchaseRequest,
    decoded_token: dict = Depends(verify_firebase_token),
    store: EntitlementStore = Depends(get_store),
    apple: AppleReceiptVerifier = Depends(get_apple_receipt_verifier),
    google: GooglePlayVerifier = Depends(get_google_play_verifier),
    settings: Settings = Depends(get_app_settings),
):
    """Validate a purchase with its store and return the resulting entitlement.

    A user who already owns lifetime access gets the stored record back
    without any call to Apple or Google.
    """
    correlation_id = build_correlation_id(request)
    uid = decoded_token["uid"]
    try:
        record = validate_purchase(
            store,
            uid=uid,
            email=decoded_token.get("email"),
            platform=payload.platform,
            product_id=payload.productId,
            receipt=payload.receipt,
            purchase_token=payload.purchaseToken,
            apple=apple,
            google=google,
            settings=settings,
        )
    except TrialAlreadyUsedError as exc:
        security_logger.trial_abuse_rejected(
            uid=uid,
            platform=payload.platform,
            product_id=payload.productId,
            ip=get_client_ip(request),
        )
        return error_response(exc, correlationId=correlation_id)
    except BillingError as exc:
        logger.warning(
            "purchase validation failed uid=%s code=%s corr=%s", uid, exc.code, correlation_id
        )
        return error_response(exc, correlationId=correlation_id)
    except Exception:
        logger.exception("purchase validation error uid=%s corr=%s", uid, correlation_id)
        return error_response(
            BillingError(error="Validation failed", code="VALIDATION_FAILED"),
            correlationId=correlation_id,
        )

    return ValidatePurchaseResponse(**record.to_response())


@router.get(
    "/billing/account-token",
    response_model=AccountTokenResponse,
    responses={401: {"model": ErrorResponse}},
)
async def get_account_token(
    decoded_token: dict = Depends(verify_firebase_token),
) -> AccountTokenResponse:
    """UUID for StoreKit's appAccountToken; App Store notifications carry it back."""
    return AccountTokenResponse(platformAccountToken=platform_account_token_for(decoded_token["uid"]))
