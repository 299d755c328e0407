"""Account router.

DELETE /api/account - delete the caller's profile, subcollections and Auth user.

trialHistory/{uid} is left in place.
"""

import logging

from fastapi import APIRouter, Depends, Request
from firebase_admin import auth

from ..billing.errors import BillingError
from ..billing.store import EntitlementStore
from ..dependencies import get_firebase_app, get_store, verify_firebase_token
from ..middleware.rate_limit import rate_limit_write
from ..models import ErrorResponse, SuccessResponse
from .common import build_correlation_id, error_response

router = APIRouter()
logger = logging.getLogger("entitlements.routers.account")


def delete_auth_user(uid: str) -> None:
    get_firebase_app()
    try:
        auth.delete_user(uid)
    except auth.UserNotFoundError:
        logger.info("Auth user already absent uid=%s", uid)


@router.delete(
    "/account",
    response_model=SuccessResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
@rate_limit_write
async def delete_account(
    request: Request,
    decoded_token: dict = Depends(verify_firebase_token),
    store: EntitlementStore = Depends(get_store),
):
    uid = decoded_token["uid"]
    correlation_id = build_correlation_id(request)
    try:
        store.delete_user_data(uid)
        delete_auth_user(uid)
    except Exception:
        logger.exception("Account deletion failed uid=%s corr=%s", uid, correlation_id)
        return error_response(
            BillingError(error="Failed to delete account", code="ACCOUNT_DELETE_FAILED"),
            correlationId=correlation_id,
        )
    logger.info("Account deleted uid=%s", uid)
    return SuccessResponse(success=True)
