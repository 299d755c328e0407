"""Google Play Developer API verification.

Trial detection reads the v1 subscription ``paymentState`` (2 = free trial).
The v2 offer tags describe the offer a purchase came from, not whether the
purchaser is in the trial right now, so they are consulted only when v1 omits
paymentState.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict
from urllib import error as url_error
from urllib import parse as url_parse
from urllib import request as url_request

import google.auth
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request as GoogleAuthRequest

from .errors import GoogleVerificationError
from .timestamps import from_millis, now_utc
from .transaction import ValidatedTransaction

logger = logging.getLogger("entitlements.google_play")

ANDROID_PUBLISHER_SCOPE = "https://www.googleapis.com/auth/androidpublisher"
ANDROID_PUBLISHER_BASE_URL = "https://androidpublisher.googleapis.com/androidpublisher/v3"

PAYMENT_STATE_PENDING = 0
PAYMENT_STATE_RECEIVED = 1
PAYMENT_STATE_FREE_TRIAL = 2
PAYMENT_STATE_DEFERRED = 3

PURCHASE_STATE_PURCHASED = 0


class GooglePlayVerifier:
    def __init__(self, *, package_name: str, timeout_sec: float = 8.0, credentials: Any = None) -> None:
        self.package_name = package_name
        self.timeout_sec = timeout_sec
        self._credentials = credentials

    def _access_token(self) -> str:
        try:
            if self._credentials is None:
                self._credentials, _ = google.auth.default(scopes=[ANDROID_PUBLISHER_SCOPE])
            if not self._credentials.valid:
                self._credentials.refresh(GoogleAuthRequest())
        except google_auth_exceptions.GoogleAuthError as exc:
            raise GoogleVerificationError(
                error="Google verification credentials are unavailable",
                code="GOOGLE_VERIFICATION_CREDENTIALS_MISSING",
                category="failed-precondition",
                details={"reason": str(exc)},
            ) from exc
        token = str(getattr(self._credentials, "token", "") or "").strip()
        if not token:
            raise GoogleVerificationError(
                status_code=502,
                error="Failed to obtain Google access token",
                code="GOOGLE_ACCESS_TOKEN_EMPTY",
            )
        return token

    def _request_json(self, path: str) -> Dict[str, Any]:
        req = url_request.Request(
            url=f"{ANDROID_PUBLISHER_BASE_URL}/{path}",
            headers={
                "Authorization": f"Bearer {self._access_token()}",
                "Accept": "application/json",
            },
        )
        try:
            with url_request.urlopen(req, timeout=self.timeout_sec) as resp:
                body = resp.read().decode("utf-8")
        except url_error.HTTPError as http_exc:
            parsed_error: Dict[str, Any] = {}
            try:
                parsed = json.loads(http_exc.read().decode("utf-8") or "{}")
                if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
                    parsed_error = parsed["error"]
            except (OSError, ValueError):
                parsed_error = {}
            if http_exc.code in (400, 404, 410):
                category, status_code = "invalid-argument", 400
            else:
                category, status_code = "internal", 502
            raise GoogleVerificationError(
                status_code=status_code,
                error="Google Play verification API request failed",
                code="GOOGLE_API_HTTP_ERROR",
                category=category,
                details={
                    "httpStatus": http_exc.code,
                    "googleStatus": parsed_error.get("status"),
                    "googleMessage": parsed_error.get("message"),
                },
            ) from http_exc
        except url_error.URLError as url_exc:
            raise GoogleVerificationError(
                status_code=502,
                error="Unable to reach Google Play verification API",
                code="GOOGLE_API_UNREACHABLE",
                details={"reason": str(url_exc.reason)},
            ) from url_exc
        try:
            parsed = json.loads(body) if body else {}
        except ValueError as exc:
            raise GoogleVerificationError(
                status_code=502,
                error="Invalid response from Google Play verification API",
                code="GOOGLE_INVALID_RESPONSE",
            ) from exc
        if not isinstance(parsed, dict):
            raise GoogleVerificationError(
                status_code=502,
                error="Invalid response from Google Play verification API",
                code="GOOGLE_INVALID_RESPONSE",
            )
        return parsed

    def _app_path(self) -> str:
        return f"applications/{url_parse.quote(self.package_name, safe='')}/purchases"

    def get_subscription(self, subscription_id: str, purchase_token: str) -> Dict[str, Any]:
        """purchases.subscriptions.get (v1)."""
        return self._request_json(
            f"{self._app_path()}/subscriptions/{url_parse.quote(subscription_id, safe='')}"
            f"/tokens/{url_parse.quote(purchase_token, safe='')}"
        )

    def get_subscription_v2(self, purchase_token: str) -> Dict[str, Any]:
        """purchases.subscriptionsv2.get."""
        return self._request_json(
            f"{self._app_path()}/subscriptionsv2/tokens/{url_parse.quote(purchase_token, safe='')}"
        )

    def get_product(self, product_id: str, purchase_token: str) -> Dict[str, Any]:
        """purchases.products.get (one-time products)."""
        return self._request_json(
            f"{self._app_path()}/products/{url_parse.quote(product_id, safe='')}"
            f"/tokens/{url_parse.quote(purchase_token, safe='')}"
        )

    def _v2_offer_trial(self, purchase_token: str) -> bool:
        try:
            v2 = self.get_subscription_v2(purchase_token)
        except GoogleVerificationError as exc:
            logger.warning("subscriptionsv2 trial lookup failed code=%s", exc.code)
            return False
        for line_item in v2.get("lineItems") or []:
            offer = (line_item or {}).get("offerDetails") or {}
            if "trial" in (offer.get("offerTags") or []):
                return True
        return False

    def verify_subscription(self, product_id: str, purchase_token: str) -> ValidatedTransaction:
        data = self.get_subscription(product_id, purchase_token)
        expires_at = from_millis(data.get("expiryTimeMillis"))
        if expires_at is None:
            raise GoogleVerificationError(
                error="Invalid Android subscription state",
                code="GOOGLE_SUBSCRIPTION_INVALID",
                category="invalid-argument",
                details={"productId": product_id},
            )

        payment_state = data.get("paymentState")
        if payment_state is not None:
            in_trial = int(payment_state) == PAYMENT_STATE_FREE_TRIAL
        elif expires_at > now_utc():
            in_trial = self._v2_offer_trial(purchase_token)
        else:
            in_trial = False

        trial_window = None
        if in_trial:
            trial_window = (from_millis(data.get("startTimeMillis")) or now_utc(), expires_at)

        return ValidatedTransaction(
            platform="android",
            product_id=product_id,
            is_lifetime=False,
            expires_at=expires_at,
            in_trial=in_trial,
            trial_window=trial_window,
            auto_renewing=bool(data.get("autoRenewing")),
            raw_status=payment_state,
            meta={"purchaseToken": purchase_token, "orderId": data.get("orderId")},
        )

    def verify_lifetime(self, product_id: str, purchase_token: str) -> ValidatedTransaction:
        data = self.get_product(product_id, purchase_token)
        purchase_state = data.get("purchaseState")
        if purchase_state is None or int(purchase_state) != PURCHASE_STATE_PURCHASED:
            raise GoogleVerificationError(
                error="Invalid Android product purchase state",
                code="GOOGLE_PRODUCT_NOT_PURCHASED",
                category="invalid-argument",
                details={"productId": product_id, "purchaseState": purchase_state},
            )
        return ValidatedTransaction(
            platform="android",
            product_id=product_id,
            is_lifetime=True,
            expires_at=None,
            auto_renewing=False,
            raw_status=purchase_state,
            meta={"purchaseToken": purchase_token, "orderId": data.get("orderId")},
        )
