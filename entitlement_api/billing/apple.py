"""App Store receipt verification (verifyReceipt).

Production is always tried first. Apple answers 21007 when a sandbox receipt
(TestFlight, review builds) is sent to production; that single status triggers
one retry against the sandbox endpoint.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib import error as url_error
from urllib import request as url_request

from .errors import AppleVerificationError, ConfigurationError
from .timestamps import from_millis, parse_epoch_millis
from .transaction import ValidatedTransaction

logger = logging.getLogger("entitlements.apple")

APPLE_PRODUCTION_URL = "https://buy.itunes.apple.com/verifyReceipt"
APPLE_SANDBOX_URL = "https://sandbox.itunes.apple.com/verifyReceipt"

STATUS_OK = 0
STATUS_SANDBOX_RECEIPT_IN_PRODUCTION = 21007


class AppleReceiptVerifier:
    def __init__(self, *, shared_secret: str, timeout_sec: float = 8.0) -> None:
        self.shared_secret = shared_secret
        self.timeout_sec = timeout_sec

    def _post_json(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        req = url_request.Request(
            url=url,
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            method="POST",
        )
        try:
            with url_request.urlopen(req, timeout=self.timeout_sec) as resp:
                raw = resp.read().decode("utf-8")
        except url_error.HTTPError as http_exc:
            raise AppleVerificationError(
                status_code=502,
                error="Apple receipt verification request failed",
                code="APPLE_API_HTTP_ERROR",
                details={"httpStatus": http_exc.code},
            ) from http_exc
        except url_error.URLError as url_exc:
            raise AppleVerificationError(
                status_code=502,
                error="Unable to reach Apple receipt verification",
                code="APPLE_API_UNREACHABLE",
                details={"reason": str(url_exc.reason)},
            ) from url_exc
        try:
            parsed = json.loads(raw) if raw else {}
        except ValueError as exc:
            raise AppleVerificationError(
                status_code=502,
                error="Invalid response from Apple receipt verification",
                code="APPLE_INVALID_RESPONSE",
            ) from exc
        if not isinstance(parsed, dict):
            raise AppleVerificationError(
                status_code=502,
                error="Invalid response from Apple receipt verification",
                code="APPLE_INVALID_RESPONSE",
            )
        return parsed

    def verify_receipt(self, receipt: str) -> Dict[str, Any]:
        """Validate a base64 receipt and return Apple's decoded response."""
        if not self.shared_secret:
            raise ConfigurationError(
                error="Apple shared secret not configured",
                code="APPLE_SHARED_SECRET_MISSING",
            )
        body = {
            "receipt-data": receipt,
            "password": self.shared_secret,
            "exclude-old-transactions": True,
        }
        data = self._post_json(APPLE_PRODUCTION_URL, body)
        environment = "Production"
        if data.get("status") == STATUS_SANDBOX_RECEIPT_IN_PRODUCTION:
            logger.info("Apple receipt is from sandbox; retrying against sandbox endpoint")
            data = self._post_json(APPLE_SANDBOX_URL, body)
            environment = "Sandbox"
        status = data.get("status")
        if status != STATUS_OK:
            raise AppleVerificationError(
                error="Apple receipt is invalid",
                code="APPLE_RECEIPT_INVALID",
                category="invalid-argument",
                details={"appleStatus": status, "environment": environment},
            )
        data.setdefault("environment", environment)
        return data

    def verify_subscription(self, receipt: str, product_id: str) -> ValidatedTransaction:
        data = self.verify_receipt(receipt)
        items: List[Dict[str, Any]] = [
            it
            for it in (data.get("latest_receipt_info") or [])
            if isinstance(it, dict) and it.get("product_id") == product_id
        ]
        if not items:
            raise AppleVerificationError(
                error="No matching subscription found in receipt",
                code="APPLE_SUBSCRIPTION_NOT_FOUND",
                category="not-found",
                details={"productId": product_id},
            )
        # Equal expiries resolve to the later entry in the receipt.
        target = max(reversed(items), key=lambda it: parse_epoch_millis(it.get("expires_date_ms")) or 0)
        expires_at = from_millis(target.get("expires_date_ms"))
        in_trial = (
            str(target.get("is_trial_period")) == "true"
            or str(target.get("is_in_intro_offer_period")) == "true"
        )
        trial_window = None
        if in_trial:
            trial_start = from_millis(target.get("purchase_date_ms"))
            if trial_start and expires_at:
                trial_window = (trial_start, expires_at)

        pending = _find_pending_renewal(data.get("pending_renewal_info"), product_id)
        auto_renewing = str(pending.get("auto_renew_status")) == "1" if pending is not None else True

        return ValidatedTransaction(
            platform="ios",
            product_id=product_id,
            is_lifetime=False,
            expires_at=expires_at,
            in_trial=in_trial,
            trial_window=trial_window,
            auto_renewing=auto_renewing,
            raw_status=data.get("status"),
            meta={
                "environment": data.get("environment"),
                "originalTransactionId": target.get("original_transaction_id"),
                "transactionId": target.get("transaction_id"),
            },
        )

    def verify_lifetime(self, receipt: str, product_id: str) -> ValidatedTransaction:
        data = self.verify_receipt(receipt)
        in_app = (data.get("receipt") or {}).get("in_app") or []
        purchase = next(
            (item for item in in_app if isinstance(item, dict) and item.get("product_id") == product_id),
            None,
        )
        if purchase is None:
            raise AppleVerificationError(
                error="No matching lifetime purchase found in receipt",
                code="APPLE_LIFETIME_NOT_FOUND",
                category="not-found",
                details={"productId": product_id},
            )
        return ValidatedTransaction(
            platform="ios",
            product_id=product_id,
            is_lifetime=True,
            expires_at=None,
            auto_renewing=False,
            raw_status=data.get("status"),
            meta={
                "environment": data.get("environment"),
                "originalTransactionId": purchase.get("original_transaction_id"),
                "transactionId": purchase.get("transaction_id"),
            },
        )


def _find_pending_renewal(pending_info: Any, product_id: str) -> Optional[Dict[str, Any]]:
    for entry in pending_info or []:
        if isinstance(entry, dict) and entry.get("product_id") == product_id:
            return entry
    return None
