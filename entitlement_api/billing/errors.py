"""Billing error hierarchy.

Every failure raised by the verifiers, the trial ledger and the deriver is a
BillingError carrying the HTTP status, a machine-readable code and the
client-facing category (the Firebase callable vocabulary the mobile app
already understands).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

CATEGORY_STATUS = {
    "unauthenticated": 401,
    "invalid-argument": 400,
    "failed-precondition": 412,
    "not-found": 404,
    "permission-denied": 403,
    "internal": 500,
}


class BillingError(Exception):
    default_category = "internal"

    def __init__(
        self,
        *,
        error: str,
        code: str,
        category: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(error)
        self.error = error
        self.code = code
        self.category = category or self.default_category
        self.status_code = status_code or CATEGORY_STATUS.get(self.category, 500)
        self.details = details or {}

    def to_payload(self, **extra: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error, "code": self.code, "category": self.category}
        details = {**self.details, **extra}
        if details:
            payload["details"] = details
        return payload


class PurchaseInputError(BillingError):
    """Caller sent an incomplete or malformed purchase; no platform was contacted."""

    default_category = "invalid-argument"


class ConfigurationError(BillingError):
    default_category = "failed-precondition"


class AppleVerificationError(BillingError):
    pass


class GoogleVerificationError(BillingError):
    pass


class StripeWebhookError(BillingError):
    default_category = "invalid-argument"


class TrialAlreadyUsedError(BillingError):
    default_category = "permission-denied"

    def __init__(self, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            error="A free trial has already been used with this email address",
            code="TRIAL_ALREADY_USED",
            details=details,
        )


class AuthenticationError(BillingError):
    default_category = "unauthenticated"
