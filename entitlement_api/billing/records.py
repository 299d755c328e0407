"""Persisted entitlement shape (fields of users/{uid})."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel

from .timestamps import to_datetime, to_millis

MembershipStatus = Literal["demo", "trial", "premium", "canceled", "past_due"]

MEMBERSHIP_STATUSES = ("demo", "trial", "premium", "canceled", "past_due")
PREMIUM_STATUSES = ("trial", "premium")

ENTITLEMENT_FIELDS = (
    "membershipStatus",
    "isPremium",
    "productClass",
    "expiresAt",
    "autoRenewing",
    "isLifetime",
    "trialStart",
    "trialEnd",
    "hasUsedTrial",
    "lastValidatedAt",
    "platformAccountToken",
)

_TIMESTAMP_FIELDS = ("expiresAt", "trialStart", "trialEnd", "lastValidatedAt")


def is_premium_status(status: Optional[str]) -> bool:
    return status in PREMIUM_STATUSES


class EntitlementRecord(BaseModel):
    membershipStatus: MembershipStatus = "demo"
    isPremium: bool = False
    productClass: Optional[Literal["monthly", "annual", "lifetime"]] = None
    expiresAt: Optional[datetime] = None
    autoRenewing: bool = False
    isLifetime: bool = False
    trialStart: Optional[datetime] = None
    trialEnd: Optional[datetime] = None
    hasUsedTrial: bool = False
    lastValidatedAt: Optional[datetime] = None
    platformAccountToken: Optional[str] = None

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> "EntitlementRecord":
        """Coerce a raw profile document, tolerating legacy or partial fields."""
        data = data or {}
        values: Dict[str, Any] = {}
        status = data.get("membershipStatus")
        values["membershipStatus"] = status if status in MEMBERSHIP_STATUSES else "demo"
        for name in ("isPremium", "autoRenewing", "isLifetime", "hasUsedTrial"):
            values[name] = bool(data.get(name))
        product_class = data.get("productClass")
        if product_class in ("monthly", "annual", "lifetime"):
            values["productClass"] = product_class
        for name in _TIMESTAMP_FIELDS:
            values[name] = to_datetime(data.get(name))
        token = data.get("platformAccountToken")
        values["platformAccountToken"] = str(token) if token else None
        return cls(**values)

    def merged(self, update: Dict[str, Any]) -> "EntitlementRecord":
        known = {k: v for k, v in update.items() if k in ENTITLEMENT_FIELDS}
        return self.model_copy(update=known)

    def to_response(self) -> Dict[str, Any]:
        """Client payload: timestamps as epoch millis, productId is the product class."""
        return {
            "valid": self.isPremium,
            "membershipStatus": self.membershipStatus,
            "expiryDate": to_millis(self.expiresAt),
            "trialStartDate": to_millis(self.trialStart),
            "trialEndDate": to_millis(self.trialEnd),
            "autoRenewing": self.autoRenewing,
            "productId": self.productClass,
            "hasUsedTrial": self.hasUsedTrial,
            "isLifetime": self.isLifetime,
        }
