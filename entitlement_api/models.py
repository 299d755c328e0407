"""Pydantic models for the entitlement API.

Response field names match what the mobile app already reads from the
validatePurchase callable, so the client needs no mapping layer.
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ValidatePurchaseRequest(BaseModel):
    """Client purchase to validate. receipt is iOS only, purchaseToken Android only.

    Every field is optional here; validate_purchase rejects incomplete input
    with a structured 400.
    """
    platform: Optional[str] = Field(default=None, description="ios or android")
    productId: Optional[str] = Field(default=None, description="Store product identifier")
    receipt: Optional[str] = Field(default=None, description="Base64 App Store receipt")
    purchaseToken: Optional[str] = Field(default=None, description="Google Play purchase token")


class StripeCheckoutRequest(BaseModel):
    plan: Literal["monthly", "annual"]
    trial: bool = False


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class ValidatePurchaseResponse(BaseModel):
    valid: bool
    membershipStatus: Literal["demo", "trial", "premium", "canceled", "past_due"]
    expiryDate: Optional[int] = Field(default=None, description="Epoch millis")
    trialStartDate: Optional[int] = Field(default=None, description="Epoch millis")
    trialEndDate: Optional[int] = Field(default=None, description="Epoch millis")
    autoRenewing: bool
    productId: Optional[Literal["monthly", "annual", "lifetime"]] = None
    hasUsedTrial: bool
    isLifetime: bool


class AccountTokenResponse(BaseModel):
    platformAccountToken: str


class StripeUrlResponse(BaseModel):
    url: str


class SuccessResponse(BaseModel):
    success: bool = True


class WebhookReceivedResponse(BaseModel):
    received: bool = True


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    code: str
    category: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
