"""Stripe webhook verification and status mapping."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import stripe

from .errors import ConfigurationError, StripeWebhookError

logger = logging.getLogger("entitlements.stripe")

# Stripe subscription.status -> Stripe-side billing status (billing subdocument)
STRIPE_BILLING_STATUS = {
    "trialing": "trialing",
    "active": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "canceled": "canceled",
    "incomplete_expired": "canceled",
}

# Billing status -> membershipStatus mirrored onto the profile
MEMBERSHIP_FOR_BILLING_STATUS = {
    "trialing": "trial",
    "active": "premium",
    "past_due": "past_due",
    "canceled": "canceled",
}

HANDLED_EVENT_TYPES = (
    "checkout.session.completed",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_failed",
)


def billing_status_for(stripe_status: Optional[str]) -> str:
    return STRIPE_BILLING_STATUS.get(str(stripe_status or "").strip(), "free")


def membership_status_for(billing_status: str) -> str:
    return MEMBERSHIP_FOR_BILLING_STATUS.get(billing_status, "demo")


class StripeWebhookVerifier:
    def __init__(self, *, webhook_secret: str, tolerance_sec: int = 300) -> None:
        self.webhook_secret = webhook_secret
        self.tolerance_sec = tolerance_sec

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the Stripe-Signature header over the raw body and parse the event.

        Returns the event as plain dicts so handlers do not depend on the
        StripeObject API of the installed stripe version.
        """
        if not self.webhook_secret:
            raise ConfigurationError(
                status_code=500,
                error="Stripe webhook secret not configured",
                code="STRIPE_WEBHOOK_SECRET_MISSING",
                category="internal",
            )
        if not signature:
            raise StripeWebhookError(error="Missing Stripe-Signature header", code="STRIPE_SIGNATURE_MISSING")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret, tolerance=self.tolerance_sec)
        except stripe.SignatureVerificationError as exc:
            raise StripeWebhookError(
                error="Stripe signature verification failed",
                code="STRIPE_SIGNATURE_INVALID",
                details={"reason": str(exc)},
            ) from exc
        except ValueError as exc:
            raise StripeWebhookError(error="Invalid Stripe payload", code="STRIPE_PAYLOAD_INVALID") from exc
        event = json.loads(payload)
        if not isinstance(event, dict):
            raise StripeWebhookError(error="Invalid Stripe payload", code="STRIPE_PAYLOAD_INVALID")
        return event


def retrieve_subscription(subscription_id: str, *, api_key: str) -> Dict[str, Any]:
    """Fetch a subscription from the Stripe API as a plain dict."""
    if not api_key:
        raise ConfigurationError(
            status_code=500,
            error="Stripe secret key not configured",
            code="STRIPE_SECRET_KEY_MISSING",
            category="internal",
        )
    subscription = stripe.Subscription.retrieve(subscription_id, api_key=api_key)
    return subscription.to_dict()


def current_period_end(subscription: Dict[str, Any]) -> Optional[int]:
    """Epoch seconds of the current period end.

    Newer API versions moved current_period_end onto the subscription items.
    """
    items = ((subscription.get("items") or {}).get("data")) or []
    if items and isinstance(items[0], dict) and items[0].get("current_period_end"):
        return items[0]["current_period_end"]
    return subscription.get("current_period_end")
