"""Stripe subscription lifecycle: webhook event handlers and Checkout glue.

Stripe-side state lives in users/{uid}/billing/subscription; the resulting
membership status is mirrored onto the profile through the deriver so the
lifetime policy applies to Stripe users too.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe
from google.cloud import firestore

from ..config import Settings
from .deriver import derive_status_change
from .errors import BillingError, ConfigurationError, PurchaseInputError
from .products import STRIPE_PLANS
from .store import EntitlementStore
from .stripe_events import (
    billing_status_for,
    current_period_end,
    membership_status_for,
    retrieve_subscription,
)
from .timestamps import from_seconds
from .trial_ledger import check_trial_history, record_trial_usage

logger = logging.getLogger("entitlements.stripe")

UID_METADATA_KEY = "firebaseUID"


def _metadata_uid(obj: Dict[str, Any]) -> Optional[str]:
    uid = (obj.get("metadata") or {}).get(UID_METADATA_KEY)
    return str(uid) if uid else None


def _mirror_membership(
    store: EntitlementStore,
    uid: str,
    billing_status: str,
    *,
    plan: Optional[str] = None,
    period_end: Optional[int] = None,
    auto_renewing: Optional[bool] = None,
) -> None:
    kwargs: Dict[str, Any] = {}
    if period_end is not None:
        kwargs["expires_at"] = from_seconds(period_end)
    derivation = derive_status_change(
        membership_status_for(billing_status),
        store.get_entitlement(uid),
        auto_renewing=auto_renewing,
        product_class=plan if plan in STRIPE_PLANS else None,
        has_used_trial=billing_status == "trialing",
        **kwargs,
    )
    if derivation.cached:
        logger.info("lifetime entitlement unchanged by Stripe status=%s uid=%s", billing_status, uid)
        return
    store.merge_entitlement(uid, derivation.update)


def _subscription_fields(subscription: Dict[str, Any]) -> Dict[str, Any]:
    period_end = current_period_end(subscription)
    canceled_at = None
    if subscription.get("cancel_at_period_end") or subscription.get("status") == "canceled":
        canceled_at = from_seconds(subscription.get("canceled_at")) or firestore.SERVER_TIMESTAMP
    return {
        "status": billing_status_for(subscription.get("status")),
        "currentPeriodEnd": from_seconds(period_end),
        "trialEndsAt": from_seconds(subscription.get("trial_end")),
        "canceledAt": canceled_at,
    }


def _record_stripe_trial(store: EntitlementStore, uid: str, settings: Settings) -> None:
    if store.get_trial_ledger_entry(uid) is None:
        record_trial_usage(store, uid, store.get_user_email(uid), settings.trial_ledger_email_salt)


def handle_checkout_completed(store: EntitlementStore, session: Dict[str, Any], settings: Settings) -> None:
    uid = _metadata_uid(session)
    subscription_id = session.get("subscription")
    if not uid or not subscription_id:
        logger.info("checkout.session.completed without uid or subscription; ignoring")
        return
    plan = (session.get("metadata") or {}).get("plan") or "monthly"

    subscription = retrieve_subscription(str(subscription_id), api_key=settings.stripe_secret_key)
    fields = _subscription_fields(subscription)
    billing: Dict[str, Any] = {
        "stripeCustomerId": session.get("customer"),
        "stripeSubscriptionId": subscription.get("id"),
        "plan": plan,
        "createdAt": firestore.SERVER_TIMESTAMP,
        **fields,
    }
    if fields["status"] == "trialing":
        billing["hasUsedTrial"] = True
    store.merge_billing(uid, billing)
    _mirror_membership(
        store,
        uid,
        fields["status"],
        plan=plan,
        period_end=current_period_end(subscription),
        auto_renewing=not subscription.get("cancel_at_period_end"),
    )
    if fields["status"] == "trialing":
        _record_stripe_trial(store, uid, settings)
    logger.info("Stripe checkout completed uid=%s status=%s plan=%s", uid, fields["status"], plan)


def handle_subscription_updated(store: EntitlementStore, subscription: Dict[str, Any], settings: Settings) -> None:
    uid = _metadata_uid(subscription) or store.find_user_by_stripe_customer_id(str(subscription.get("customer") or ""))
    if not uid:
        logger.warning("Stripe subscription %s has no resolvable user", subscription.get("id"))
        return
    fields = _subscription_fields(subscription)
    store.merge_billing(uid, fields)
    plan = (subscription.get("metadata") or {}).get("plan")
    _mirror_membership(
        store,
        uid,
        fields["status"],
        plan=plan,
        period_end=current_period_end(subscription),
        auto_renewing=not subscription.get("cancel_at_period_end"),
    )
    if fields["status"] == "trialing":
        _record_stripe_trial(store, uid, settings)
    logger.info("Stripe subscription updated uid=%s status=%s", uid, fields["status"])


def handle_subscription_deleted(store: EntitlementStore, subscription: Dict[str, Any], settings: Settings) -> None:
    uid = store.find_user_by_stripe_customer_id(str(subscription.get("customer") or "")) or _metadata_uid(subscription)
    if not uid:
        logger.warning("Stripe subscription %s deleted for unknown customer", subscription.get("id"))
        return
    store.merge_billing(uid, {"status": "canceled", "canceledAt": firestore.SERVER_TIMESTAMP})
    _mirror_membership(store, uid, "canceled", auto_renewing=False)
    logger.info("Stripe subscription deleted uid=%s", uid)


def handle_payment_failed(store: EntitlementStore, invoice: Dict[str, Any], settings: Settings) -> None:
    uid = store.find_user_by_stripe_customer_id(str(invoice.get("customer") or ""))
    if not uid:
        logger.warning("Stripe invoice %s payment failed for unknown customer", invoice.get("id"))
        return
    store.merge_billing(uid, {"status": "past_due"})
    _mirror_membership(store, uid, "past_due")
    logger.info("Stripe payment failed uid=%s", uid)


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_payment_failed,
}


def process_stripe_event(store: EntitlementStore, event: Dict[str, Any], settings: Settings) -> bool:
    """Dispatch a verified event. Returns False for event types that are ignored."""
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(str(event_type))
    if handler is None:
        logger.debug("Unhandled Stripe event type=%s", event_type)
        return False
    obj = ((event.get("data") or {}).get("object")) or {}
    handler(store, obj, settings)
    return True


# Checkout, portal and cancellation ---------------------------------------


def _require_secret_key(settings: Settings) -> str:
    if not settings.stripe_secret_key:
        raise ConfigurationError(
            status_code=500,
            error="Stripe not configured",
            code="STRIPE_SECRET_KEY_MISSING",
            category="internal",
        )
    return settings.stripe_secret_key


def _stripe_call_failed(action: str, exc: stripe.StripeError) -> BillingError:
    return BillingError(
        status_code=502,
        error=f"Failed to {action}",
        code="STRIPE_API_ERROR",
        details={"reason": getattr(exc, "user_message", None) or str(exc)},
    )


def create_checkout_session(
    store: EntitlementStore,
    *,
    uid: str,
    email: Optional[str],
    plan: str,
    trial: bool,
    settings: Settings,
) -> str:
    api_key = _require_secret_key(settings)
    if plan not in STRIPE_PLANS:
        raise PurchaseInputError(error="Invalid plan", code="STRIPE_PLAN_INVALID", details={"plan": plan})
    price_id = settings.stripe_price_monthly if plan == "monthly" else settings.stripe_price_annual
    if not price_id:
        raise ConfigurationError(
            status_code=500,
            error="Stripe price not configured",
            code="STRIPE_PRICE_MISSING",
            category="internal",
            details={"plan": plan},
        )

    billing = store.get_billing(uid)
    try:
        customer_id = billing.get("stripeCustomerId")
        if not customer_id:
            customer = stripe.Customer.create(
                email=email or None,
                metadata={UID_METADATA_KEY: uid},
                api_key=api_key,
            )
            customer_id = customer["id"]
            store.merge_billing(uid, {"stripeCustomerId": customer_id})

        params: Dict[str, Any] = {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": f"{settings.stripe_return_base_url}/profile?success=true",
            "cancel_url": f"{settings.stripe_return_base_url}/profile?canceled=true",
            "metadata": {UID_METADATA_KEY: uid, "plan": plan},
            "allow_promotion_codes": True,
        }
        subscription_metadata = {UID_METADATA_KEY: uid, "plan": plan}
        if trial and plan == "monthly" and not billing.get("hasUsedTrial"):
            history = check_trial_history(store, uid, email, settings.trial_ledger_email_salt)
            if not history.used:
                params["subscription_data"] = {
                    "trial_period_days": settings.stripe_trial_days,
                    "metadata": subscription_metadata,
                }
            else:
                logger.info("Stripe checkout trial withheld uid=%s same_account=%s", uid, history.same_account)
        params.setdefault("subscription_data", {"metadata": subscription_metadata})

        session = stripe.checkout.Session.create(api_key=api_key, **params)
    except stripe.StripeError as exc:
        logger.error("Stripe checkout session creation failed uid=%s: %s", uid, exc)
        raise _stripe_call_failed("create checkout session", exc) from exc
    return str(session["url"])


def create_portal_session(store: EntitlementStore, *, uid: str, settings: Settings) -> str:
    api_key = _require_secret_key(settings)
    customer_id = store.get_billing(uid).get("stripeCustomerId")
    if not customer_id:
        raise BillingError(
            error="No subscription found",
            code="STRIPE_CUSTOMER_NOT_FOUND",
            category="failed-precondition",
        )
    try:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{settings.stripe_return_base_url}/profile",
            api_key=api_key,
        )
    except stripe.StripeError as exc:
        logger.error("Stripe portal session creation failed uid=%s: %s", uid, exc)
        raise _stripe_call_failed("open billing portal", exc) from exc
    return str(session["url"])


def cancel_subscription(store: EntitlementStore, *, uid: str, settings: Settings) -> None:
    """Cancel at period end; access continues until the period closes."""
    api_key = _require_secret_key(settings)
    subscription_id = store.get_billing(uid).get("stripeSubscriptionId")
    if not subscription_id:
        raise BillingError(
            error="No subscription found",
            code="STRIPE_SUBSCRIPTION_NOT_FOUND",
            category="failed-precondition",
        )
    try:
        stripe.Subscription.modify(subscription_id, cancel_at_period_end=True, api_key=api_key)
    except stripe.StripeError as exc:
        logger.error("Stripe cancel failed uid=%s: %s", uid, exc)
        raise _stripe_call_failed("cancel subscription", exc) from exc
    store.merge_billing(uid, {"canceledAt": firestore.SERVER_TIMESTAMP})
    logger.info("Stripe subscription set to cancel at period end uid=%s", uid)
