"""
Stripe Checkout, portal and cancel endpoints. Stripe API calls are patched.
"""
from unittest.mock import patch

import stripe

from entitlement_api.billing.identity import hash_email
from entitlement_api.tests.fakes import TEST_EMAIL, TEST_UID

CHECKOUT = "/api/billing/stripe/checkout"


def _session_kwargs(create):
    return create.call_args.kwargs


def test_checkout_creates_customer_and_session(client, fake_db):
    with patch("stripe.Customer.create", return_value={"id": "cus_new"}) as create_customer, \
            patch("stripe.checkout.Session.create", return_value={"url": "https://checkout.test/s"}) as create:
        response = client.post(CHECKOUT, json={"plan": "annual"})

    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.test/s"}
    assert create_customer.call_args.kwargs["metadata"] == {"firebaseUID": TEST_UID}
    assert fake_db.read(f"users/{TEST_UID}/billing/subscription")["stripeCustomerId"] == "cus_new"
    kwargs = _session_kwargs(create)
    assert kwargs["customer"] == "cus_new"
    assert kwargs["line_items"] == [{"price": "price_annual", "quantity": 1}]
    assert kwargs["metadata"] == {"firebaseUID": TEST_UID, "plan": "annual"}
    assert "trial_period_days" not in kwargs["subscription_data"]


def test_checkout_offers_trial_to_new_user(client, fake_db):
    fake_db.put(f"users/{TEST_UID}/billing/subscription", {"stripeCustomerId": "cus_1"})
    with patch("stripe.checkout.Session.create", return_value={"url": "https://checkout.test/s"}) as create:
        response = client.post(CHECKOUT, json={"plan": "monthly", "trial": True})

    assert response.status_code == 200
    assert _session_kwargs(create)["subscription_data"]["trial_period_days"] == 7


def test_checkout_withholds_trial_when_email_used(client, fake_db):
    fake_db.put(f"users/{TEST_UID}/billing/subscription", {"stripeCustomerId": "cus_1"})
    fake_db.put("trialHistory/old-user", {"uid": "old-user", "emailHash": hash_email(TEST_EMAIL)})
    with patch("stripe.checkout.Session.create", return_value={"url": "https://checkout.test/s"}) as create:
        response = client.post(CHECKOUT, json={"plan": "monthly", "trial": True})

    assert response.status_code == 200
    assert "trial_period_days" not in _session_kwargs(create)["subscription_data"]


def test_checkout_rejects_unknown_plan(client):
    response = client.post(CHECKOUT, json={"plan": "weekly"})

    assert response.status_code == 422


def test_checkout_stripe_failure_is_bad_gateway(client, fake_db):
    fake_db.put(f"users/{TEST_UID}/billing/subscription", {"stripeCustomerId": "cus_1"})
    with patch("stripe.checkout.Session.create", side_effect=stripe.StripeError("card network down")):
        response = client.post(CHECKOUT, json={"plan": "monthly"})

    assert response.status_code == 502
    assert response.json()["code"] == "STRIPE_API_ERROR"


def test_portal_requires_customer(client):
    response = client.post("/api/billing/stripe/portal")

    assert response.status_code == 412
    assert response.json()["code"] == "STRIPE_CUSTOMER_NOT_FOUND"


def test_portal_returns_url(client, fake_db):
    fake_db.put(f"users/{TEST_UID}/billing/subscription", {"stripeCustomerId": "cus_1"})
    with patch("stripe.billing_portal.Session.create", return_value={"url": "https://portal.test/p"}) as create:
        response = client.post("/api/billing/stripe/portal")

    assert response.status_code == 200
    assert response.json() == {"url": "https://portal.test/p"}
    assert create.call_args.kwargs["customer"] == "cus_1"


def test_cancel_sets_cancel_at_period_end(client, fake_db):
    fake_db.put(f"users/{TEST_UID}/billing/subscription", {"stripeCustomerId": "cus_1", "stripeSubscriptionId": "sub_1"})
    with patch("stripe.Subscription.modify") as modify:
        response = client.post("/api/billing/stripe/cancel")

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert modify.call_args.args == ("sub_1",)
    assert modify.call_args.kwargs["cancel_at_period_end"] is True
    assert fake_db.read(f"users/{TEST_UID}/billing/subscription")["canceledAt"] is not None


def test_cancel_without_subscription(client):
    response = client.post("/api/billing/stripe/cancel")

    assert response.status_code == 412
    assert response.json()["code"] == "STRIPE_SUBSCRIPTION_NOT_FOUND"
