"""
Pytest configuration and shared fixtures.

Firestore, Firebase Auth and the store verifiers are replaced through
app.dependency_overrides; see fakes.py.
"""
import os
import tempfile

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SECURITY_LOG_DIR", tempfile.mkdtemp(prefix="entitlements-security-"))

import pytest
from fastapi.testclient import TestClient

from entitlement_api.billing.store import EntitlementStore
from entitlement_api.billing.stripe_events import StripeWebhookVerifier
from entitlement_api.config import Settings
from entitlement_api import dependencies
from entitlement_api.main import app
from entitlement_api.tests.fakes import (
    STRIPE_WEBHOOK_SECRET,
    TEST_EMAIL,
    TEST_UID,
    FakeFirestore,
    FakeStoreVerifier,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings():
    return Settings(
        apple_shared_secret="apple-secret",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
        stripe_price_monthly="price_monthly",
        stripe_price_annual="price_annual",
        trial_ledger_email_salt="",
    )


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def store(fake_db):
    return EntitlementStore(fake_db)


@pytest.fixture
def apple_verifier():
    return FakeStoreVerifier()


@pytest.fixture
def google_verifier():
    return FakeStoreVerifier()


@pytest.fixture
def auth_claims():
    return {"uid": TEST_UID, "email": TEST_EMAIL}


@pytest.fixture
def client(fake_db, settings, apple_verifier, google_verifier, auth_claims):
    """TestClient with Firebase, Firestore and the store verifiers replaced."""
    app.dependency_overrides[dependencies.verify_firebase_token] = lambda: auth_claims
    app.dependency_overrides[dependencies.get_firestore] = lambda: fake_db
    app.dependency_overrides[dependencies.get_app_settings] = lambda: settings
    app.dependency_overrides[dependencies.get_apple_receipt_verifier] = lambda: apple_verifier
    app.dependency_overrides[dependencies.get_google_play_verifier] = lambda: google_verifier
    app.dependency_overrides[dependencies.get_stripe_webhook_verifier] = lambda: StripeWebhookVerifier(
        webhook_secret=STRIPE_WEBHOOK_SECRET
    )
    yield TestClient(app)
    app.dependency_overrides.clear()
