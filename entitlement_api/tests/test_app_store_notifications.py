"""
POST /api/notifications/app-store. JWS verification is replaced by a verifier
whose decode_* methods return canned payloads; to_transaction is the real one.
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from entitlement_api import dependencies
from entitlement_api.billing.apple_notifications import AppleNotificationVerifier
from entitlement_api.billing.errors import AppleVerificationError
from entitlement_api.billing.identity import hash_email, platform_account_token_for
from entitlement_api.config import Settings
from entitlement_api.main import app
from entitlement_api.tests.fakes import TEST_UID

ENDPOINT = "/api/notifications/app-store"
MONTHLY = "com.braveheartinnovations.debateai.premium.monthly"


def _millis(dt):
    return int(dt.timestamp() * 1000)


class CannedNotificationVerifier(AppleNotificationVerifier):
    def __init__(self, transaction=None, *, notification_error=None, transaction_error=None, has_transaction=True):
        super().__init__([object()], lifetime_product_ids=("premium_lifetime",))
        self.transaction = transaction
        self.notification_error = notification_error
        self.transaction_error = transaction_error
        self.has_transaction = has_transaction

    def decode_notification(self, signed_payload):
        if self.notification_error is not None:
            raise self.notification_error
        data = SimpleNamespace(
            signedTransactionInfo="signed-tx" if self.has_transaction else None,
            signedRenewalInfo=None,
        )
        return SimpleNamespace(rawNotificationType="DID_RENEW", rawSubtype=None, data=data), "production"

    def decode_transaction(self, signed_transaction, verifier):
        if self.transaction_error is not None:
            raise self.transaction_error
        return self.transaction


def _transaction(**overrides):
    now = datetime.now(timezone.utc)
    values = dict(
        productId=MONTHLY,
        rawType="Auto-Renewable Subscription",
        expiresDate=_millis(now + timedelta(days=30)),
        purchaseDate=_millis(now),
        rawOfferDiscountType=None,
        appAccountToken=platform_account_token_for(TEST_UID),
        originalTransactionId="1000",
        transactionId="1001",
        revocationDate=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def use_verifier(client):
    def install(verifier):
        app.dependency_overrides[dependencies.optional_apple_notification_verifier] = lambda: verifier
    return install


@pytest.fixture
def linked_user(fake_db):
    fake_db.put(f"users/{TEST_UID}", {
        "email": "person@example.com",
        "membershipStatus": "demo",
        "platformAccountToken": platform_account_token_for(TEST_UID),
    })


def _raise_runtime_error(*args):
    raise RuntimeError("boom")


def _post(client):
    return client.post(ENDPOINT, json={"signedPayload": "header.payload.signature"})


def test_renewal_updates_linked_user(client, use_verifier, linked_user, fake_db):
    use_verifier(CannedNotificationVerifier(_transaction()))

    response = _post(client)

    assert response.status_code == 200
    assert response.text == "OK"
    user = fake_db.read(f"users/{TEST_UID}")
    assert user["membershipStatus"] == "premium"
    assert user["isPremium"] is True
    assert user["productClass"] == "monthly"


def test_missing_signed_payload(client, use_verifier):
    use_verifier(CannedNotificationVerifier(_transaction()))

    response = client.post(ENDPOINT, json={})

    assert response.status_code == 200
    assert response.text == "Missing signedPayload"


def test_unparseable_body_is_acknowledged(client, use_verifier):
    use_verifier(CannedNotificationVerifier(_transaction()))

    response = client.post(ENDPOINT, content=b"not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 200
    assert response.text == "Missing signedPayload"


def test_unverifiable_notification_changes_nothing(client, use_verifier, linked_user, fake_db):
    before = dict(fake_db.read(f"users/{TEST_UID}"))
    error = AppleVerificationError(error="bad chain", code="APPLE_NOTIFICATION_UNVERIFIED")
    use_verifier(CannedNotificationVerifier(_transaction(), notification_error=error))

    response = _post(client)

    assert response.status_code == 200
    assert response.text == "Verification failed"
    assert fake_db.read(f"users/{TEST_UID}") == before


def test_unverifiable_transaction_changes_nothing(client, use_verifier, linked_user, fake_db):
    before = dict(fake_db.read(f"users/{TEST_UID}"))
    error = AppleVerificationError(error="bad tx", code="APPLE_TRANSACTION_UNVERIFIED")
    use_verifier(CannedNotificationVerifier(_transaction(), transaction_error=error))

    response = _post(client)

    assert response.status_code == 200
    assert response.text == "Transaction verification failed"
    assert fake_db.read(f"users/{TEST_UID}") == before


def test_verifier_unavailable_is_acknowledged(client, use_verifier):
    use_verifier(None)

    response = _post(client)

    assert response.status_code == 200
    assert response.text == "Verification unavailable"


def test_notification_without_transaction(client, use_verifier):
    use_verifier(CannedNotificationVerifier(has_transaction=False))

    response = _post(client)

    assert response.text == "OK - no transaction info"


def test_transaction_without_account_token(client, use_verifier, linked_user):
    use_verifier(CannedNotificationVerifier(_transaction(appAccountToken=None)))

    response = _post(client)

    assert response.status_code == 200
    assert response.text == "OK - no app account token"


def test_unknown_account_token(client, use_verifier, linked_user):
    use_verifier(CannedNotificationVerifier(_transaction(appAccountToken="00000000-0000-4000-8000-000000000000")))

    response = _post(client)

    assert response.status_code == 200
    assert response.text == "OK - user not found"


def test_revocation_cancels(client, use_verifier, linked_user, fake_db):
    fake_db.docs[("users", TEST_UID)].update({"membershipStatus": "premium", "isPremium": True})
    use_verifier(CannedNotificationVerifier(_transaction(revocationDate=_millis(datetime.now(timezone.utc)))))

    response = _post(client)

    assert response.text == "OK"
    user = fake_db.read(f"users/{TEST_UID}")
    assert user["membershipStatus"] == "canceled"
    assert user["isPremium"] is False
    assert user["autoRenewing"] is False


def test_expired_transaction_cancels(client, use_verifier, linked_user, fake_db):
    expired = _millis(datetime.now(timezone.utc) - timedelta(days=1))
    use_verifier(CannedNotificationVerifier(_transaction(expiresDate=expired)))

    response = _post(client)

    assert response.text == "OK"
    assert fake_db.read(f"users/{TEST_UID}")["membershipStatus"] == "canceled"


def test_transaction_without_expiry_is_skipped(client, use_verifier, linked_user, fake_db):
    use_verifier(CannedNotificationVerifier(_transaction(expiresDate=None)))

    response = _post(client)

    assert response.text == "OK - no expiry date"
    assert fake_db.read(f"users/{TEST_UID}")["membershipStatus"] == "demo"


def test_trial_for_reused_email_is_not_granted(client, use_verifier, linked_user, fake_db):
    fake_db.put("trialHistory/old-user", {"uid": "old-user", "emailHash": hash_email("person@example.com")})
    use_verifier(CannedNotificationVerifier(_transaction(rawOfferDiscountType="FREE_TRIAL")))

    response = _post(client)

    assert response.status_code == 200
    assert response.text == "OK - trial already used"
    assert fake_db.read(f"users/{TEST_UID}")["membershipStatus"] == "demo"


def test_first_trial_from_notification_records_ledger(client, use_verifier, linked_user, fake_db):
    use_verifier(CannedNotificationVerifier(_transaction(rawOfferDiscountType="FREE_TRIAL")))

    response = _post(client)

    assert response.text == "OK"
    assert fake_db.read(f"users/{TEST_UID}")["membershipStatus"] == "trial"
    assert fake_db.read(f"trialHistory/{TEST_UID}")["emailHash"] == hash_email("person@example.com")


def test_lifetime_user_is_not_downgraded(client, use_verifier, fake_db):
    lifetime = {
        "membershipStatus": "premium",
        "isPremium": True,
        "isLifetime": True,
        "platformAccountToken": platform_account_token_for(TEST_UID),
    }
    fake_db.put(f"users/{TEST_UID}", lifetime)
    expired = _millis(datetime.now(timezone.utc) - timedelta(days=1))
    use_verifier(CannedNotificationVerifier(_transaction(expiresDate=expired)))

    response = _post(client)

    assert response.text == "OK"
    assert fake_db.read(f"users/{TEST_UID}") == lifetime


def test_processing_exception_is_still_acknowledged(client, use_verifier, linked_user):
    verifier = CannedNotificationVerifier(_transaction())
    verifier.decode_renewal_info = _raise_runtime_error
    use_verifier(verifier)

    response = _post(client)

    assert response.status_code == 200
    assert response.text == "Error logged"


def test_verifier_without_root_certificates_warns(caplog):
    with patch("entitlement_api.billing.apple_notifications.SignedDataVerifier") as signed_data_verifier, \
            caplog.at_level("WARNING", logger="entitlements.apple_notifications"):
        verifier = AppleNotificationVerifier.from_settings(Settings())

    assert "APPLE_ROOT_CERT_PATHS not set" in caplog.text
    assert len(verifier.verifiers) == 1
    assert signed_data_verifier.call_args.kwargs["root_certificates"] == []
