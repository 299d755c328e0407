"""
Entitlement derivation policies: status, trial fraud, lifetime invariance.
"""
from datetime import datetime, timedelta, timezone

import pytest

from entitlement_api.billing.deriver import derive, derive_status_change
from entitlement_api.billing.errors import TrialAlreadyUsedError
from entitlement_api.billing.records import EntitlementRecord
from entitlement_api.billing.trial_ledger import TrialHistory
from entitlement_api.tests.fakes import make_transaction, make_trial_transaction

NOW = datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("product_id, product_class", [
    ("com.braveheartinnovations.debateai.premium.monthly", "monthly"),
    ("com.braveheartinnovations.debateai.premium.annual", "annual"),
])
def test_unexpired_subscription_is_premium(product_id, product_class):
    result = derive(make_transaction(product_id=product_id, expires_at=NOW + timedelta(days=30)), None, None, now=NOW)
    assert result.update["membershipStatus"] == "premium"
    assert result.update["isPremium"] is True
    assert result.update["productClass"] == product_class
    assert result.ledger_write is False
    assert result.record.isPremium is True


def test_expired_subscription_is_canceled():
    result = derive(make_transaction(expires_at=NOW - timedelta(days=1)), None, None, now=NOW)
    assert result.update["membershipStatus"] == "canceled"
    assert result.update["isPremium"] is False


def test_expired_trial_skips_trial_policy():
    tx = make_trial_transaction(expires_at=NOW - timedelta(days=1), trial_window=(NOW - timedelta(days=8), NOW - timedelta(days=1)))
    result = derive(tx, TrialHistory(used=True, same_account=False), None, now=NOW)
    assert result.update["membershipStatus"] == "canceled"
    assert result.ledger_write is False


def test_first_trial_schedules_ledger_write():
    tx = make_trial_transaction(expires_at=NOW + timedelta(days=7), trial_window=(NOW, NOW + timedelta(days=7)))
    result = derive(tx, TrialHistory(used=False), None, now=NOW)
    assert result.update["membershipStatus"] == "trial"
    assert result.update["isPremium"] is True
    assert result.update["hasUsedTrial"] is True
    assert result.update["trialStart"] == NOW
    assert result.ledger_write is True


def test_same_account_trial_proceeds_without_ledger_write():
    tx = make_trial_transaction(expires_at=NOW + timedelta(days=7), trial_window=(NOW, NOW + timedelta(days=7)))
    result = derive(tx, TrialHistory(used=True, same_account=True), None, now=NOW)
    assert result.update["membershipStatus"] == "trial"
    assert result.ledger_write is False


def test_trial_on_other_account_is_rejected():
    tx = make_trial_transaction(expires_at=NOW + timedelta(days=7), trial_window=(NOW, NOW + timedelta(days=7)))
    with pytest.raises(TrialAlreadyUsedError) as exc:
        derive(tx, TrialHistory(used=True, same_account=False), None, now=NOW)
    assert exc.value.category == "permission-denied"
    assert exc.value.code == "TRIAL_ALREADY_USED"


def test_trial_requires_history_check():
    tx = make_trial_transaction(expires_at=NOW + timedelta(days=7), trial_window=(NOW, NOW + timedelta(days=7)))
    with pytest.raises(ValueError):
        derive(tx, None, None, now=NOW)


def test_lifetime_prior_is_returned_unchanged():
    prior = EntitlementRecord(membershipStatus="premium", isPremium=True, isLifetime=True, productClass="lifetime")
    result = derive(make_transaction(expires_at=NOW - timedelta(days=1)), None, prior, now=NOW)
    assert result.cached is True
    assert result.update == {}
    assert result.record == prior


def test_lifetime_purchase_has_no_expiry():
    tx = make_transaction(product_id="premium_lifetime", is_lifetime=True, expires_at=None, auto_renewing=True)
    result = derive(tx, None, None, now=NOW)
    assert result.update["isLifetime"] is True
    assert result.update["expiresAt"] is None
    assert result.update["autoRenewing"] is False
    assert result.update["productClass"] == "lifetime"
    assert result.update["membershipStatus"] == "premium"


def test_links_are_merged_into_update():
    result = derive(make_transaction(expires_at=NOW + timedelta(days=1)), None, None,
                    links={"platformAccountToken": "tok"}, now=NOW)
    assert result.update["platformAccountToken"] == "tok"
    assert result.record.platformAccountToken == "tok"


@pytest.mark.parametrize("status, premium", [
    ("trial", True),
    ("premium", True),
    ("past_due", False),
    ("canceled", False),
    ("demo", False),
])
def test_status_change_derives_is_premium(status, premium):
    result = derive_status_change(status, EntitlementRecord(), now=NOW)
    assert result.update["isPremium"] is premium
    assert "expiresAt" not in result.update


def test_status_change_keeps_lifetime():
    prior = EntitlementRecord(membershipStatus="premium", isPremium=True, isLifetime=True)
    result = derive_status_change("canceled", prior, now=NOW)
    assert result.cached is True
    assert result.update == {}


def test_status_change_can_clear_expiry():
    result = derive_status_change("canceled", None, expires_at=None, now=NOW)
    assert result.update["expiresAt"] is None
