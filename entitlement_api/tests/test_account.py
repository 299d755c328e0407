"""
DELETE /api/account and the health endpoints.
"""
from unittest.mock import patch

from entitlement_api.tests.fakes import TEST_UID


def test_delete_account_removes_profile_but_keeps_trial_history(client, fake_db):
    fake_db.put(f"users/{TEST_UID}", {"membershipStatus": "trial", "hasUsedTrial": True})
    fake_db.put(f"users/{TEST_UID}/billing/subscription", {"stripeCustomerId": "cus_1"})
    fake_db.put(f"users/{TEST_UID}/debates/d1", {"topic": "x"})
    fake_db.put(f"trialHistory/{TEST_UID}", {"uid": TEST_UID, "emailHash": "abc"})
    fake_db.put("users/someone-else", {"membershipStatus": "premium"})

    with patch("entitlement_api.routers.account.delete_auth_user") as delete_auth_user:
        response = client.delete("/api/account")

    assert response.status_code == 200
    assert response.json() == {"success": True}
    delete_auth_user.assert_called_once_with(TEST_UID)
    assert fake_db.read(f"users/{TEST_UID}") is None
    assert fake_db.read(f"users/{TEST_UID}/billing/subscription") is None
    assert fake_db.read(f"users/{TEST_UID}/debates/d1") is None
    assert fake_db.read(f"trialHistory/{TEST_UID}") == {"uid": TEST_UID, "emailHash": "abc"}
    assert fake_db.read("users/someone-else") is not None


def test_delete_account_failure_is_internal(client, fake_db):
    with patch("entitlement_api.routers.account.delete_auth_user", side_effect=RuntimeError("auth down")):
        response = client.delete("/api/account")

    assert response.status_code == 500
    assert response.json()["code"] == "ACCOUNT_DELETE_FAILED"


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_security_headers(client):
    response = client.get("/")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
