"""Platform-pushed subscription notifications (App Store and Google Play).

Both platforms redeliver on non-2xx, so every outcome here is reduced to a
short acknowledgment string; the routers always answer 2xx.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, Optional

from ..config import Settings
from .deriver import Derivation, derive, derive_status_change
from .errors import BillingError, TrialAlreadyUsedError
from .store import EntitlementStore
from .timestamps import now_utc
from .transaction import ValidatedTransaction
from .trial_ledger import check_trial_history, record_trial_usage

logger = logging.getLogger("entitlements.notifications")

# Google Play subscriptionNotification.notificationType
PLAY_SUBSCRIPTION_RECOVERED = 1
PLAY_SUBSCRIPTION_RENEWED = 2
PLAY_SUBSCRIPTION_CANCELED = 3
PLAY_SUBSCRIPTION_PURCHASED = 4
PLAY_SUBSCRIPTION_ON_HOLD = 5
PLAY_SUBSCRIPTION_IN_GRACE_PERIOD = 6
PLAY_SUBSCRIPTION_REVOKED = 12
PLAY_SUBSCRIPTION_EXPIRED = 13

PLAY_PAST_DUE_TYPES = (PLAY_SUBSCRIPTION_ON_HOLD, PLAY_SUBSCRIPTION_IN_GRACE_PERIOD)


def _apply(
    store: EntitlementStore,
    uid: str,
    validated: ValidatedTransaction,
    settings: Settings,
    links: Optional[Dict[str, Any]] = None,
) -> Derivation:
    """Derive and persist a verified transaction for a resolved user."""
    prior = store.get_entitlement(uid)
    email = None
    trial_history = None
    if validated.in_trial and not validated.is_expired():
        email = store.get_user_email(uid)
        trial_history = check_trial_history(store, uid, email, settings.trial_ledger_email_salt)
    derivation = derive(validated, trial_history, prior, links=links)
    store.merge_entitlement(uid, derivation.update)
    if derivation.ledger_write:
        record_trial_usage(store, uid, email, settings.trial_ledger_email_salt)
    return derivation


def process_app_store_notification(
    store: EntitlementStore,
    verifier: Any,
    signed_payload: Optional[str],
    settings: Settings,
) -> str:
    if not signed_payload:
        logger.warning("App Store notification without signedPayload")
        return "Missing signedPayload"
    if verifier is None:
        logger.error("App Store notification received but no verifier is configured")
        return "Verification unavailable"

    try:
        payload, env_verifier = verifier.decode_notification(signed_payload)
    except BillingError as exc:
        logger.error("App Store notification verification failed code=%s details=%s", exc.code, exc.details)
        return "Verification failed"

    notification_type = getattr(payload, "rawNotificationType", None) or getattr(payload, "notificationType", None)
    subtype = getattr(payload, "rawSubtype", None) or getattr(payload, "subtype", None)
    logger.info("App Store notification type=%s subtype=%s", notification_type, subtype)

    data = getattr(payload, "data", None)
    signed_transaction = getattr(data, "signedTransactionInfo", None) if data is not None else None
    if not signed_transaction:
        logger.warning("App Store notification has no signedTransactionInfo type=%s", notification_type)
        return "OK - no transaction info"

    try:
        transaction = verifier.decode_transaction(signed_transaction, env_verifier)
    except BillingError as exc:
        logger.error("App Store transaction verification failed code=%s", exc.code)
        return "Transaction verification failed"
    renewal_info = verifier.decode_renewal_info(getattr(data, "signedRenewalInfo", None), env_verifier)
    validated = verifier.to_transaction(transaction, renewal_info)

    account_token = validated.meta.get("appAccountToken")
    if not account_token:
        logger.warning("App Store transaction has no appAccountToken product=%s", validated.product_id)
        return "OK - no app account token"

    uid = store.find_user_by_platform_account_token(str(account_token))
    if not uid:
        logger.warning("No user for appAccountToken %s...", str(account_token)[:8])
        return "OK - user not found"

    if getattr(transaction, "revocationDate", None):
        derivation = derive_status_change("canceled", store.get_entitlement(uid), auto_renewing=False)
        store.merge_entitlement(uid, derivation.update)
        logger.info("App Store transaction revoked uid=%s cached=%s", uid, derivation.cached)
        return "OK"

    if not validated.is_lifetime and validated.expires_at is None:
        logger.warning("App Store notification for uid=%s has no expiry; skipping", uid)
        return "OK - no expiry date"

    try:
        derivation = _apply(store, uid, validated, settings)
    except TrialAlreadyUsedError:
        logger.warning("App Store trial rejected by ledger uid=%s product=%s", uid, validated.product_id)
        return "OK - trial already used"

    logger.info(
        "App Store notification applied uid=%s status=%s cached=%s",
        uid,
        derivation.record.membershipStatus,
        derivation.cached,
    )
    return "OK"


def decode_play_notification(envelope: Dict[str, Any]) -> Dict[str, Any]:
    """Unwrap a Pub/Sub push envelope into the developer notification dict."""
    message = (envelope or {}).get("message") or {}
    data = message.get("data")
    if not data:
        raise ValueError("Pub/Sub message has no data")
    decoded = json.loads(base64.b64decode(data).decode("utf-8"))
    if not isinstance(decoded, dict):
        raise ValueError("Developer notification is not an object")
    return decoded


def process_play_notification(
    store: EntitlementStore,
    verifier: Any,
    envelope: Dict[str, Any],
    settings: Settings,
) -> str:
    try:
        notification = decode_play_notification(envelope)
    except (ValueError, TypeError) as exc:
        logger.warning("Unreadable Play notification: %s", exc)
        return "Invalid message"

    if notification.get("testNotification"):
        logger.info("Play test notification received")
        return "OK - test"

    package_name = notification.get("packageName")
    if package_name and package_name != settings.google_play_package_name:
        logger.warning("Play notification for unexpected package=%s", package_name)
        return "OK - other package"

    sub = notification.get("subscriptionNotification") or {}
    purchase_token = sub.get("purchaseToken")
    subscription_id = sub.get("subscriptionId")
    if not purchase_token or not subscription_id:
        logger.info("Play notification without subscription payload; ignoring")
        return "OK - ignored"

    uid = store.find_user_by_purchase_token(purchase_token)
    if not uid:
        logger.warning("No user for Play purchase token %s...", str(purchase_token)[:8])
        return "OK - user not found"

    notification_type = int(sub.get("notificationType") or 0)
    if notification_type == PLAY_SUBSCRIPTION_REVOKED:
        derivation = derive_status_change(
            "canceled", store.get_entitlement(uid), expires_at=now_utc(), auto_renewing=False
        )
        store.merge_entitlement(uid, derivation.update)
        logger.info("Play subscription revoked uid=%s cached=%s", uid, derivation.cached)
        return "OK"

    try:
        validated = verifier.verify_subscription(subscription_id, purchase_token)
    except BillingError as exc:
        logger.error("Play re-verification failed uid=%s code=%s", uid, exc.code)
        return "Verification failed"

    if notification_type in PLAY_PAST_DUE_TYPES:
        derivation = derive_status_change(
            "past_due",
            store.get_entitlement(uid),
            expires_at=validated.expires_at,
            auto_renewing=validated.auto_renewing,
        )
        store.merge_entitlement(uid, derivation.update)
        logger.info("Play subscription past due uid=%s type=%s", uid, notification_type)
        return "OK"

    try:
        derivation = _apply(store, uid, validated, settings)
    except TrialAlreadyUsedError:
        logger.warning("Play trial rejected by ledger uid=%s product=%s", uid, subscription_id)
        return "OK - trial already used"

    logger.info(
        "Play notification applied uid=%s type=%s status=%s",
        uid,
        notification_type,
        derivation.record.membershipStatus,
    )
    return "OK"
