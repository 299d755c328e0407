"""Client-invoked purchase validation.

verify -> derive -> persist. The entitlement merge and the ledger create are
separate writes; a crash between them leaves hasUsedTrial set without a ledger
entry, which scripts/trial_ledger_sweep.py back-fills.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..config import Settings
from .deriver import derive
from .errors import PurchaseInputError
from .identity import platform_account_token_for
from .products import is_lifetime_product, normalize_platform
from .records import EntitlementRecord
from .store import EntitlementStore
from .trial_ledger import check_trial_history, record_trial_usage

logger = logging.getLogger("entitlements.purchases")


def _require_input(
    platform: Any,
    product_id: Any,
    receipt: Optional[str],
    purchase_token: Optional[str],
) -> str:
    resolved = normalize_platform(platform)
    if resolved is None or not str(product_id or "").strip():
        raise PurchaseInputError(error="Missing required fields", code="PURCHASE_FIELDS_MISSING")
    if resolved == "ios" and not str(receipt or "").strip():
        raise PurchaseInputError(error="Missing iOS receipt", code="APPLE_RECEIPT_MISSING")
    if resolved == "android" and not str(purchase_token or "").strip():
        raise PurchaseInputError(error="Missing Android purchase token", code="GOOGLE_PURCHASE_TOKEN_MISSING")
    return resolved


def validate_purchase(
    store: EntitlementStore,
    *,
    uid: str,
    email: Optional[str],
    platform: Any,
    product_id: Optional[str],
    receipt: Optional[str] = None,
    purchase_token: Optional[str] = None,
    apple: Any,
    google: Any,
    settings: Settings,
) -> EntitlementRecord:
    resolved_platform = _require_input(platform, product_id, receipt, purchase_token)
    product_id = str(product_id).strip()

    prior = store.get_entitlement(uid)
    if prior is not None and prior.isLifetime:
        logger.info("lifetime entitlement cached uid=%s; skipping platform verification", uid)
        return prior

    lifetime = is_lifetime_product(product_id, settings.lifetime_product_ids)
    links: Dict[str, Any] = {"platformAccountToken": platform_account_token_for(uid)}
    if resolved_platform == "ios":
        if lifetime:
            validated = apple.verify_lifetime(receipt, product_id)
        else:
            validated = apple.verify_subscription(receipt, product_id)
    else:
        if lifetime:
            validated = google.verify_lifetime(product_id, purchase_token)
        else:
            validated = google.verify_subscription(product_id, purchase_token)
        links["androidPurchaseToken"] = purchase_token

    trial_history = None
    if validated.in_trial and not validated.is_expired():
        trial_history = check_trial_history(store, uid, email, settings.trial_ledger_email_salt)

    derivation = derive(validated, trial_history, prior, links=links)
    store.merge_entitlement(uid, derivation.update)
    if derivation.ledger_write:
        record_trial_usage(store, uid, email, settings.trial_ledger_email_salt)

    logger.info(
        "purchase validated uid=%s platform=%s product=%s status=%s",
        uid,
        resolved_platform,
        product_id,
        derivation.record.membershipStatus,
    )
    return derivation.record
