"""Entitlement derivation.

Pure decision logic: takes a verified transaction, the trial ledger answer and
the stored record, and returns the fields to merge. Nothing here touches the
network or the database.

Policies, in order:
  1. A stored lifetime entitlement is final. It is returned as-is and nothing
     is written, whatever the incoming transaction says.
  2. A transaction whose expiry has passed derives ``canceled``.
  3. A trial on an email already recorded in the ledger under another account
     is rejected before anything is persisted.
  4. Otherwise the record is overwritten with the verified state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .errors import TrialAlreadyUsedError
from .products import product_class_for
from .records import EntitlementRecord, is_premium_status
from .timestamps import now_utc
from .transaction import ValidatedTransaction
from .trial_ledger import TrialHistory

_UNSET: Any = object()


@dataclass
class Derivation:
    record: EntitlementRecord
    update: Dict[str, Any] = field(default_factory=dict)
    ledger_write: bool = False
    cached: bool = False


def derive(
    validated: ValidatedTransaction,
    trial_history: Optional[TrialHistory],
    prior: Optional[EntitlementRecord],
    *,
    links: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Derivation:
    """Turn a verified transaction into an entitlement update.

    ``trial_history`` is required when the transaction is in trial and ignored
    otherwise. ``links`` carries identifiers (account token, purchase token)
    stored alongside the entitlement.
    """
    prior = prior or EntitlementRecord()
    if prior.isLifetime:
        return Derivation(record=prior, cached=True)

    now = now or now_utc()
    update: Dict[str, Any] = {
        "productClass": product_class_for(validated.product_id, is_lifetime=validated.is_lifetime),
        "expiresAt": None if validated.is_lifetime else validated.expires_at,
        "autoRenewing": False if validated.is_lifetime else validated.auto_renewing,
        "isLifetime": validated.is_lifetime,
        "lastValidatedAt": now,
    }
    update.update(links or {})

    if validated.is_expired(now):
        update["membershipStatus"] = "canceled"
        update["isPremium"] = False
        return Derivation(record=prior.merged(update), update=update)

    ledger_write = False
    if validated.in_trial and not validated.is_lifetime:
        if trial_history is None:
            raise ValueError("trial transactions require a trial history check")
        if trial_history.used and not trial_history.same_account:
            raise TrialAlreadyUsedError(details={"productId": validated.product_id})
        ledger_write = not trial_history.used
        update["membershipStatus"] = "trial"
        update["hasUsedTrial"] = True
        update["trialStart"] = validated.trial_start
        update["trialEnd"] = validated.trial_end
    else:
        update["membershipStatus"] = "premium"
    update["isPremium"] = True

    return Derivation(record=prior.merged(update), update=update, ledger_write=ledger_write)


def derive_status_change(
    membership_status: str,
    prior: Optional[EntitlementRecord],
    *,
    expires_at: Any = _UNSET,
    auto_renewing: Optional[bool] = None,
    product_class: Optional[str] = None,
    has_used_trial: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> Derivation:
    """Status-only update pushed by a platform (Stripe event, Play notification)."""
    prior = prior or EntitlementRecord()
    if prior.isLifetime:
        return Derivation(record=prior, cached=True)

    update: Dict[str, Any] = {
        "membershipStatus": membership_status,
        "isPremium": is_premium_status(membership_status),
        "lastValidatedAt": now or now_utc(),
    }
    if expires_at is not _UNSET:
        update["expiresAt"] = expires_at
    if auto_renewing is not None:
        update["autoRenewing"] = auto_renewing
    if product_class is not None:
        update["productClass"] = product_class
    if has_used_trial:
        update["hasUsedTrial"] = True
    return Derivation(record=prior.merged(update), update=update)
