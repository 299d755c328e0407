"""Free-trial ledger.

trialHistory/{uid} is written once, when a user first starts a trial, and is
never deleted (account deletion leaves it in place). A new account reusing the
same email is caught by the email-hash query.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from .identity import hash_email

logger = logging.getLogger("entitlements.trial_ledger")


@dataclass(frozen=True)
class TrialHistory:
    used: bool
    same_account: bool = False


def check_trial_history(store: Any, uid: str, email: Optional[str], salt: str = "") -> TrialHistory:
    if store.get_trial_ledger_entry(uid) is not None:
        return TrialHistory(used=True, same_account=True)

    email_hash = hash_email(email, salt)
    if email_hash is None:
        return TrialHistory(used=False)

    if store.find_trial_ledger_by_email_hash(email_hash) is not None:
        logger.warning("trial ledger email match on a different account uid=%s", uid)
        return TrialHistory(used=True, same_account=False)
    return TrialHistory(used=False)


def record_trial_usage(store: Any, uid: str, email: Optional[str], salt: str = "") -> bool:
    """Create the ledger entry for uid. Returns False when one already existed."""
    created = store.create_trial_ledger_entry(uid, hash_email(email, salt))
    if created:
        logger.info("trial ledger entry created uid=%s", uid)
    return created


def backfill_missing_entries(store: Any, salt: str = "", *, apply: bool = False) -> List[str]:
    """Find users marked hasUsedTrial with no ledger entry; create entries when apply is set.

    Closes the gap left when a process dies between the entitlement merge and
    the ledger create.
    """
    missing = list(store.iter_users_missing_trial_ledger())
    for uid in missing:
        if apply:
            record_trial_usage(store, uid, store.get_user_email(uid), salt)
        else:
            logger.info("trial ledger entry missing uid=%s (dry run)", uid)
    return missing
