"""Subscription entitlement reconciliation.

Platform verifiers (Apple, Google Play, Stripe) normalize purchases into
ValidatedTransaction; the deriver turns those into EntitlementRecord updates
and applies the trial ledger policy; store.py persists to Firestore.
"""

from .deriver import Derivation, derive, derive_status_change
from .errors import BillingError, TrialAlreadyUsedError
from .records import EntitlementRecord
from .store import EntitlementStore
from .transaction import ValidatedTransaction
from .trial_ledger import TrialHistory, check_trial_history, record_trial_usage

__all__ = [
    'BillingError',
    'Derivation',
    'EntitlementRecord',
    'EntitlementStore',
    'TrialAlreadyUsedError',
    'TrialHistory',
    'ValidatedTransaction',
    'check_trial_history',
    'derive',
    'derive_status_change',
    'record_trial_usage',
]
