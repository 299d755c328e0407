"""Firestore persistence for entitlements, the trial ledger and Stripe billing.

Layout:
    users/{uid}                         profile; entitlement fields live here
    users/{uid}/billing/subscription    Stripe-side billing state
    trialHistory/{uid}                  trial ledger (survives account deletion)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from .records import EntitlementRecord

logger = logging.getLogger("entitlements.store")

USERS_COLLECTION = "users"
TRIAL_HISTORY_COLLECTION = "trialHistory"
BILLING_COLLECTION = "billing"
BILLING_DOCUMENT = "subscription"


class EntitlementStore:
    def __init__(self, db: Any) -> None:
        self.db = db

    def _user_ref(self, uid: str):
        return self.db.collection(USERS_COLLECTION).document(uid)

    def _billing_ref(self, uid: str):
        return self._user_ref(uid).collection(BILLING_COLLECTION).document(BILLING_DOCUMENT)

    def _first_match(self, collection: str, field_name: str, value: Any):
        query = self.db.collection(collection).where(field_name, "==", value).limit(1)
        for doc in query.stream():
            return doc
        return None

    # Entitlement ---------------------------------------------------------

    def get_entitlement(self, uid: str) -> Optional[EntitlementRecord]:
        doc = self._user_ref(uid).get()
        if not doc.exists:
            return None
        return EntitlementRecord.from_document(doc.to_dict())

    def merge_entitlement(self, uid: str, update: Dict[str, Any]) -> None:
        if not update:
            return
        self._user_ref(uid).set({**update, "updatedAt": firestore.SERVER_TIMESTAMP}, merge=True)

    def get_user_email(self, uid: str) -> Optional[str]:
        doc = self._user_ref(uid).get()
        if not doc.exists:
            return None
        email = (doc.to_dict() or {}).get("email")
        return str(email) if email else None

    def find_user_by_platform_account_token(self, token: str) -> Optional[str]:
        if not token:
            return None
        doc = self._first_match(USERS_COLLECTION, "platformAccountToken", token)
        return doc.id if doc is not None else None

    def find_user_by_purchase_token(self, purchase_token: str) -> Optional[str]:
        if not purchase_token:
            return None
        doc = self._first_match(USERS_COLLECTION, "androidPurchaseToken", purchase_token)
        return doc.id if doc is not None else None

    # Trial ledger --------------------------------------------------------

    def get_trial_ledger_entry(self, uid: str) -> Optional[Dict[str, Any]]:
        doc = self.db.collection(TRIAL_HISTORY_COLLECTION).document(uid).get()
        return (doc.to_dict() or {}) if doc.exists else None

    def find_trial_ledger_by_email_hash(self, email_hash: str) -> Optional[Dict[str, Any]]:
        doc = self._first_match(TRIAL_HISTORY_COLLECTION, "emailHash", email_hash)
        return (doc.to_dict() or {}) if doc is not None else None

    def create_trial_ledger_entry(self, uid: str, email_hash: Optional[str]) -> bool:
        """Create trialHistory/{uid}; an existing entry is left untouched."""
        try:
            self.db.collection(TRIAL_HISTORY_COLLECTION).document(uid).create(
                {
                    "uid": uid,
                    "emailHash": email_hash,
                    "firstTrialDate": firestore.SERVER_TIMESTAMP,
                    "createdAt": firestore.SERVER_TIMESTAMP,
                }
            )
        except gcp_exceptions.AlreadyExists:
            logger.info("trial ledger entry already present uid=%s", uid)
            return False
        return True

    def iter_users_missing_trial_ledger(self) -> Iterator[str]:
        """Uids flagged hasUsedTrial with no ledger entry."""
        query = self.db.collection(USERS_COLLECTION).where("hasUsedTrial", "==", True)
        for doc in query.stream():
            if self.get_trial_ledger_entry(doc.id) is None:
                yield doc.id

    # Stripe billing ------------------------------------------------------

    def get_billing(self, uid: str) -> Dict[str, Any]:
        doc = self._billing_ref(uid).get()
        return (doc.to_dict() or {}) if doc.exists else {}

    def merge_billing(self, uid: str, update: Dict[str, Any]) -> None:
        self._billing_ref(uid).set({**update, "updatedAt": firestore.SERVER_TIMESTAMP}, merge=True)

    def find_user_by_stripe_customer_id(self, customer_id: str) -> Optional[str]:
        if not customer_id:
            return None
        query = (
            self.db.collection_group(BILLING_COLLECTION)
            .where("stripeCustomerId", "==", customer_id)
            .limit(1)
        )
        for doc in query.stream():
            # users/{uid}/billing/subscription -> users/{uid}
            return doc.reference.parent.parent.id
        return None

    # Account -------------------------------------------------------------

    def delete_user_data(self, uid: str) -> None:
        """Delete the profile and its subcollections. trialHistory is kept."""
        user_ref = self._user_ref(uid)
        for subcollection in user_ref.collections():
            batch = self.db.batch()
            for doc in subcollection.stream():
                batch.delete(doc.reference)
            batch.commit()
        user_ref.delete()
        logger.info("user data deleted uid=%s", uid)
