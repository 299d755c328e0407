"""App Store Server Notifications V2 verification.

Signed payloads are verified with Apple's app-store-server-library, which
checks the x5c chain against the configured Apple root certificates (plus OCSP
when online checks are enabled), the bundle id and the app Apple id. The
nested signedTransactionInfo and signedRenewalInfo are verified the same way.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from appstoreserverlibrary.models.Environment import Environment
from appstoreserverlibrary.signed_data_verifier import (
    SignedDataVerifier,
    VerificationException,
    VerificationStatus,
)

from ..config import Settings
from .errors import AppleVerificationError
from .products import is_lifetime_product
from .timestamps import from_millis
from .transaction import ValidatedTransaction

logger = logging.getLogger("entitlements.apple_notifications")


def _raw(obj: Any, name: str) -> Any:
    """Prefer the library's raw* attribute so unknown enum values survive."""
    raw_name = "raw" + name[0].upper() + name[1:]
    value = getattr(obj, raw_name, None)
    if value is not None:
        return value
    value = getattr(obj, name, None)
    return getattr(value, "value", value)


class AppleNotificationVerifier:
    def __init__(self, verifiers: Sequence[Any], *, lifetime_product_ids: Iterable[str] = ()) -> None:
        if not verifiers:
            raise ValueError("At least one SignedDataVerifier is required")
        self.verifiers = list(verifiers)
        self.lifetime_product_ids = tuple(lifetime_product_ids)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppleNotificationVerifier":
        roots = settings.apple_root_certificates()
        if not roots:
            logger.warning("APPLE_ROOT_CERT_PATHS not set; App Store notifications cannot be verified")
        verifiers: List[SignedDataVerifier] = []
        if settings.apple_app_apple_id is not None:
            verifiers.append(
                SignedDataVerifier(
                    root_certificates=roots,
                    enable_online_checks=settings.apple_online_checks,
                    environment=Environment.PRODUCTION,
                    bundle_id=settings.apple_bundle_id,
                    app_apple_id=settings.apple_app_apple_id,
                )
            )
        else:
            logger.warning("APPLE_APP_APPLE_ID not set; only sandbox notifications can be verified")
        verifiers.append(
            SignedDataVerifier(
                root_certificates=roots,
                enable_online_checks=settings.apple_online_checks,
                environment=Environment.SANDBOX,
                bundle_id=settings.apple_bundle_id,
            )
        )
        return cls(verifiers, lifetime_product_ids=settings.lifetime_product_ids)

    def decode_notification(self, signed_payload: str) -> Tuple[Any, Any]:
        """Verify the outer notification JWS.

        Returns the decoded payload and the verifier (environment) that accepted
        it, so nested payloads are checked against the same environment.
        """
        last_exc: Optional[VerificationException] = None
        for verifier in self.verifiers:
            try:
                return verifier.verify_and_decode_notification(signed_payload), verifier
            except VerificationException as exc:
                last_exc = exc
                if exc.status == VerificationStatus.INVALID_ENVIRONMENT:
                    continue
                break
        raise AppleVerificationError(
            error="App Store notification failed verification",
            code="APPLE_NOTIFICATION_UNVERIFIED",
            category="invalid-argument",
            details={"status": getattr(getattr(last_exc, "status", None), "name", None)},
        ) from last_exc

    def decode_transaction(self, signed_transaction: str, verifier: Any) -> Any:
        try:
            return verifier.verify_and_decode_signed_transaction(signed_transaction)
        except VerificationException as exc:
            raise AppleVerificationError(
                error="App Store transaction failed verification",
                code="APPLE_TRANSACTION_UNVERIFIED",
                category="invalid-argument",
                details={"status": getattr(exc.status, "name", None)},
            ) from exc

    def decode_renewal_info(self, signed_renewal_info: Optional[str], verifier: Any) -> Optional[Any]:
        if not signed_renewal_info:
            return None
        try:
            return verifier.verify_and_decode_renewal_info(signed_renewal_info)
        except VerificationException as exc:
            # Renewal info only refines autoRenewing; the transaction is still usable.
            logger.warning("App Store renewal info failed verification: %s", getattr(exc.status, "name", exc))
            return None

    def to_transaction(self, transaction: Any, renewal_info: Optional[Any] = None) -> ValidatedTransaction:
        product_id = str(getattr(transaction, "productId", None) or "")
        tx_type = str(_raw(transaction, "type") or "")
        is_lifetime = tx_type == "Non-Consumable" or is_lifetime_product(product_id, self.lifetime_product_ids)
        expires_at = None if is_lifetime else from_millis(getattr(transaction, "expiresDate", None))

        in_trial = str(_raw(transaction, "offerDiscountType") or "") == "FREE_TRIAL"
        trial_window = None
        if in_trial:
            started = from_millis(getattr(transaction, "purchaseDate", None))
            if started and expires_at:
                trial_window = (started, expires_at)

        auto_renewing = not is_lifetime
        if renewal_info is not None and _raw(renewal_info, "autoRenewStatus") is not None:
            auto_renewing = int(_raw(renewal_info, "autoRenewStatus")) == 1

        return ValidatedTransaction(
            platform="ios",
            product_id=product_id,
            is_lifetime=is_lifetime,
            expires_at=expires_at,
            in_trial=in_trial,
            trial_window=trial_window,
            auto_renewing=auto_renewing,
            raw_status=tx_type or None,
            meta={
                "appAccountToken": getattr(transaction, "appAccountToken", None),
                "originalTransactionId": getattr(transaction, "originalTransactionId", None),
                "transactionId": getattr(transaction, "transactionId", None),
            },
        )
