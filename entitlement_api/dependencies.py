"""FastAPI dependencies for authentication, Firestore and the platform verifiers.

Verifiers are built once per process from the immutable Settings and shared by
every request; tests replace them through app.dependency_overrides.
"""

from __future__ import annotations

import os
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from functools import lru_cache

from fastapi import Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

import firebase_admin
from firebase_admin import auth, credentials, firestore
from firebase_admin import exceptions as firebase_exceptions

from .billing.apple import AppleReceiptVerifier
from .billing.apple_notifications import AppleNotificationVerifier
from .billing.errors import AuthenticationError
from .billing.google_play import GooglePlayVerifier
from .billing.store import EntitlementStore
from .billing.stripe_events import StripeWebhookVerifier
from .config import Settings, get_settings
from .utils.client_ip import get_client_ip
from .utils.security_logger import security_logger

# =============================================================================
# CONFIGURATION
# =============================================================================

SERVICE_ACCOUNT_PATH = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS", "")

# Security settings
MAX_TOKEN_AGE_SECONDS = int(os.environ.get("MAX_TOKEN_AGE_SECONDS", 3600))  # Default 1 hour
CLOCK_SKEW_SECONDS = int(os.environ.get("CLOCK_SKEW_SECONDS", 300))  # Default 5 min
SKIP_TOKEN_AGE_CHECK = os.environ.get("SKIP_TOKEN_AGE_CHECK", "").lower() in ("1", "true")

logger = logging.getLogger("entitlements.dependencies")

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# FIREBASE INITIALIZATION
# =============================================================================

_firebase_app: Optional[firebase_admin.App] = None
_firestore_client = None


def get_firebase_app() -> firebase_admin.App:
    """Get or initialize Firebase Admin app."""
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    if SERVICE_ACCOUNT_PATH and Path(SERVICE_ACCOUNT_PATH).exists():
        _firebase_app = firebase_admin.initialize_app(credentials.Certificate(SERVICE_ACCOUNT_PATH))
    else:
        # Application default credentials (Cloud Run, GCE, gcloud auth)
        _firebase_app = firebase_admin.initialize_app()
    logger.info("Firebase Admin initialized")
    return _firebase_app


def get_firestore():
    """Get Firestore client (singleton)."""
    global _firestore_client

    if _firestore_client is None:
        get_firebase_app()
        _firestore_client = firestore.client()
        logger.info("Firestore client initialized")

    return _firestore_client


def get_store(db=Depends(get_firestore)) -> EntitlementStore:
    return EntitlementStore(db)


# =============================================================================
# PLATFORM VERIFIERS
# =============================================================================

@lru_cache(maxsize=1)
def get_apple_receipt_verifier() -> AppleReceiptVerifier:
    settings = get_settings()
    return AppleReceiptVerifier(
        shared_secret=settings.apple_shared_secret,
        timeout_sec=settings.apple_api_timeout_sec,
    )


@lru_cache(maxsize=1)
def get_apple_notification_verifier() -> AppleNotificationVerifier:
    return AppleNotificationVerifier.from_settings(get_settings())


def optional_apple_notification_verifier() -> Optional[AppleNotificationVerifier]:
    """Notification verifier, or None when the Apple roots cannot be loaded.

    The notification endpoint must acknowledge even when misconfigured.
    """
    try:
        return get_apple_notification_verifier()
    except (OSError, ValueError) as exc:
        logger.error("App Store notification verifier unavailable: %s", exc)
        return None


@lru_cache(maxsize=1)
def get_google_play_verifier() -> GooglePlayVerifier:
    settings = get_settings()
    return GooglePlayVerifier(
        package_name=settings.google_play_package_name,
        timeout_sec=settings.google_api_timeout_sec,
    )


@lru_cache(maxsize=1)
def get_stripe_webhook_verifier() -> StripeWebhookVerifier:
    settings = get_settings()
    return StripeWebhookVerifier(
        webhook_secret=settings.stripe_webhook_secret,
        tolerance_sec=settings.stripe_webhook_tolerance_sec,
    )


def get_app_settings() -> Settings:
    return get_settings()


# =============================================================================
# AUTHENTICATION
# =============================================================================

async def verify_firebase_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Dict[str, Any]:
    """Verify Firebase ID token from Authorization header.

    Security checks:
    - Valid signature (RS256)
    - Not expired
    - Not revoked
    - Token age < MAX_TOKEN_AGE_SECONDS
    - Not from the future (clock skew attack)

    Returns:
        Decoded token claims including 'uid' and, when present, 'email'

    Raises:
        AuthenticationError (401) on any auth failure
    """
    if credentials is None:
        _log_auth_failure(request, "missing_auth_header")
        raise _unauthenticated("Missing Authorization header", "AUTH_HEADER_MISSING")

    try:
        get_firebase_app()
        decoded = auth.verify_id_token(credentials.credentials, check_revoked=True)
    except auth.RevokedIdTokenError:
        _log_auth_failure(request, "revoked_token")
        raise _unauthenticated("Token has been revoked", "AUTH_TOKEN_REVOKED")
    except auth.ExpiredIdTokenError:
        _log_auth_failure(request, "expired_token")
        raise _unauthenticated("Token has expired", "AUTH_TOKEN_EXPIRED")
    except auth.InvalidIdTokenError as e:
        _log_auth_failure(request, "invalid_token", error=str(e))
        raise _unauthenticated("Invalid token", "AUTH_TOKEN_INVALID")
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        _log_auth_failure(request, "auth_error", error=str(e))
        raise _unauthenticated("Authentication failed", "AUTH_FAILED")

    if not SKIP_TOKEN_AGE_CHECK:
        now = datetime.now(timezone.utc).timestamp()
        issued_at = decoded.get('iat', 0)

        if now - issued_at > MAX_TOKEN_AGE_SECONDS:
            _log_auth_failure(request, "token_too_old", uid=decoded.get('uid'))
            raise _unauthenticated("Token too old, please re-authenticate", "AUTH_TOKEN_TOO_OLD")

        if issued_at > now + CLOCK_SKEW_SECONDS:
            _log_auth_failure(request, "future_token", uid=decoded.get('uid'))
            raise _unauthenticated("Invalid token timestamp", "AUTH_TOKEN_FUTURE")

    return decoded


def _unauthenticated(message: str, code: str) -> AuthenticationError:
    return AuthenticationError(error=message, code=code)


def _log_auth_failure(request: Request, reason: str, uid: Optional[str] = None, **extra):
    security_logger.auth_failure(
        ip=get_client_ip(request),
        reason=reason if not extra else f"{reason}: {extra.get('error', '')}",
        path=request.url.path,
        user_agent=request.headers.get("user-agent", "unknown"),
        uid=uid,
    )
