"""Runtime configuration for the entitlement API.

All settings come from environment variables (Secret Manager values are
mounted as env vars in production). Settings are read once per process and
treated as immutable; verifiers are built from them in dependencies.py.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple


def _bool_env(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _str_env(name: str, default: str = "") -> str:
    return str(os.environ.get(name, default)).strip()


def _csv_env(name: str, default: str = "") -> Tuple[str, ...]:
    return tuple(
        item.strip()
        for item in str(os.environ.get(name, default)).split(",")
        if item.strip()
    )


def _int_env(name: str) -> Optional[int]:
    raw = _str_env(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


DEFAULT_LIFETIME_PRODUCT_IDS = (
    "com.braveheartinnovations.debateai.premium.lifetime.v2",
    "com.braveheartinnovations.debateai.premium.lifetime",
    "premium_lifetime",
)


@dataclass(frozen=True)
class Settings:
    debug: bool = False

    # Apple
    apple_shared_secret: str = ""
    apple_bundle_id: str = "com.braveheartinnovations.debateai"
    apple_app_apple_id: Optional[int] = None
    apple_root_cert_paths: Tuple[str, ...] = ()
    apple_online_checks: bool = True
    apple_api_timeout_sec: float = 8.0

    # Google Play
    google_play_package_name: str = "com.braveheartinnovations.debateai"
    google_api_timeout_sec: float = 8.0

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_sec: int = 300
    stripe_price_monthly: str = ""
    stripe_price_annual: str = ""
    stripe_trial_days: int = 7
    stripe_return_base_url: str = "http://localhost:3000"

    # Trial ledger
    trial_ledger_email_salt: str = ""

    lifetime_product_ids: Tuple[str, ...] = field(default=DEFAULT_LIFETIME_PRODUCT_IDS)

    def apple_root_certificates(self) -> list:
        """Load DER-encoded Apple root certificates from the configured paths."""
        return [Path(p).read_bytes() for p in self.apple_root_cert_paths]


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    lifetime_ids = _csv_env("LIFETIME_PRODUCT_IDS") or DEFAULT_LIFETIME_PRODUCT_IDS
    return Settings(
        debug=_bool_env("DEBUG", False),
        apple_shared_secret=_str_env("APPLE_SHARED_SECRET"),
        apple_bundle_id=_str_env("APPLE_BUNDLE_ID", "com.braveheartinnovations.debateai"),
        apple_app_apple_id=_int_env("APPLE_APP_APPLE_ID"),
        apple_root_cert_paths=_csv_env("APPLE_ROOT_CERT_PATHS"),
        apple_online_checks=_bool_env("APPLE_ONLINE_CHECKS", True),
        apple_api_timeout_sec=float(os.environ.get("APPLE_API_TIMEOUT_SEC", "8")),
        google_play_package_name=_str_env("GOOGLE_PLAY_PACKAGE_NAME", "com.braveheartinnovations.debateai"),
        google_api_timeout_sec=float(os.environ.get("GOOGLE_API_TIMEOUT_SEC", "8")),
        stripe_secret_key=_str_env("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=_str_env("STRIPE_WEBHOOK_SECRET"),
        stripe_webhook_tolerance_sec=int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE_SEC", "300")),
        stripe_price_monthly=_str_env("STRIPE_PRICE_MONTHLY"),
        stripe_price_annual=_str_env("STRIPE_PRICE_ANNUAL"),
        stripe_trial_days=int(os.environ.get("STRIPE_TRIAL_DAYS", "7")),
        stripe_return_base_url=_str_env("STRIPE_RETURN_BASE_URL", "http://localhost:3000").rstrip("/"),
        trial_ledger_email_salt=_str_env("TRIAL_LEDGER_EMAIL_SALT"),
        lifetime_product_ids=lifetime_ids,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings (cached)."""
    return load_settings()
