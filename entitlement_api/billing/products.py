"""Product catalog helpers.

Store product ids are opaque strings; the app only cares about the product
class (monthly, annual or lifetime).
"""

from __future__ import annotations

from typing import Iterable, Literal, Optional

ProductClass = Literal["monthly", "annual", "lifetime"]
Platform = Literal["ios", "android"]

STRIPE_PLANS = ("monthly", "annual")


def is_lifetime_product(product_id: str, lifetime_product_ids: Iterable[str]) -> bool:
    return str(product_id or "").strip() in set(lifetime_product_ids)


def product_class_for(product_id: Optional[str], *, is_lifetime: bool = False) -> ProductClass:
    if is_lifetime:
        return "lifetime"
    if "annual" in str(product_id or "").lower():
        return "annual"
    return "monthly"


def normalize_platform(value: object) -> Optional[Platform]:
    v = str(value or "").strip().lower()
    if v in ("ios", "apple", "app_store", "appstore"):
        return "ios"
    if v in ("android", "google", "google_play", "play_store", "play"):
        return "android"
    return None
