"""Identity derivations used to link purchases and trials to users."""

from __future__ import annotations

import hashlib
import uuid
from typing import Optional


def hash_email(email: Optional[str], salt: str = "") -> Optional[str]:
    """SHA-256 hex digest of salt + normalized email, or None without an email.

    An empty salt yields the same digest the mobile backend historically stored,
    so existing ledger entries keep matching.
    """
    normalized = str(email or "").strip().lower()
    if not normalized:
        return None
    return hashlib.sha256(f"{salt}{normalized}".encode("utf-8")).hexdigest()


def platform_account_token_for(uid: str) -> str:
    """Stable UUID for a Firebase uid.

    StoreKit only accepts a UUID as appAccountToken; Apple echoes it back in
    every signed transaction so notifications can be routed to the user.
    """
    digest = hashlib.sha256(f"entitlements:{uid}".encode("utf-8")).digest()
    return str(uuid.UUID(bytes=digest[:16], version=4))
