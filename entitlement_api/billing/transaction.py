"""Normalized verifier output."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .timestamps import now_utc


@dataclass(frozen=True)
class ValidatedTransaction:
    """One platform-verified purchase, valid only for a single reconciliation call."""

    platform: str
    product_id: str
    is_lifetime: bool
    expires_at: Optional[datetime]
    in_trial: bool = False
    trial_window: Optional[Tuple[datetime, datetime]] = None
    auto_renewing: bool = True
    raw_status: Any = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.is_lifetime or self.expires_at is None:
            return False
        return self.expires_at <= (now or now_utc())

    @property
    def trial_start(self) -> Optional[datetime]:
        return self.trial_window[0] if self.trial_window else None

    @property
    def trial_end(self) -> Optional[datetime]:
        return self.trial_window[1] if self.trial_window else None
