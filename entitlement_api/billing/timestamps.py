"""Timestamp coercion shared by the platform verifiers and the store.

Platforms disagree on time formats: Apple receipts use millisecond strings,
Google v1 uses millisecond strings, Google v2 uses RFC 3339, Stripe uses epoch
seconds and Firestore hands back DatetimeWithNanoseconds.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_epoch_millis(*values: Any) -> Optional[int]:
    """Return the first value that parses as epoch milliseconds.

    Values below 10^11 are treated as epoch seconds.
    """
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            as_int = int(value)
            return as_int if as_int > 100_000_000_000 else as_int * 1000
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                continue
            try:
                as_int = int(float(stripped))
            except ValueError:
                continue
            return as_int if as_int > 100_000_000_000 else as_int * 1000
    return None


def parse_rfc3339(value: Any) -> Optional[datetime]:
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def from_millis(value: Any) -> Optional[datetime]:
    millis = parse_epoch_millis(value)
    if millis is None:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def from_seconds(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def to_millis(value: Any) -> Optional[int]:
    """Coerce a Firestore timestamp, datetime or {seconds, nanos} dict to millis."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if hasattr(value, "timestamp"):
        try:
            return int(value.timestamp() * 1000)
        except (TypeError, ValueError):
            return None
    if isinstance(value, dict):
        seconds = value.get("seconds") or value.get("_seconds")
        nanos = value.get("nanoseconds") or value.get("_nanoseconds") or value.get("nanos") or 0
        if seconds is None:
            return None
        try:
            return int((float(seconds) + float(nanos) / 1_000_000_000) * 1000)
        except (TypeError, ValueError):
            return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return parse_epoch_millis(value)
    return None


def to_datetime(value: Any) -> Optional[datetime]:
    millis = to_millis(value)
    if millis is None:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
