"""Security audit log for the entitlement API.

One JSON object per line in security.log (rotated), written for events an
operator may want to alert on: rejected credentials, throttled callers, forged
platform callbacks and rejected repeat trials.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

LOG_DIR = Path(os.environ.get("SECURITY_LOG_DIR") or Path(__file__).parent.parent.parent / "logs")
SECURITY_LOG_FILE = LOG_DIR / "security.log"

MAX_LOG_SIZE = 10 * 1024 * 1024  # 10MB per file
BACKUP_COUNT = 5

EVENT_SEVERITY = {
    "auth_failure": "medium",
    "rate_limit_exceeded": "medium",
    "webhook_signature_failure": "high",
    "notification_unverified": "medium",
    "trial_abuse_rejected": "high",
}


class SecurityLogger:
    """Writes security events to a dedicated rotating JSON log."""

    def __init__(self, log_file: Path = SECURITY_LOG_FILE):
        self.logger = logging.getLogger("security")
        if not self.logger.handlers:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(log_file, maxBytes=MAX_LOG_SIZE, backupCount=BACKUP_COUNT)
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)

    def _emit(self, event_type: str, **fields: Any) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "severity": EVENT_SEVERITY.get(event_type, "medium"),
        }
        record.update({k: v for k, v in fields.items() if v is not None})
        self.logger.warning(json.dumps(record, default=str))

    def auth_failure(
        self,
        ip: str,
        reason: str,
        path: str,
        user_agent: Optional[str] = None,
        uid: Optional[str] = None
    ):
        self._emit("auth_failure", ip=ip, path=path, uid=uid, reason=reason, user_agent=user_agent)

    def rate_limit_exceeded(self, ip: str, path: str, limit: str):
        self._emit("rate_limit_exceeded", ip=ip, path=path, limit=limit)

    def webhook_signature_failure(self, ip: str, path: str, code: str):
        """A Stripe callback whose signature did not verify."""
        self._emit("webhook_signature_failure", ip=ip, path=path, code=code)

    def notification_unverified(self, ip: str, path: str, reason: str):
        self._emit("notification_unverified", ip=ip, path=path, reason=reason)

    def trial_abuse_rejected(self, uid: str, platform: str, product_id: str, ip: Optional[str] = None):
        self._emit("trial_abuse_rejected", ip=ip, uid=uid, platform=platform, product_id=product_id)


security_logger = SecurityLogger()
