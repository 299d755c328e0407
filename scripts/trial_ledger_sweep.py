#!/usr/bin/env python3
"""Back-fill trial ledger entries missing for users who started a trial.

Purchase validation writes the entitlement and then the ledger entry as two
separate Firestore writes. If the process dies in between, the user keeps
hasUsedTrial=True with no trialHistory/{uid} document and could start another
trial on a new account with the same email. This sweep finds those users and
creates the missing entries.

Dry run by default; pass --apply to write.

Usage:
    python scripts/trial_ledger_sweep.py --serviceAccount sa.json [--apply]
"""

import argparse
import logging
import os
from pathlib import Path

import firebase_admin
from firebase_admin import credentials, firestore

from entitlement_api.billing.store import EntitlementStore
from entitlement_api.billing.trial_ledger import backfill_missing_entries
from entitlement_api.config import get_settings

logger = logging.getLogger("entitlements.trial_ledger_sweep")


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Back-fill missing trial ledger entries")
    parser.add_argument(
        "--serviceAccount",
        default=os.environ.get("GOOGLE_APPLICATION_CREDENTIALS", ""),
        help="Path to Firebase service account JSON (default: application default credentials)",
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Create the missing entries (default is a dry run)",
    )
    return parser.parse_args()


def main() -> int:
    configure_logging()
    args = parse_args()

    sa_path = str(args.serviceAccount or "").strip()
    if sa_path:
        if not Path(sa_path).exists():
            logger.error("Service account path does not exist: %s", sa_path)
            return 2
        firebase_admin.initialize_app(credentials.Certificate(sa_path))
    else:
        firebase_admin.initialize_app()

    store = EntitlementStore(firestore.client())
    missing = backfill_missing_entries(
        store,
        get_settings().trial_ledger_email_salt,
        apply=bool(args.apply),
    )
    logger.info(
        "%d user(s) missing a trial ledger entry; %s",
        len(missing),
        "entries created" if args.apply else "dry run, nothing written",
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
