#!/usr/bin/env python3
"""
Encrypt legacy mailbox passwords with the credential cipher.

Every mailbox without encrypted_password_secure whose legacy
encrypted_password holds a real password gets it sealed with AES-256-GCM
(ENCRYPTION_KEY) and an audit row ("credentials_migrated"). Empty and
placeholder passwords are skipped. Per-mailbox failures are reported and the
rest of the run continues.

Usage (from backend directory):
  .venv/bin/python scripts/migrate_encrypt_credentials.py [--user-id ID]

Exit code is 0 when every mailbox migrated, 1 when some failed, 2 when the
server has no usable encryption key.
"""
import argparse
import os
import sys

_script_dir = os.path.dirname(os.path.abspath(__file__))
_backend = os.path.dirname(_script_dir)
if _backend not in sys.path:
    sys.path.insert(0, _backend)

from app.database import SessionLocal
from app.exceptions import ConfigurationError
from app.services.credential_service import migrate_legacy_credentials


def main() -> int:
    parser = argparse.ArgumentParser(description="Encrypt legacy mailbox credentials.")
    parser.add_argument("--user-id", default=None, help="User id recorded on the audit rows")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        try:
            report = migrate_legacy_credentials(db, user_id=args.user_id)
        except ConfigurationError as e:
            print(f"ERROR: {e.message}. Set ENCRYPTION_KEY before migrating.", file=sys.stderr)
            return 2
    finally:
        db.close()

    print(report["message"])
    for err in report["errors"]:
        print(f"  - {err['mailbox_id']}: {err['error']}", file=sys.stderr)
    return 0 if report["success"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
