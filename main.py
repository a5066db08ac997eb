#!/usr/bin/env python3
"""
TLS Reconciler -- snapshot Cloudflare custom hostnames and bring them to minimum TLS 1.2.

Usage:
  python main.py init
  python main.py export
  python main.py update-tls
  python main.py update-tls --json
  python main.py status

Environment variables (or .env):
  CF_API_TOKEN    Cloudflare API token with SSL and Certificates edit rights.
  ZONE_ID         Zone that owns the custom hostnames.
  ENABLE_EXPORT   "true" to allow the export (snapshot sync) command.
  ENABLE_UPDATE   "true" to allow the update-tls (remediation) command.
  DATABASE_URL    SQLAlchemy URL of the snapshot store (default: local SQLite file).
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict

from sqlalchemy.exc import SQLAlchemyError

from core.config import get_settings
from core.reconcile import ReconcileEngine, SyncError
from snapshot.store import SnapshotStore

logger = logging.getLogger("tlsreconciler.cli")

_STORE_HINT = "run 'init' first if this is a fresh database"


def _print_result(payload: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return
    for key, value in payload.items():
        if isinstance(value, list):
            print(f"  {key}:")
            for item in value:
                print(f"    - {item}")
        else:
            print(f"  {key}: {value}")


def run(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="tls-reconciler",
        description="Reconcile Cloudflare custom hostnames to minimum TLS 1.2.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init
  ENABLE_EXPORT=true python main.py export
  ENABLE_UPDATE=true python main.py update-tls
  python main.py status --json
        """,
    )
    parser.add_argument(
        "command",
        choices=["init", "export", "update-tls", "status"],
        help="init: create the snapshot table; export: full snapshot sync; "
        "update-tls: one remediation batch; status: switches and counters",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every page and every failed hostname",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = get_settings()
    store = SnapshotStore(settings.database_url)
    engine = ReconcileEngine.from_settings(settings, store)

    try:
        if args.command == "init":
            engine.init_schema()
            _print_result({"message": "Database initialized"}, args.json)

        elif args.command == "export":
            if not engine.sync_enabled:
                print("  [!] Export is disabled. Set ENABLE_EXPORT=true to enable it.", file=sys.stderr)
                return 2
            try:
                result = engine.run_snapshot_sync()
            except SyncError as e:
                print(f"  [!] Export aborted on page {e.page}: {e}", file=sys.stderr)
                if isinstance(e.__cause__, SQLAlchemyError):
                    print(f"  [!] Snapshot store unavailable; {_STORE_HINT}.", file=sys.stderr)
                return 1
            _print_result({"message": "Export completed", **asdict(result)}, args.json)

        elif args.command == "update-tls":
            if not engine.remediation_enabled:
                print("  [!] TLS update is disabled. Set ENABLE_UPDATE=true to enable it.", file=sys.stderr)
                return 2
            try:
                result = engine.run_remediation_pass()
            except SQLAlchemyError as e:
                print(f"  [!] Snapshot store unavailable; {_STORE_HINT}: {e}", file=sys.stderr)
                return 1
            payload = asdict(result)
            if not payload["errors"]:
                del payload["errors"]
            _print_result(payload, args.json)

        else:
            total_records = pending_updates = None
            try:
                total_records = store.count()
                pending_updates = store.count_non_compliant()
            except SQLAlchemyError as e:
                logger.warning("Snapshot counters unavailable: %s", e)
                print(f"  [!] Snapshot store unavailable; {_STORE_HINT}.", file=sys.stderr)
            _print_result(
                {
                    "export_enabled": engine.sync_enabled,
                    "update_enabled": engine.remediation_enabled,
                    "total_records": total_records,
                    "pending_updates": pending_updates,
                },
                args.json,
            )
    finally:
        engine.source.close()
        store.close()

    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
