#!/usr/bin/env python3
"""Operator checks for the access-control vendor sync.

Usage:
    uv run python scripts/vendor_check.py --probe          # Vendor connectivity
    uv run python scripts/vendor_check.py --unsynced       # Residents without vendor id
    uv run python scripts/vendor_check.py --audit 20       # Latest audit rows
    uv run python scripts/vendor_check.py --audit 20 --inconsistencies
"""

import argparse
import asyncio
import sys

from accessbridge.database import SessionLocal, init_db
from accessbridge.services import build_services
from accessbridge.vendor import probe_connection


def run_probe(services) -> bool:
    print("Probing vendor version endpoint...")
    result = asyncio.run(probe_connection(services.vendor))
    print(f"  connected: {result.connected}")
    print(f"  message:   {result.message}")
    if result.version is not None:
        print(f"  version:   {result.version}")
    if result.error:
        print(f"  error:     {result.error}")
    return result.connected


def show_unsynced(services) -> None:
    residents = services.residents.list_unsynced()
    print(f"Active residents without vendor id: {len(residents)}")
    for r in residents:
        print(f"  {r.owner_id:>6}  {r.name:<30} {r.email:<30} unit={r.unit_id}")


def show_audit(services, limit: int, inconsistencies_only: bool) -> None:
    change_type = "inconsistency" if inconsistencies_only else None
    rows = services.residents.recent_changes(limit=limit, change_type=change_type)
    print(f"Latest {len(rows)} audit rows")
    print("-" * 60)
    for row in rows:
        print(
            f"  {row.changed_at:%Y-%m-%d %H:%M:%S}  {row.change_type:<13} "
            f"{row.table_name}.{row.record_key}  by={row.changed_by}"
        )
        if row.source_reference:
            print(f"      vendor ref: {row.source_reference}")
        if row.change_reason:
            print(f"      reason:     {row.change_reason}")


def main():
    parser = argparse.ArgumentParser(
        description="Operator checks for the vendor sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--probe", action="store_true", help="Test vendor connectivity")
    parser.add_argument("--unsynced", action="store_true", help="List residents missing a vendor id")
    parser.add_argument("--audit", type=int, metavar="N", help="Show the latest N audit rows")
    parser.add_argument(
        "--inconsistencies",
        action="store_true",
        help="With --audit, only show orphaned vendor persons to reconcile",
    )
    args = parser.parse_args()

    if not (args.probe or args.unsynced or args.audit):
        parser.print_help()
        return 1

    init_db()
    services = build_services(SessionLocal)
    services.config.seed_defaults()

    ok = True
    if args.probe:
        ok = run_probe(services)
    if args.unsynced:
        show_unsynced(services)
    if args.audit:
        show_audit(services, args.audit, args.inconsistencies)

    return 0 if ok else 2


if __name__ == "__main__":
    sys.exit(main())
