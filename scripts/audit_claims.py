#!/usr/bin/env python3
"""
Order/claim consistency audit.

Run: python scripts/audit_claims.py [--limit 1000] [--json]

Exit codes:
  0 - Healthy (no mismatches)
  1 - Issues found
  2 - Audit failed (database connection error)
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from vault_orders.config import settings
from vault_orders.database import create_db_engine, create_session_factory
from vault_orders.services.claim_audit import ClaimAuditService
from vault_orders.services.kv_store import KVStore
from vault_orders.services.repository import OrderClaimRepository


def format_report(report: dict) -> str:
    """
    Format audit report as human-readable text

    Args:
        report: Audit report dict from ClaimAuditService

    Returns:
        Formatted report string
    """
    lines = []
    lines.append("=" * 80)
    lines.append("ORDER/CLAIM CONSISTENCY AUDIT REPORT")
    lines.append("=" * 80)
    lines.append("")

    summary = report["summary"]
    lines.append("SUMMARY")
    lines.append("-" * 80)
    lines.append(f"Orders Checked:            {summary['orders_checked']}")
    lines.append(f"Claims Checked:            {summary['claims_checked']}")
    lines.append(f"Active Claims:             {summary['active_claims']}")
    lines.append(f"Consumed Claims:           {summary['consumed_claims']}")
    lines.append(f"Health Score:              {report['health_score']:.2%}")
    lines.append("")

    mismatches = report["mismatches"]
    lines.append("MISMATCHES FOUND")
    lines.append("-" * 80)

    if not mismatches:
        lines.append("No mismatches found. Orders and claims are consistent.")
    else:
        by_type = {}
        for m in mismatches:
            by_type.setdefault(m["type"], []).append(m)

        for mtype, items in by_type.items():
            lines.append(f"\n{mtype.upper().replace('_', ' ')} ({len(items)} found)")
            lines.append("  " + "-" * 76)

            for item in items[:5]:  # Show first 5 of each type
                lines.append(f"  Order ID:       {item['order_id']}")
                if item['claim_id']:
                    lines.append(f"  Claim ID:       {item['claim_id']}")
                lines.append(f"  Severity:       {item['severity'].upper()}")
                lines.append(f"  Details:        {item['details']}")
                lines.append(f"  Recovery:       {item['recovery_action']}")
                lines.append("")

            if len(items) > 5:
                lines.append(f"  ... and {len(items) - 5} more")
                lines.append("")

    lines.append("=" * 80)
    return "\n".join(lines)


def main(argv=None) -> int:
    """Main audit script entry point"""
    parser = argparse.ArgumentParser(description="Audit order/claim consistency")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.orders_index_limit,
        help="Number of most recent orders to audit (default: orders index cap)"
    )
    parser.add_argument("--json", action="store_true", help="Print the raw JSON report")
    parser.add_argument("--database-url", default=settings.database_url, help="Overrides DATABASE_URL")
    args = parser.parse_args(argv)

    try:
        engine = create_db_engine(args.database_url)
        repository = OrderClaimRepository(KVStore(create_session_factory(engine)))
        report = ClaimAuditService(repository).run_audit(limit=args.limit)
    except Exception as e:
        print(f"ERROR: Audit failed: {e}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(report, indent=2, default=str))
    else:
        print(format_report(report))

    if report["mismatches"]:
        print(f"\n✗ AUDIT FAILED: {len(report['mismatches'])} mismatches")
        return 1

    print("\n✓ AUDIT PASSED: Orders and claims are consistent")
    return 0


if __name__ == "__main__":
    sys.exit(main())
