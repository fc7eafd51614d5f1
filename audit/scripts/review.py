"""
Audit Review
============

Dashboard figures, divergent audits and the contest / waive actions.

Commands:
    dashboard                 Headline figures and the 5 newest audits
    divergent                 Open audits with a non-zero difference
    contest ID --reason TEXT  Contest an open audit
    waive ID                  Waive (abonar) an audit

Usage:
    python -m audit.scripts.review dashboard
    python -m audit.scripts.review divergent
    python -m audit.scripts.review contest 12 --reason "Peso divergente do romaneio"
    python -m audit.scripts.review waive 12
"""

import argparse
import sys

import polars as pl

from shared.cli import add_store_arguments, start
from shared.database import StorageUnavailable
from audit.reports import dashboard_stats, list_divergent_audits
from audit.workflow import contest_audit, waive_audit


DIVERGENT_COLUMNS = [
    "id", "xml_key", "carrier_name", "charged_value", "calculated_value",
    "difference", "divergence_type", "status",
]


def show_dashboard(store) -> None:
    stats = dashboard_stats(store)

    print("=" * 60)
    print("AUDIT DASHBOARD")
    print("=" * 60)
    print(f"CT-e audited:      {stats['total_audited']:,}")
    print(f"Divergences:       {stats['total_divergences']:,}")
    print(f"Recovered value:   R$ {stats['recovered_value']:,.2f}")

    print("\nRecent audits:")
    if stats["recent_audits"].is_empty():
        print("  (none)")
    else:
        print(stats["recent_audits"])


def show_divergent(store) -> None:
    df = list_divergent_audits(store)

    print("=" * 60)
    print(f"DIVERGENT AUDITS ({len(df):,})")
    print("=" * 60)
    if df.is_empty():
        print("  (none)")
        return

    with pl.Config(tbl_rows=-1, tbl_cols=-1):
        print(df.select(DIVERGENT_COLUMNS))
    print(f"\nTotal difference: R$ {df['difference'].sum():,.2f}")


def main():
    parser = argparse.ArgumentParser(
        description="Review audits: dashboard, divergent list, contest and waive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_store_arguments(parser)
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("dashboard", help="Headline figures and recent audits")
    commands.add_parser("divergent", help="Open audits with a non-zero difference")

    contest = commands.add_parser("contest", help="Contest an open audit")
    contest.add_argument("audit_id", type=int)
    contest.add_argument("--reason", required=True, help="Contestation reason")

    waive = commands.add_parser("waive", help="Waive an audit")
    waive.add_argument("audit_id", type=int)

    args = parser.parse_args()

    store = None
    try:
        _, store = start(args)

        if args.command == "dashboard":
            show_dashboard(store)
        elif args.command == "divergent":
            show_divergent(store)
        elif args.command == "contest":
            contest_audit(store, args.audit_id, args.reason)
            print(f"Audit {args.audit_id} contested.")
        else:
            waive_audit(store, args.audit_id)
            print(f"Audit {args.audit_id} waived.")

    except KeyboardInterrupt:
        print("\n\nCancelled.")
        sys.exit(1)
    except StorageUnavailable as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except (LookupError, ValueError) as e:
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    main()
