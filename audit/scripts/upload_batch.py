"""
Upload CT-e Batch
=================

Audits CT-e XML files and ZIP archives of them against the carriers'
active rate tables.

Every document is processed independently: a broken or duplicate document
is reported and the rest of the batch continues.

Usage:
    python -m audit.scripts.upload_batch data/cte_001.xml data/lote_marco.zip
    python -m audit.scripts.upload_batch data/*.xml --output results.csv
    python -m audit.scripts.upload_batch lote.zip --table-policy latest --band-policy upper
"""

import argparse
import sys

from shared.cli import add_store_arguments, start
from shared.database import StorageUnavailable
from shared.config import BAND_POLICIES, TABLE_POLICIES
from shared.uploads import UploadedFile
from audit.batch import process_batch
from audit.rates import RatePolicy


def print_outcomes(result) -> None:
    """Print one line per document."""
    for outcome in result.outcomes:
        if outcome.success:
            print(f"  OK    {outcome.filename}  key={outcome.xml_key}  cte_id={outcome.cte_id}")
        elif outcome.duplicate:
            print(f"  DUP   {outcome.filename}  key={outcome.xml_key}  ({outcome.message})")
        else:
            print(f"  FAIL  {outcome.filename}  {outcome.message}")


# =============================================================================
# MAIN
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description="Audit CT-e XML files and ZIP archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m audit.scripts.upload_batch data/cte_001.xml data/lote_marco.zip
  python -m audit.scripts.upload_batch data/*.xml --output results.csv
        """
    )
    parser.add_argument("files", nargs="+", help="CT-e XML files or ZIP archives")
    parser.add_argument("--output", help="Write per-document outcomes to this CSV file")
    parser.add_argument(
        "--table-policy",
        choices=TABLE_POLICIES,
        help="Which active rate table wins when a carrier has several"
    )
    parser.add_argument(
        "--band-policy",
        choices=BAND_POLICIES,
        help="Which weight band wins on a shared boundary"
    )
    add_store_arguments(parser)

    args = parser.parse_args()

    store = None
    try:
        cfg, store = start(args, table_policy=args.table_policy, band_policy=args.band_policy)

        print("=" * 60)
        print("CT-e BATCH AUDIT")
        print("=" * 60)

        print(f"\nStep 1: Reading {len(args.files)} file(s)...")
        uploads = [UploadedFile.from_path(path) for path in args.files]

        print("\nStep 2: Auditing documents...")
        result = process_batch(store, uploads, tenant_id=cfg.tenant_id, policy=RatePolicy.from_config(cfg))
        print_outcomes(result)

        if args.output:
            print(f"\nStep 3: Writing outcomes to {args.output}...")
            result.to_frame().write_csv(args.output)

        print("\n" + "=" * 60)
        print(result.message)
        print(f"Duplicates: {result.duplicate_count}")
        print("=" * 60)

    except KeyboardInterrupt:
        print("\n\nCancelled.")
        sys.exit(1)
    except StorageUnavailable as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}")
        raise
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    main()
