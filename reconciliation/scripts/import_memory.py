"""
Import Calculation Memory
=========================

Imports calculation-memory spreadsheets (.xlsx / .csv) and reconciles each
row's all-in freight against its cost components.

Modes:
    FILE...        Import one or more spreadsheets
    --waive ID     Mark a reconciliation row as ABONADO
    --errors ID    Show the row errors of an import batch

Usage:
    python -m reconciliation.scripts.import_memory memoria_marco.xlsx
    python -m reconciliation.scripts.import_memory memoria_*.xlsx
    python -m reconciliation.scripts.import_memory --waive 42
    python -m reconciliation.scripts.import_memory --errors 7
"""

import argparse
import sys

import polars as pl

from shared.cli import add_store_arguments, start
from shared.database import StorageUnavailable
from shared.uploads import UploadedFile
from reconciliation.engine import import_files
from reconciliation.records import list_import_errors, waive_row


def run_import(store, paths: list[str]) -> None:
    print("=" * 60)
    print("CALCULATION MEMORY IMPORT")
    print("=" * 60)

    print(f"\nStep 1: Reading {len(paths)} file(s)...")
    uploads = [UploadedFile.from_path(path) for path in paths]

    print("\nStep 2: Importing rows...")
    results = import_files(store, uploads)

    for result in results:
        if result.status == "success":
            print(
                f"  {result.filename}: import {result.import_id}, "
                f"{result.imported:,} imported, {result.errors:,} errors, {result.total:,} total"
            )
        else:
            print(f"  {result.filename}: FAILED ({result.message})")

    failed = sum(1 for result in results if result.status != "success")
    print("\n" + "=" * 60)
    print(f"{len(results) - failed} file(s) imported, {failed} failed")
    print("=" * 60)


def show_errors(store, import_id: int) -> None:
    df = list_import_errors(store, import_id)

    print("=" * 60)
    print(f"IMPORT {import_id} ROW ERRORS ({len(df):,})")
    print("=" * 60)
    if df.is_empty():
        print("  (none)")
        return

    with pl.Config(tbl_rows=-1, fmt_str_lengths=120):
        print(df.select(["row_number", "error_message", "raw_data"]))


def main():
    parser = argparse.ArgumentParser(
        description="Import and reconcile calculation-memory spreadsheets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m reconciliation.scripts.import_memory memoria_marco.xlsx
  python -m reconciliation.scripts.import_memory --waive 42
  python -m reconciliation.scripts.import_memory --errors 7
        """
    )
    parser.add_argument("files", nargs="*", help="Spreadsheets to import")
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--waive", type=int, metavar="ID", help="Mark a row as ABONADO")
    mode_group.add_argument("--errors", type=int, metavar="ID", help="Show the row errors of an import")
    add_store_arguments(parser)

    args = parser.parse_args()

    if args.files and (args.waive is not None or args.errors is not None):
        parser.error("pass files or one of --waive / --errors, not both")
    if not args.files and args.waive is None and args.errors is None:
        parser.error("no files given")

    store = None
    try:
        _, store = start(args)

        if args.waive is not None:
            waive_row(store, args.waive)
            print(f"Row {args.waive} waived (ABONADO).")
        elif args.errors is not None:
            show_errors(store, args.errors)
        else:
            run_import(store, args.files)

    except KeyboardInterrupt:
        print("\n\nCancelled.")
        sys.exit(1)
    except StorageUnavailable as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except LookupError as e:
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    main()
