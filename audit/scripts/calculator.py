"""
Freight Calculator
==================

Expected freight charge for one or more weights under a carrier's active
rate table.

Usage:
    python -m audit.scripts.calculator --carrier 35856333000100 --weight 1500
    python -m audit.scripts.calculator --carrier 35.856.333/0001-00 --weight 500 1000 12000
"""

import argparse
import sys

import polars as pl

from shared.cli import add_store_arguments, start
from shared.database import StorageUnavailable
from shared.config import BAND_POLICIES, TABLE_POLICIES
from audit.rates import RatePolicy, quote_charges


def print_quotes(df: pl.DataFrame) -> None:
    """Print one line per quoted weight."""
    for row in df.iter_rows(named=True):
        if row["expected_charge"] is None:
            print(f"  {row['weight']:>10,.2f} kg   -> no price ({row['divergence_type']})")
            continue
        print(
            f"  {row['weight']:>10,.2f} kg   -> R$ {row['expected_charge']:>12,.2f}"
            f"   band {row['band_id']} [{row['min_weight']:,.0f} - {row['max_weight']:,.0f}]"
            f"   base {row['base_value']:,.2f} + {row['kg_extra_value']:,.2f}/kg"
        )


def main():
    parser = argparse.ArgumentParser(description="Expected freight charge by weight")
    parser.add_argument("--carrier", required=True, help="Carrier CNPJ (formatted or digits only)")
    parser.add_argument("--weight", required=True, type=float, nargs="+", help="Gross weight(s) in kg")
    parser.add_argument("--table-policy", choices=TABLE_POLICIES)
    parser.add_argument("--band-policy", choices=BAND_POLICIES)
    add_store_arguments(parser)

    args = parser.parse_args()

    store = None
    try:
        cfg, store = start(args, table_policy=args.table_policy, band_policy=args.band_policy)

        print("\n=== Freight Calculator ===")
        print(f"Carrier: {args.carrier}\n")

        df = quote_charges(
            store,
            args.carrier,
            args.weight,
            tenant_id=cfg.tenant_id,
            policy=RatePolicy.from_config(cfg),
        )
        print_quotes(df)

    except KeyboardInterrupt:
        print("\n\nCancelled.")
        sys.exit(1)
    except StorageUnavailable as e:
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    main()
