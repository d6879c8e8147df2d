#!/usr/bin/env python3
"""
Bulk-load the product master sheet and/or the allergen sheet from disk.

Usage:
    python scripts/import_catalog.py --products "Product Master.csv"
    python scripts/import_catalog.py --allergens "Allergen Sheet.xlsx"
    python scripts/import_catalog.py --products p.csv --allergens a.xlsx --dry-run

Idempotent: products upsert by SKU; allergen rows are replaced per SKU.
Row-level errors are printed and skipped; the rest of the file still loads.
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.qms import models  # noqa: E402,F401  (registers every table)
from app.qms.modules.allergens.parsers import parse_allergen_file  # noqa: E402
from app.qms.modules.allergens.service import replace_allergen_rows  # noqa: E402
from app.qms.modules.products.parsers import parse_products_csv  # noqa: E402
from app.qms.modules.products.service import import_products  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


class _DryRun(Exception):
    pass


def _print_errors(label: str, errors) -> None:
    for e in errors:
        print(f"  [{label}] row {e.row_number}: {e.message}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Import product master / allergen sheets")
    parser.add_argument("--products", type=Path, help="Product master CSV export")
    parser.add_argument("--allergens", type=Path, help="Allergen sheet (.csv or .xlsx)")
    parser.add_argument("--dry-run", action="store_true", help="Parse and apply, then roll back")
    args = parser.parse_args()

    if not args.products and not args.allergens:
        parser.error("Nothing to import: pass --products and/or --allergens.")

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///qms.db").strip()
    try:
        with script_session(db_url) as s:
            if args.products:
                rows, errors = parse_products_csv(args.products.read_bytes())
                result = import_products(s, rows, None, source=f"script:{args.products.name}")
                print(f"Products: {result['created']} created, {result['updated']} updated, {len(errors)} skipped")
                _print_errors("products", errors)
            if args.allergens:
                try:
                    rows, errors = parse_allergen_file(args.allergens.name, args.allergens.read_bytes())
                except ValueError as e:
                    print(f"Allergen sheet rejected: {e}")
                    sys.exit(1)
                result = replace_allergen_rows(s, rows, None, source=f"script:{args.allergens.name}")
                print(f"Allergens: {result['products']} products, {result['entries']} entries, {len(errors)} skipped")
                _print_errors("allergens", errors)
            if args.dry_run:
                raise _DryRun()
    except _DryRun:
        print("Dry run: rolled back.")


if __name__ == "__main__":
    main()
