#!/usr/bin/env python3
"""Inspect and maintain a BudgetWise ledger from the command line."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from budgetwise import config
from budgetwise.errors import ImportFileError, SchemaMismatchError
from budgetwise.formatting import format_currency, format_signed_currency
from budgetwise.models import MonthSelection
from budgetwise.reconcile import (
    MERGE,
    REPLACE,
    default_export_filename,
    export_to_file,
    load_import_file,
)
from budgetwise.storage import JsonFileBackend, LedgerStorage, SQLiteBackend
from budgetwise.store import LedgerStore


def open_ledger(db: Optional[str] = None) -> LedgerStore:
    """Open the ledger at ``db`` (``.json`` selects the JSON file backend)."""
    if db and db.lower().endswith('.json'):
        backend = JsonFileBackend(db)
    else:
        backend = SQLiteBackend(db)
    store = LedgerStore(LedgerStorage(backend))
    state = store.init()
    if state.corruption.has_corruption:
        print(f"Warning: reset corrupted data for {', '.join(state.corruption.keys)}", file=sys.stderr)
    return store


def show_summary(store: LedgerStore, year: int, month_index: int) -> None:
    settings = store.get_state().settings

    def money(cents: int) -> str:
        return format_currency(cents, settings.currency, settings.locale)

    totals = store.get_monthly_totals(year, month_index)
    print(f"Summary for {year}-{month_index + 1:02d}")
    print(f"  Income:   {money(totals.income_cents)}")
    print(f"  Expenses: {money(totals.expense_cents)}")
    print(f"  Net:      {format_signed_currency(totals.net_cents, settings.currency, settings.locale)}")

    print("\nBuckets (spent / budget / remaining):")
    for name, bucket in totals.buckets.items():
        remaining = format_signed_currency(bucket.remaining_cents, settings.currency, settings.locale)
        print(f"  {name:<14} {money(bucket.spent_cents)} / {money(bucket.budget_cents)} / {remaining}")

    spending = store.get_spending_by_category(year, month_index)
    if spending:
        print("\nTop categories:")
        for entry in spending[:10]:
            print(f"  {entry.name:<20} {money(entry.spent_cents)} ({entry.count})")


def show_activity(store: LedgerStore, limit: int) -> None:
    month = store.get_state().month
    page = store.get_activity_groups(month.year, month.month_index, page_size=limit)
    settings = store.get_state().settings
    if not page.groups:
        print("No transactions recorded yet.")
        return
    for group in page.groups:
        print(group.date_label)
        for tx in group.entries:
            sign = '+' if tx.is_income else '-'
            label = tx.description or ('Income' if tx.is_income else tx.bucket or 'Uncategorized')
            print(f"  {sign} {format_currency(tx.amount_cents, settings.currency, settings.locale):>14}  {label}")
    if page.has_more:
        print(f"\n... more entries available (cursor {page.next_cursor})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Inspect and maintain a BudgetWise ledger.')
    parser.add_argument('--db', help='Ledger database path (SQLite, or a .json file)')
    parser.add_argument('--log-level', default=None, help='Logging level (default from BUDGETWISE_LOG_LEVEL)')
    sub = parser.add_subparsers(dest='command', required=True)

    summary = sub.add_parser('summary', help='Monthly totals and bucket budgets')
    summary.add_argument('--year', type=int, help='Year (default: current)')
    summary.add_argument('--month', type=int, help='Month 1-12 (default: current)')

    activity = sub.add_parser('activity', help='Most recent transactions grouped by day')
    activity.add_argument('--limit', type=int, default=20, help='How many transactions to show')

    export = sub.add_parser('export', help='Write the ledger to a JSON export file')
    export.add_argument('path', nargs='?', help='Destination file (default: exports directory)')

    imp = sub.add_parser('import', help='Load a JSON export file into the ledger')
    imp.add_argument('path', help='Export file to import')
    imp.add_argument('--strategy', choices=[REPLACE, MERGE], default=REPLACE)

    sub.add_parser('reset', help='Delete all data and reseed the starter categories')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.configure_logging(args.log_level)
    store = open_ledger(args.db)

    if args.command == 'summary':
        current = MonthSelection.current()
        year = args.year if args.year is not None else current.year
        month = args.month if args.month is not None else current.month_index + 1
        if not 1 <= month <= 12:
            print(f"Invalid month: {month}", file=sys.stderr)
            return 2
        show_summary(store, year, month - 1)
    elif args.command == 'activity':
        if args.limit <= 0:
            print("--limit must be positive", file=sys.stderr)
            return 2
        show_activity(store, args.limit)
    elif args.command == 'export':
        if args.path:
            target = Path(args.path)
        else:
            config.ensure_data_directories()
            target = config.EXPORTS_DIR / default_export_filename()
        export_to_file(store.export_data(), target)
        print(f"Exported ledger to {target}")
    elif args.command == 'import':
        try:
            state = store.import_data(load_import_file(args.path), args.strategy)
        except (ImportFileError, SchemaMismatchError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        print(
            f"Imported ({args.strategy}): {len(state.transactions)} transactions, "
            f"{len(state.categories)} categories, {len(state.recurring)} templates"
        )
    elif args.command == 'reset':
        store.reset()
        print("Ledger reset.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
