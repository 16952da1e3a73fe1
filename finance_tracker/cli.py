"""Maintenance commands for the ledger store."""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from finance_tracker.config import get_settings
from finance_tracker.core.logging import setup_logging
from finance_tracker.core.telemetry import setup_telemetry
from finance_tracker.db.database import Database
from finance_tracker.schemas import TaxSummarySchema
from finance_tracker.services.ledger import LedgerService
from finance_tracker.services.prices import InMemoryQuoteProvider, PriceService


def _build_service(database_url: str | None) -> tuple[Database, LedgerService]:
    settings = get_settings()
    database = Database(database_url or settings.database_url)
    setup_telemetry(settings, database.engine)
    # Neither command needs market data.
    prices = PriceService.from_settings(InMemoryQuoteProvider(), settings)
    return database, LedgerService(database, prices, settings)


async def _recalc_holdings(database_url: str | None) -> int:
    database, service = _build_service(database_url)
    try:
        snapshots = await service.recalculate_all_holdings()
    finally:
        await database.dispose()
    for snapshot in snapshots:
        print(f"account={snapshot.account_id} symbol={snapshot.symbol} shares={snapshot.shares} avg_cost={snapshot.avg_cost}")
    print(f"Recalculated {len(snapshots)} holdings")
    return 0


async def _tax_summary(database_url: str | None, account_id: int | None, year: int | None, as_json: bool) -> int:
    database, service = _build_service(database_url)
    try:
        summaries = await service.tax_summary(account_id=account_id, year=year)
    finally:
        await database.dispose()
    if as_json:
        for summary in summaries:
            print(TaxSummarySchema.from_summary(summary).model_dump_json())
        return 0
    if not summaries:
        print("No dividends recorded")
        return 0
    for summary in summaries:
        print(
            f"{summary.year}: gross={summary.total_gross} tax={summary.total_tax} "
            f"net={summary.total_net} dividends={summary.dividend_count} "
            f"effective_rate={summary.effective_rate}"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="finance-tracker", description="Ledger maintenance commands")
    parser.add_argument("--database-url", default=None, help="Override the configured database URL")
    parser.add_argument("--log-level", default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("recalc-holdings", help="Recompute every holding from its transaction ledger")

    tax = commands.add_parser("tax-summary", help="Print the annual dividend tax summary")
    tax.add_argument("--account-id", type=int, default=None)
    tax.add_argument("--year", type=int, default=None)
    tax.add_argument("--json", action="store_true", help="Print one JSON object per year")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or get_settings().log_level)
    if args.command == "recalc-holdings":
        return asyncio.run(_recalc_holdings(args.database_url))
    return asyncio.run(_tax_summary(args.database_url, args.account_id, args.year, args.json))


if __name__ == "__main__":
    raise SystemExit(main())
