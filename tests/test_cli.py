from __future__ import annotations

import asyncio
import json
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from finance_tracker.cli import build_parser, main
from finance_tracker.config import AppSettings
from finance_tracker.db.database import Database
from finance_tracker.models import Holding
from finance_tracker.services.ledger import LedgerService
from finance_tracker.services.prices import InMemoryQuoteProvider, PriceService


def seed(url: str) -> None:
    async def _seed() -> None:
        database = Database(url)
        await database.create_all()
        service = LedgerService(database, PriceService(InMemoryQuoteProvider()), AppSettings(database_url=url))
        account_id = await service.create_account("user-1", "Brokerage")
        await service.buy(account_id, "KO", "100", "55", trade_date=date(2023, 1, 10))
        await service.record_dividend(account_id, "KO", date(2023, 6, 14), "0.46", pay_date=date(2023, 7, 1))
        async with database.session() as session:
            holding = (await session.execute(select(Holding))).scalars().one()
            holding.shares = Decimal("1")
            await session.commit()
        await database.dispose()

    asyncio.run(_seed())


def test_recalc_holdings_prints_each_holding(tmp_path, capsys):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    seed(url)

    assert main(["--database-url", url, "recalc-holdings"]) == 0
    output = capsys.readouterr().out
    assert "symbol=KO shares=100" in output
    assert "Recalculated 1 holdings" in output


def test_tax_summary_prints_years(tmp_path, capsys):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    seed(url)

    assert main(["--database-url", url, "tax-summary", "--year", "2023"]) == 0
    output = capsys.readouterr().out
    assert "2023: gross=46.00 tax=3.68 net=42.32 dividends=1" in output

    assert main(["--database-url", url, "tax-summary", "--year", "2020"]) == 0
    assert "No dividends recorded" in capsys.readouterr().out


def test_parser_requires_a_command():
    parser = build_parser()
    args = parser.parse_args(["tax-summary", "--account-id", "3"])
    assert args.account_id == 3
    assert args.year is None


def test_tax_summary_json_output(tmp_path, capsys):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    seed(url)

    assert main(["--database-url", url, "tax-summary", "--json"]) == 0
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    assert json.loads(lines[0]) == {
        "year": 2023,
        "total_gross": 46.0,
        "total_tax": 3.68,
        "total_net": 42.32,
        "dividend_count": 1,
        "effective_rate": 0.08,
    }
