from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from finance_tracker.config import AppSettings
from finance_tracker.db.database import Database
from finance_tracker.errors import ReasonCode
from finance_tracker.models import CashTransaction, Holding
from finance_tracker.services.dividends import DividendEvent
from finance_tracker.services.ledger import LedgerService, OperationStatus
from finance_tracker.services.prices import InMemoryQuoteProvider, PriceService, Quote

TRADING_DAYS = [date(2024, 3, 1), date(2024, 3, 4), date(2024, 3, 5), date(2024, 3, 6), date(2024, 3, 7), date(2024, 3, 8)]


def build_provider() -> InMemoryQuoteProvider:
    return InMemoryQuoteProvider(
        {
            "AAPL": dict(zip(TRADING_DAYS, ["100", "102", "101", "105", "104", "110"])),
            "^GSPC": dict(zip(TRADING_DAYS, ["5000", "5010", "5020", "5030", "5040", "5050"])),
        },
        quotes={"AAPL": Quote("AAPL", Decimal("110"), Decimal("6"), Decimal("5.77"), "Apple Inc.")},
        dividends={
            "KO": [
                DividendEvent(date(2024, 3, 14), Decimal("0.485")),
                DividendEvent(date(2024, 6, 14), Decimal("0.485")),
            ]
        },
    )


async def build_service(tmp_path, **overrides) -> tuple[Database, LedgerService]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await database.create_all()
    settings = AppSettings(database_url=database.url, **overrides)
    service = LedgerService(database, PriceService(build_provider()), settings)
    return database, service


async def test_buy_and_sell_replay_the_holding(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        bought = await service.buy(account_id, "aapl", "10", "10", fees="1", trade_date=date(2024, 1, 2))
        assert bought.ok
        assert bought.holding.symbol == "AAPL"
        assert bought.holding.avg_cost == Decimal("10.1")

        sold = await service.sell(account_id, "AAPL", "4", "20", fees="1", trade_date=date(2024, 2, 1))
        assert sold.status == OperationStatus.APPLIED
        assert sold.holding.shares == Decimal("6")
        assert sold.holding.avg_cost == Decimal("10.1")

        [holding] = await service.get_holdings(account_id)
        assert holding.shares == Decimal("6")
        assert await service.cash_balance(account_id) == Decimal("-22.00")
    finally:
        await database.dispose()


async def test_oversell_is_rejected_before_any_write(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        await service.buy(account_id, "AAPL", "10", "10", trade_date=date(2024, 1, 2))

        result = await service.sell(account_id, "AAPL", "11", "12", trade_date=date(2024, 1, 3))
        assert result.status == OperationStatus.REJECTED
        assert result.reason == ReasonCode.OVERSELL_REQUESTED

        async with database.session() as session:
            entries = (await session.execute(select(CashTransaction))).scalars().all()
        assert len(entries) == 1
        [holding] = await service.get_holdings(account_id)
        assert holding.shares == Decimal("10")
    finally:
        await database.dispose()


async def test_backdated_sell_before_purchase_is_rejected(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        await service.buy(account_id, "AAPL", "10", "10", trade_date=date(2024, 2, 1))
        result = await service.sell(account_id, "AAPL", "5", "10", trade_date=date(2024, 1, 15))
        assert result.reason == ReasonCode.OVERSELL_REQUESTED
    finally:
        await database.dispose()


async def test_sell_all_within_tolerance_closes_position(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        await service.buy(account_id, "AAPL", "10", "10", trade_date=date(2024, 1, 2))
        result = await service.sell(account_id, "AAPL", "10.00005", "12", trade_date=date(2024, 1, 3))
        assert result.ok
        assert result.holding.shares == Decimal("0")
        assert result.holding.avg_cost == Decimal("0")
        assert len(await service.get_holdings(account_id)) == 1
        assert await service.get_holdings(account_id, include_closed=False) == []
    finally:
        await database.dispose()


async def test_invalid_input_and_unknown_account_are_rejected(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        missing = await service.buy(999, "AAPL", "1", "10")
        assert missing.reason == ReasonCode.NOT_FOUND

        account_id = await service.create_account("user-1", "Brokerage")
        bad_shares = await service.buy(account_id, "AAPL", "0", "10")
        assert bad_shares.reason == ReasonCode.INVALID_TRANSACTION
        not_a_number = await service.buy(account_id, "AAPL", "ten", "10")
        assert not_a_number.status == OperationStatus.REJECTED
        assert await service.get_holdings(account_id) == []
    finally:
        await database.dispose()


async def test_concurrent_buys_leave_consistent_holding(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        results = await asyncio.gather(
            *(service.buy(account_id, "AAPL", "1", str(10 + i), trade_date=date(2024, 1, 2)) for i in range(5))
        )
        assert all(result.ok for result in results)
        [holding] = await service.get_holdings(account_id)
        assert holding.shares == Decimal("5")
        assert holding.avg_cost == Decimal("12")
        assert len(service._locks) == 0
    finally:
        await database.dispose()


async def test_update_is_validated_against_whole_ledger(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        bought = await service.buy(account_id, "AAPL", "10", "10", trade_date=date(2024, 1, 2))
        await service.sell(account_id, "AAPL", "8", "12", trade_date=date(2024, 1, 5))

        shrunk = await service.update_transaction(bought.transaction_id, shares="5")
        assert shrunk.reason == ReasonCode.OVERSELL_REQUESTED

        grown = await service.update_transaction(bought.transaction_id, shares="20", price="11")
        assert grown.ok
        assert grown.holding.shares == Decimal("12")
        assert grown.holding.avg_cost == Decimal("11")

        missing = await service.update_transaction(12345, shares="1")
        assert missing.reason == ReasonCode.NOT_FOUND
    finally:
        await database.dispose()


async def test_delete_records_reversing_cash_entry(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        first = await service.buy(account_id, "AAPL", "10", "10", trade_date=date(2024, 1, 2))
        second = await service.buy(account_id, "AAPL", "5", "20", fees="2", trade_date=date(2024, 1, 3))
        await service.sell(account_id, "AAPL", "12", "15", trade_date=date(2024, 1, 4))

        blocked = await service.delete_transaction(first.transaction_id)
        assert blocked.reason == ReasonCode.OVERSELL_REQUESTED

        deleted = await service.delete_transaction(second.transaction_id)
        assert deleted.reason == ReasonCode.OVERSELL_REQUESTED

        sell_free = await service.buy(account_id, "MSFT", "2", "300", trade_date=date(2024, 1, 2))
        removed = await service.delete_transaction(sell_free.transaction_id)
        assert removed.ok
        assert removed.holding.shares == Decimal("0")

        async with database.session() as session:
            reversal = (
                await session.execute(select(CashTransaction).where(CashTransaction.source == "reversal"))
            ).scalars().one()
        assert reversal.type == "inflow"
        assert Decimal(reversal.amount) == Decimal("600")
        # 100 + 102 out, 180 in, MSFT nets to zero.
        assert await service.cash_balance(account_id) == Decimal("-22.00")
    finally:
        await database.dispose()


async def test_recalculate_repairs_hand_edited_holdings(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        await service.buy(account_id, "AAPL", "10", "10", trade_date=date(2024, 1, 2))
        async with database.session() as session:
            holding = (await session.execute(select(Holding))).scalars().one()
            holding.shares = Decimal("999")
            session.add(Holding(account_id=account_id, symbol="GONE", shares=Decimal("3"), avg_cost=Decimal("1")))
            await session.commit()

        snapshots = await service.recalculate_all_holdings()
        assert {(s.symbol, s.shares) for s in snapshots} == {("AAPL", Decimal("10")), ("GONE", Decimal("0"))}
        holdings = {h.symbol: h.shares for h in await service.get_holdings(account_id)}
        assert holdings == {"AAPL": Decimal("10"), "GONE": Decimal("0")}
    finally:
        await database.dispose()


async def test_tax_rate_setting(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        assert await service.get_tax_rate("user-1") == Decimal("0.08")
        assert (await service.set_tax_rate("user-1", "0.15")).ok
        assert await service.get_tax_rate("user-1") == Decimal("0.15")
        assert (await service.set_tax_rate("user-1", 0.2)).ok
        assert await service.get_tax_rate("user-1") == Decimal("0.2")

        rejected = await service.set_tax_rate("user-1", "1.5")
        assert rejected.reason == ReasonCode.INVALID_TAX_RATE
        assert await service.get_tax_rate("user-1") == Decimal("0.2")
        assert await service.get_tax_rate("user-2") == Decimal("0.08")
    finally:
        await database.dispose()


async def test_non_finite_numbers_are_rejected(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        await service.buy(account_id, "AAPL", "10", "10", trade_date=date(2024, 1, 2))
        [original] = await service.get_holdings(account_id)

        for value in ("NaN", "Infinity", "-inf", "sNaN"):
            bought = await service.buy(account_id, "AAPL", value, "100")
            assert bought.status == OperationStatus.REJECTED
            assert bought.reason == ReasonCode.INVALID_TRANSACTION
            priced = await service.buy(account_id, "AAPL", "1", value)
            assert priced.reason == ReasonCode.INVALID_TRANSACTION
            sold = await service.sell(account_id, "AAPL", value, "100")
            assert sold.reason == ReasonCode.INVALID_TRANSACTION
            dividend = await service.record_dividend(account_id, "AAPL", date(2024, 3, 1), value)
            assert dividend.reason == ReasonCode.INVALID_TRANSACTION
            rate = await service.set_tax_rate("user-1", value)
            assert rate.status == OperationStatus.REJECTED
            assert rate.reason == ReasonCode.INVALID_TAX_RATE

        assert await service.get_holdings(account_id) == [original]
        assert await service.list_dividends(account_id) == []
        assert await service.get_tax_rate("user-1") == Decimal("0.08")
    finally:
        await database.dispose()


async def test_recorded_dividend_keeps_its_tax_rate(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Dividends")
        await service.buy(account_id, "KO", "100", "55", trade_date=date(2024, 1, 10))
        await service.set_tax_rate("user-1", "0.15")

        result = await service.record_dividend(account_id, "ko", date(2024, 3, 14), "0.485", pay_date=date(2024, 4, 1))
        assert result.ok
        assert result.dividend.net_amount == Decimal("41.22")

        duplicate = await service.record_dividend(account_id, "KO", date(2024, 3, 14), "0.485")
        assert duplicate.status == OperationStatus.SKIPPED
        assert duplicate.reason == ReasonCode.DUPLICATE_DIVIDEND

        not_owned = await service.record_dividend(account_id, "KO", date(2023, 12, 1), "0.46")
        assert not_owned.reason == ReasonCode.INSUFFICIENT_OWNERSHIP

        await service.set_tax_rate("user-1", "0.30")
        [stored] = await service.list_dividends(account_id)
        assert stored.tax_rate == Decimal("0.15")
        assert stored.gross_amount - stored.tax_amount - stored.net_amount == Decimal("0")
    finally:
        await database.dispose()


async def test_dividend_check_is_idempotent_and_pays_once(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Dividends")
        await service.buy(account_id, "KO", "100", "55", trade_date=date(2024, 1, 10))

        first = await service.check_dividends(account_id, today=date(2024, 7, 1))
        assert first.dividends_found == 2
        assert first.dividends_created == 2
        assert first.transactions_created == 1
        assert [d.net_amount for d in first.new_dividends] == [Decimal("44.62"), Decimal("44.62")]

        second = await service.check_dividends(account_id, today=date(2024, 7, 1))
        assert second.dividends_created == 0
        assert second.skipped_existing == 2
        assert second.transactions_created == 0

        later = await service.check_dividends(account_id, today=date(2024, 8, 1))
        assert later.transactions_created == 1
        assert await service.cash_balance(account_id) == Decimal("-5410.76")
    finally:
        await database.dispose()


async def test_dividend_check_reports_unknown_account(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        summary = await service.check_dividends(999, today=date(2024, 7, 1))
        assert not summary.ok
        assert summary.reason == ReasonCode.NOT_FOUND
        assert summary.dividends_created == 0
        assert summary.transactions_created == 0
    finally:
        await database.dispose()


async def test_overlapping_payout_passes_pay_at_most_once(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Dividends")
        await service.buy(account_id, "KO", "10", "55", trade_date=date(2024, 1, 10))
        await service.record_dividend(account_id, "KO", date(2024, 3, 14), "0.5", pay_date=date(2024, 4, 1))

        counts = await asyncio.gather(
            service.create_due_dividend_transactions(account_id, date(2024, 4, 2)),
            service.create_due_dividend_transactions(account_id, date(2024, 4, 2)),
        )
        assert sum(counts) == 1
        assert await service.create_due_dividend_transactions(None, date(2024, 5, 1)) == 0
        [dividend] = await service.list_dividends(account_id)
        assert dividend.transaction_created
    finally:
        await database.dispose()


async def test_tax_summary_groups_by_year(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Dividends")
        await service.buy(account_id, "KO", "100", "55", trade_date=date(2023, 1, 10))
        await service.record_dividend(account_id, "KO", date(2023, 12, 14), "0.46", pay_date=date(2024, 1, 2))
        await service.record_dividend(account_id, "KO", date(2023, 6, 14), "0.46", pay_date=date(2023, 7, 1))

        summaries = await service.tax_summary(account_id)
        assert [(s.year, s.dividend_count) for s in summaries] == [(2024, 1), (2023, 1)]
        assert summaries[0].total_gross == Decimal("46.00")
        assert summaries[0].effective_rate == Decimal("0.08")
        assert [s.year for s in await service.tax_summary(year=2023)] == [2023]
    finally:
        await database.dispose()


async def test_account_performance_uses_benchmark_calendar(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        await service.buy(account_id, "AAPL", "10", "95", trade_date=date(2024, 2, 1))
        await service.buy(account_id, "AAPL", "10", "105", trade_date=date(2024, 3, 6))

        response = await service.account_performance(account_id, "1w", today=date(2024, 3, 8))
        assert response.period == "1w"
        assert response.benchmark_symbol == "^GSPC"
        assert [p.date for p in response.portfolio] == TRADING_DAYS
        assert response.portfolio[0].change_percent == 0
        assert response.portfolio[-1].change_percent == 10
        assert response.benchmark[-1].change_percent == 1
        assert [(e.date, e.type) for e in response.events] == [(date(2024, 3, 6), "buy")]

        empty_account = await service.create_account("user-1", "Empty")
        empty = await service.account_performance(empty_account, "3m", today=date(2024, 3, 8))
        assert empty.portfolio == [] and empty.benchmark == []
        assert empty.reason == ReasonCode.EMPTY_LEDGER.value
    finally:
        await database.dispose()


async def test_account_portfolio_combines_quotes_and_cash(tmp_path):
    database, service = await build_service(tmp_path)
    try:
        account_id = await service.create_account("user-1", "Brokerage")
        other = await service.create_account("user-1", "IRA")
        await service.buy(account_id, "AAPL", "10", "100", trade_date=date(2024, 1, 2))
        await service.buy(other, "NVDA", "1", "500", trade_date=date(2024, 1, 2))

        portfolio = await service.account_portfolio(account_id)
        assert portfolio.total_value == Decimal("1100.00")
        assert portfolio.total_gain == Decimal("100.00")
        assert portfolio.cash_balance == Decimal("-1000.00")
        assert portfolio.holdings[0].name == "Apple Inc."

        summary = await service.portfolio_summary("user-1")
        assert summary.holdings_count == 2
        assert summary.total_value == Decimal("1600.00")
    finally:
        await database.dispose()
