"""Store-backed orchestration of the replay, dividend and performance engines.

``LedgerService`` is the only writer of holdings. Every transaction mutation
runs under a per-``(account, symbol)`` lock and commits together with the
replayed holding, so a holding is never read in a state that disagrees with
its ledger. Engine errors are caught here and reported as an
``OperationResult`` instead of propagating to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Hashable, Iterable

import pandas as pd
from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from finance_tracker.config import AppSettings, get_settings
from finance_tracker.db.database import Database
from finance_tracker.errors import (
    DuplicateDividend,
    InvalidTransaction,
    LedgerError,
    ReasonCode,
    RecordNotFound,
)
from finance_tracker.models import (
    Account,
    CashTransaction,
    Dividend,
    Holding,
    StockTransaction,
    UserSetting,
)
from finance_tracker.schemas import PerformanceResponse

from .dividends import DividendKey, DividendRecord, build_dividend_record, plan_dividend_discovery
from .performance import PerformanceResult, compute_twr
from .periods import parse_period, resolve_period
from .prices import PriceService
from .replay import (
    ZERO,
    HoldingSnapshot,
    TransactionInput,
    TransactionKind,
    replay_holding,
    replay_positions,
    resolve_sell_quantity,
    validate_ledger,
    validate_transaction,
)
from .tax import AnnualTaxSummary, round_currency, summarize_dividend_taxes, validate_tax_rate
from .valuation import AccountPortfolio, PortfolioSummary, aggregate_portfolio, summarize_account

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

TAX_RATE_SETTING_KEY = "dividend_tax_rate"


class OperationStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    REJECTED = "rejected"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a ledger operation as seen by the caller."""

    status: OperationStatus
    reason: ReasonCode | None = None
    message: str | None = None
    transaction_id: int | None = None
    holding: HoldingSnapshot | None = None
    dividend: DividendRecord | None = None

    @property
    def ok(self) -> bool:
        return self.status == OperationStatus.APPLIED

    @classmethod
    def from_error(cls, error: LedgerError) -> "OperationResult":
        status = OperationStatus.SKIPPED if isinstance(error, DuplicateDividend) else OperationStatus.REJECTED
        return cls(status=status, reason=error.reason, message=error.message)


@dataclass
class DividendCheckSummary:
    account_id: int
    dividends_found: int = 0
    dividends_created: int = 0
    transactions_created: int = 0
    skipped_existing: int = 0
    skipped_not_owned: int = 0
    new_dividends: list[DividendRecord] = field(default_factory=list)
    reason: ReasonCode | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None


def _to_decimal(value: Any, name: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidTransaction(f"{name} must be a number") from exc
    if not number.is_finite():
        raise InvalidTransaction(f"{name} must be a finite number")
    return number


def _normalize_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper()


def _to_input(row: StockTransaction) -> TransactionInput:
    return TransactionInput(
        id=row.id,
        account_id=row.account_id,
        symbol=row.symbol,
        kind=TransactionKind(row.type),
        shares=Decimal(row.shares),
        price=Decimal(row.price),
        date=row.trade_date,
        fees=Decimal(row.fees or 0),
    )


def _to_record(row: Dividend) -> DividendRecord:
    return DividendRecord(
        account_id=row.account_id,
        symbol=row.symbol,
        ex_date=row.ex_date,
        pay_date=row.pay_date,
        amount_per_share=Decimal(row.amount_per_share),
        shares_held=Decimal(row.shares_held),
        gross_amount=Decimal(row.gross_amount),
        tax_rate=Decimal(row.tax_rate),
        tax_amount=Decimal(row.tax_amount),
        net_amount=Decimal(row.net_amount),
        transaction_created=bool(row.transaction_created),
        id=row.id,
    )


def _to_snapshot(row: Holding) -> HoldingSnapshot:
    return HoldingSnapshot(
        account_id=row.account_id,
        symbol=row.symbol,
        shares=Decimal(row.shares),
        avg_cost=Decimal(row.avg_cost),
    )


def _cash_effect(tx: TransactionInput) -> tuple[str, Decimal]:
    """Cash direction and amount recorded when ``tx`` was created."""

    gross = tx.shares * tx.price
    if tx.kind == TransactionKind.BUY:
        return "outflow", round_currency(gross + tx.fees)
    return "inflow", round_currency(gross - tx.fees)


class LedgerService:
    """Async facade over the ledger store and the pure engines."""

    def __init__(
        self,
        database: Database,
        price_service: PriceService,
        settings: AppSettings | None = None,
    ):
        self.database = database
        self.price_service = price_service
        self.settings = settings or get_settings()
        # Entries disappear once no coroutine holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[Hashable, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock(self, *key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------

    async def _get_account(self, session: AsyncSession, account_id: int) -> Account:
        account = await session.get(Account, account_id)
        if account is None:
            raise RecordNotFound(f"Account {account_id} not found")
        return account

    async def _load_ledger(
        self,
        session: AsyncSession,
        account_id: int,
        symbol: str | None = None,
    ) -> list[TransactionInput]:
        stmt = select(StockTransaction).where(StockTransaction.account_id == account_id)
        if symbol is not None:
            stmt = stmt.where(StockTransaction.symbol == symbol)
        rows = (await session.execute(stmt)).scalars().all()
        return [_to_input(row) for row in rows]

    async def _load_dividends(self, session: AsyncSession, account_id: int | None = None) -> list[DividendRecord]:
        stmt = select(Dividend)
        if account_id is not None:
            stmt = stmt.where(Dividend.account_id == account_id)
        rows = (await session.execute(stmt)).scalars().all()
        return [_to_record(row) for row in rows]

    async def _write_holding(self, session: AsyncSession, snapshot: HoldingSnapshot) -> None:
        stmt = select(Holding).where(
            Holding.account_id == snapshot.account_id,
            Holding.symbol == snapshot.symbol,
        )
        row = (await session.execute(stmt)).scalars().first()
        if row is None:
            row = Holding(account_id=snapshot.account_id, symbol=snapshot.symbol)
            session.add(row)
        row.shares = snapshot.shares
        row.avg_cost = snapshot.avg_cost
        await session.flush()

    async def _replay(self, session: AsyncSession, account_id: int, symbol: str) -> HoldingSnapshot:
        ledger = await self._load_ledger(session, account_id, symbol)
        snapshot = replay_holding(ledger, account_id=account_id, symbol=symbol)
        await self._write_holding(session, snapshot)
        return snapshot

    def _record_cash(
        self,
        session: AsyncSession,
        account_id: int,
        kind: str,
        amount: Decimal,
        entry_date: date,
        description: str,
        source: str,
    ) -> CashTransaction:
        row = CashTransaction(
            account_id=account_id,
            type=kind,
            amount=round_currency(amount),
            entry_date=entry_date,
            description=description,
            source=source,
        )
        session.add(row)
        return row

    def _rejected(self, operation: str, error: LedgerError) -> OperationResult:
        result = OperationResult.from_error(error)
        logger.warning("%s %s: %s (%s)", operation, result.status.value, error.message, error.reason.value)
        return result

    # ------------------------------------------------------------------
    # Accounts and trades
    # ------------------------------------------------------------------

    async def create_account(self, user_id: str, name: str, account_type: str = "stock") -> int:
        async with self.database.session() as session:
            account = Account(user_id=user_id, name=name, type=account_type, currency=self.settings.base_currency)
            session.add(account)
            await session.commit()
            return account.id

    async def buy(
        self,
        account_id: int,
        symbol: str,
        shares: Any,
        price: Any,
        fees: Any = 0,
        trade_date: date | None = None,
    ) -> OperationResult:
        """Record a purchase, its cash outflow and the replayed holding."""

        symbol = _normalize_symbol(symbol)
        trade_date = trade_date or date.today()
        async with self._lock(account_id, symbol):
            with tracer.start_as_current_span("ledger.buy") as span:
                span.set_attribute("ledger.account_id", account_id)
                span.set_attribute("ledger.symbol", symbol)
                try:
                    async with self.database.session() as session:
                        await self._get_account(session, account_id)
                        draft = TransactionInput(
                            id=0,
                            account_id=account_id,
                            symbol=symbol,
                            kind=TransactionKind.BUY,
                            shares=_to_decimal(shares, "shares"),
                            price=_to_decimal(price, "price"),
                            date=trade_date,
                            fees=_to_decimal(fees, "fees"),
                        )
                        validate_transaction(draft)
                        row = StockTransaction(
                            account_id=account_id,
                            symbol=symbol,
                            type=TransactionKind.BUY.value,
                            shares=draft.shares,
                            price=draft.price,
                            fees=draft.fees,
                            trade_date=trade_date,
                        )
                        session.add(row)
                        kind, amount = _cash_effect(draft)
                        self._record_cash(
                            session,
                            account_id,
                            kind,
                            amount,
                            trade_date,
                            f"Buy {draft.shares} {symbol} @ {draft.price}",
                            "stock_trade",
                        )
                        await session.flush()
                        snapshot = await self._replay(session, account_id, symbol)
                        await session.commit()
                except LedgerError as exc:
                    return self._rejected("buy", exc)
        logger.info("Bought %s %s in account %s; holding now %s", draft.shares, symbol, account_id, snapshot.shares)
        return OperationResult(OperationStatus.APPLIED, transaction_id=row.id, holding=snapshot)

    async def sell(
        self,
        account_id: int,
        symbol: str,
        shares: Any,
        price: Any,
        fees: Any = 0,
        trade_date: date | None = None,
    ) -> OperationResult:
        """Record a sale after checking it against the replayed position.

        A request within ``sell_epsilon`` above the held amount sells the
        whole position.
        """

        symbol = _normalize_symbol(symbol)
        trade_date = trade_date or date.today()
        epsilon = self.settings.sell_epsilon
        async with self._lock(account_id, symbol):
            with tracer.start_as_current_span("ledger.sell") as span:
                span.set_attribute("ledger.account_id", account_id)
                span.set_attribute("ledger.symbol", symbol)
                try:
                    async with self.database.session() as session:
                        await self._get_account(session, account_id)
                        ledger = await self._load_ledger(session, account_id, symbol)
                        held = replay_holding(ledger).shares
                        quantity = resolve_sell_quantity(held, _to_decimal(shares, "shares"), epsilon=epsilon)
                        row = StockTransaction(
                            account_id=account_id,
                            symbol=symbol,
                            type=TransactionKind.SELL.value,
                            shares=quantity,
                            price=_to_decimal(price, "price"),
                            fees=_to_decimal(fees, "fees"),
                            trade_date=trade_date,
                        )
                        session.add(row)
                        await session.flush()
                        recorded = TransactionInput(
                            id=row.id,
                            account_id=account_id,
                            symbol=symbol,
                            kind=TransactionKind.SELL,
                            shares=quantity,
                            price=row.price,
                            date=trade_date,
                            fees=row.fees,
                        )
                        validate_transaction(recorded)
                        # A backdated sell must also fit the position held on its own date.
                        validate_ledger([*ledger, recorded], epsilon=epsilon)
                        kind, amount = _cash_effect(recorded)
                        self._record_cash(
                            session,
                            account_id,
                            kind,
                            amount,
                            trade_date,
                            f"Sell {quantity} {symbol} @ {recorded.price}",
                            "stock_trade",
                        )
                        snapshot = await self._replay(session, account_id, symbol)
                        await session.commit()
                except LedgerError as exc:
                    return self._rejected("sell", exc)
        logger.info("Sold %s %s in account %s; holding now %s", quantity, symbol, account_id, snapshot.shares)
        return OperationResult(OperationStatus.APPLIED, transaction_id=row.id, holding=snapshot)

    async def _transaction_key(self, transaction_id: int) -> tuple[int, str]:
        async with self.database.session() as session:
            row = await session.get(StockTransaction, transaction_id)
            if row is None:
                raise RecordNotFound(f"Transaction {transaction_id} not found")
            return row.account_id, row.symbol

    async def update_transaction(
        self,
        transaction_id: int,
        *,
        shares: Any = None,
        price: Any = None,
        fees: Any = None,
        trade_date: date | None = None,
    ) -> OperationResult:
        """Edit a transaction if the edited ledger never dips below zero."""

        try:
            account_id, symbol = await self._transaction_key(transaction_id)
        except LedgerError as exc:
            return self._rejected("update", exc)

        async with self._lock(account_id, symbol):
            with tracer.start_as_current_span("ledger.update_transaction") as span:
                span.set_attribute("ledger.transaction_id", transaction_id)
                try:
                    async with self.database.session() as session:
                        row = await session.get(StockTransaction, transaction_id)
                        if row is None:
                            raise RecordNotFound(f"Transaction {transaction_id} not found")
                        original = _to_input(row)
                        edited = TransactionInput(
                            id=original.id,
                            account_id=account_id,
                            symbol=symbol,
                            kind=original.kind,
                            shares=_to_decimal(shares, "shares") if shares is not None else original.shares,
                            price=_to_decimal(price, "price") if price is not None else original.price,
                            date=trade_date or original.date,
                            fees=_to_decimal(fees, "fees") if fees is not None else original.fees,
                        )
                        validate_transaction(edited)
                        ledger = [tx for tx in await self._load_ledger(session, account_id, symbol) if tx.id != edited.id]
                        validate_ledger([*ledger, edited], epsilon=self.settings.sell_epsilon)
                        row.shares = edited.shares
                        row.price = edited.price
                        row.fees = edited.fees
                        row.trade_date = edited.date
                        await session.flush()
                        snapshot = await self._replay(session, account_id, symbol)
                        await session.commit()
                except LedgerError as exc:
                    return self._rejected("update", exc)
        logger.info("Updated transaction %s; %s holding now %s", transaction_id, symbol, snapshot.shares)
        return OperationResult(OperationStatus.APPLIED, transaction_id=transaction_id, holding=snapshot)

    async def delete_transaction(self, transaction_id: int) -> OperationResult:
        """Remove a transaction and record a cash entry reversing its effect."""

        try:
            account_id, symbol = await self._transaction_key(transaction_id)
        except LedgerError as exc:
            return self._rejected("delete", exc)

        async with self._lock(account_id, symbol):
            with tracer.start_as_current_span("ledger.delete_transaction") as span:
                span.set_attribute("ledger.transaction_id", transaction_id)
                try:
                    async with self.database.session() as session:
                        row = await session.get(StockTransaction, transaction_id)
                        if row is None:
                            raise RecordNotFound(f"Transaction {transaction_id} not found")
                        removed = _to_input(row)
                        remaining = [
                            tx for tx in await self._load_ledger(session, account_id, symbol) if tx.id != removed.id
                        ]
                        validate_ledger(remaining, epsilon=self.settings.sell_epsilon)
                        await session.delete(row)
                        kind, amount = _cash_effect(removed)
                        self._record_cash(
                            session,
                            account_id,
                            "inflow" if kind == "outflow" else "outflow",
                            amount,
                            date.today(),
                            f"Reversal of {removed.kind.value} {removed.shares} {symbol} on {removed.date.isoformat()}",
                            "reversal",
                        )
                        await session.flush()
                        snapshot = await self._replay(session, account_id, symbol)
                        await session.commit()
                except LedgerError as exc:
                    return self._rejected("delete", exc)
        logger.info("Deleted transaction %s; %s holding now %s", transaction_id, symbol, snapshot.shares)
        return OperationResult(OperationStatus.APPLIED, transaction_id=transaction_id, holding=snapshot)

    # ------------------------------------------------------------------
    # Holdings
    # ------------------------------------------------------------------

    async def replay_holding(self, account_id: int, symbol: str) -> HoldingSnapshot:
        symbol = _normalize_symbol(symbol)
        async with self._lock(account_id, symbol):
            with tracer.start_as_current_span("ledger.replay_holding"):
                async with self.database.session() as session:
                    snapshot = await self._replay(session, account_id, symbol)
                    await session.commit()
        return snapshot

    async def recalculate_all_holdings(self) -> list[HoldingSnapshot]:
        """Recompute every holding from its ledger, including orphaned ones."""

        async with self.database.session() as session:
            traded = await session.execute(select(StockTransaction.account_id, StockTransaction.symbol).distinct())
            stored = await session.execute(select(Holding.account_id, Holding.symbol))
            keys = sorted({tuple(key) for key in traded.all()} | {tuple(key) for key in stored.all()})

        snapshots = [await self.replay_holding(account_id, symbol) for account_id, symbol in keys]
        logger.info("Recalculated %s holdings", len(snapshots))
        return snapshots

    async def get_holdings(self, account_id: int, include_closed: bool = True) -> list[HoldingSnapshot]:
        async with self.database.session() as session:
            stmt = select(Holding).where(Holding.account_id == account_id).order_by(Holding.symbol)
            rows = (await session.execute(stmt)).scalars().all()
        snapshots = [_to_snapshot(row) for row in rows]
        if include_closed:
            return snapshots
        return [snapshot for snapshot in snapshots if snapshot.is_open]

    async def cash_balance(self, account_id: int) -> Decimal:
        """Inflows minus outflows for the account."""

        async with self.database.session() as session:
            stmt = (
                select(CashTransaction.type, func.sum(CashTransaction.amount))
                .where(CashTransaction.account_id == account_id)
                .group_by(CashTransaction.type)
            )
            totals = {kind: Decimal(str(total or 0)) for kind, total in (await session.execute(stmt)).all()}
        return round_currency(totals.get("inflow", ZERO) - totals.get("outflow", ZERO))

    # ------------------------------------------------------------------
    # Dividend tax
    # ------------------------------------------------------------------

    async def get_tax_rate(self, user_id: str) -> Decimal:
        async with self.database.session() as session:
            stmt = select(UserSetting).where(UserSetting.user_id == user_id, UserSetting.key == TAX_RATE_SETTING_KEY)
            setting = (await session.execute(stmt)).scalars().first()
        if setting is None:
            return self.settings.default_dividend_tax_rate
        try:
            return validate_tax_rate(Decimal(setting.value))
        except (InvalidOperation, LedgerError):
            logger.warning("Ignoring invalid stored tax rate %r for user %s", setting.value, user_id)
            return self.settings.default_dividend_tax_rate

    async def set_tax_rate(self, user_id: str, rate: Any) -> OperationResult:
        """Store the user's rate; existing dividend records keep their snapshot."""

        try:
            value = validate_tax_rate(rate)
        except LedgerError as exc:
            return self._rejected("set_tax_rate", exc)
        async with self.database.session() as session:
            stmt = select(UserSetting).where(UserSetting.user_id == user_id, UserSetting.key == TAX_RATE_SETTING_KEY)
            setting = (await session.execute(stmt)).scalars().first()
            if setting is None:
                session.add(UserSetting(user_id=user_id, key=TAX_RATE_SETTING_KEY, value=str(value)))
            else:
                setting.value = str(value)
            await session.commit()
        logger.info("Dividend tax rate for user %s set to %s", user_id, value)
        return OperationResult(OperationStatus.APPLIED)

    async def _insert_dividend(self, session: AsyncSession, record: DividendRecord) -> DividendRecord:
        """Insert and commit one record; the store's unique key rejects duplicates."""

        row = Dividend(
            account_id=record.account_id,
            symbol=record.symbol,
            ex_date=record.ex_date,
            pay_date=record.pay_date,
            amount_per_share=record.amount_per_share,
            shares_held=record.shares_held,
            gross_amount=record.gross_amount,
            tax_rate=record.tax_rate,
            tax_amount=record.tax_amount,
            net_amount=record.net_amount,
            transaction_created=False,
        )
        session.add(row)
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise DuplicateDividend(
                f"Dividend for {record.symbol} on {record.ex_date.isoformat()} already recorded"
            ) from exc
        return _to_record(row)

    async def record_dividend(
        self,
        account_id: int,
        symbol: str,
        ex_date: date,
        amount_per_share: Any,
        pay_date: date | None = None,
        shares_held: Any = None,
    ) -> OperationResult:
        """Record a dividend using ownership on the ex-date and the user's current rate."""

        symbol = _normalize_symbol(symbol)
        try:
            async with self.database.session() as session:
                account = await self._get_account(session, account_id)
                existing = await session.execute(
                    select(Dividend.id).where(
                        Dividend.account_id == account_id,
                        Dividend.symbol == symbol,
                        Dividend.ex_date == ex_date,
                    )
                )
                if existing.first() is not None:
                    raise DuplicateDividend(f"Dividend for {symbol} on {ex_date.isoformat()} already recorded")
                ledger = await self._load_ledger(session, account_id, symbol)
            tax_rate = await self.get_tax_rate(account.user_id)
            record = build_dividend_record(
                account_id,
                symbol,
                ex_date,
                _to_decimal(amount_per_share, "amount per share"),
                tax_rate,
                pay_date=pay_date,
                shares_held=_to_decimal(shares_held, "shares held") if shares_held is not None else None,
                transactions=ledger,
            )
            async with self.database.session() as session:
                stored = await self._insert_dividend(session, record)
        except LedgerError as exc:
            return self._rejected("record_dividend", exc)
        logger.info("Recorded %s dividend for %s: net %s", symbol, ex_date, stored.net_amount)
        return OperationResult(OperationStatus.APPLIED, dividend=stored)

    async def list_dividends(self, account_id: int | None = None) -> list[DividendRecord]:
        async with self.database.session() as session:
            records = await self._load_dividends(session, account_id)
        return sorted(records, key=lambda r: (r.ex_date, r.symbol), reverse=True)

    async def tax_summary(self, account_id: int | None = None, year: int | None = None) -> list[AnnualTaxSummary]:
        return summarize_dividend_taxes(await self.list_dividends(account_id), year=year)

    async def check_dividends(self, account_id: int, today: date | None = None) -> DividendCheckSummary:
        """Discover unrecorded dividends for open positions, then pay out due ones."""

        today = today or date.today()
        with tracer.start_as_current_span("ledger.check_dividends") as span:
            span.set_attribute("ledger.account_id", account_id)
            async with self.database.session() as session:
                try:
                    account = await self._get_account(session, account_id)
                except LedgerError as exc:
                    logger.warning("Dividend check for account %s rejected: %s", account_id, exc.message)
                    return DividendCheckSummary(account_id=account_id, reason=exc.reason, message=exc.message)
                holdings_rows = (
                    await session.execute(select(Holding).where(Holding.account_id == account_id))
                ).scalars().all()
                holdings = [_to_snapshot(row) for row in holdings_rows]
                ledger = await self._load_ledger(session, account_id)
                existing_keys: list[DividendKey] = [record.key for record in await self._load_dividends(session, account_id)]
            tax_rate = await self.get_tax_rate(account.user_id)

            open_symbols = [h.symbol for h in holdings if h.is_open and h.symbol]
            start = (pd.Timestamp(today) - pd.DateOffset(years=self.settings.dividend_history_years)).date()
            histories = await asyncio.gather(
                *(self.price_service.get_dividend_history(symbol, start, today) for symbol in open_symbols)
            )
            plan = plan_dividend_discovery(
                account_id,
                holdings,
                group_by_symbol(ledger),
                dict(zip(open_symbols, histories)),
                existing_keys,
                tax_rate,
                pay_date_offset_days=self.settings.dividend_pay_date_offset_days,
            )
            summary = DividendCheckSummary(
                account_id=account_id,
                dividends_found=plan.dividends_found,
                skipped_existing=plan.skipped_existing,
                skipped_not_owned=plan.skipped_not_owned,
            )
            for record in plan.records:
                try:
                    async with self.database.session() as session:
                        stored = await self._insert_dividend(session, record)
                except DuplicateDividend:
                    # Recorded concurrently since the existing keys were read.
                    summary.skipped_existing += 1
                    continue
                summary.new_dividends.append(stored)
            summary.dividends_created = len(summary.new_dividends)
            summary.transactions_created = await self.create_due_dividend_transactions(account_id, today)
            span.set_attribute("ledger.dividends_created", summary.dividends_created)

        logger.info(
            "Dividend check for account %s: %s found, %s created, %s paid out",
            account_id,
            summary.dividends_found,
            summary.dividends_created,
            summary.transactions_created,
        )
        return summary

    async def create_due_dividend_transactions(self, account_id: int | None = None, today: date | None = None) -> int:
        """Emit one cash inflow per dividend whose pay date has passed.

        The ``transaction_created`` flag is flipped with a conditional update
        in the same commit as the cash entry, so a record is paid at most once
        even if two payout passes overlap.
        """

        today = today or date.today()
        created = 0
        async with self._lock("dividend-payout", account_id):
            async with self.database.session() as session:
                stmt = select(Dividend).where(
                    Dividend.transaction_created.is_(False),
                    Dividend.pay_date.is_not(None),
                    Dividend.pay_date <= today,
                )
                if account_id is not None:
                    stmt = stmt.where(Dividend.account_id == account_id)
                due = [_to_record(row) for row in (await session.execute(stmt)).scalars().all()]

                for record in sorted(due, key=lambda r: (r.pay_date, r.symbol)):
                    claimed = await session.execute(
                        update(Dividend)
                        .where(Dividend.id == record.id, Dividend.transaction_created.is_(False))
                        .values(transaction_created=True)
                        .execution_options(synchronize_session=False)
                    )
                    if claimed.rowcount != 1:
                        continue
                    self._record_cash(
                        session,
                        record.account_id,
                        "inflow",
                        record.net_amount,
                        record.pay_date,
                        f"Dividend: {record.symbol} ({record.shares_held} shares @ {record.amount_per_share})",
                        "dividend",
                    )
                    await session.commit()
                    created += 1
        if created:
            logger.info("Created %s dividend cash transactions", created)
        return created

    # ------------------------------------------------------------------
    # Valuation and performance
    # ------------------------------------------------------------------

    async def account_portfolio(self, account_id: int) -> AccountPortfolio:
        holdings = await self.get_holdings(account_id, include_closed=False)
        quotes = await self.price_service.get_quotes(h.symbol for h in holdings if h.symbol)
        return summarize_account(holdings, quotes, await self.cash_balance(account_id))

    async def portfolio_summary(self, user_id: str) -> PortfolioSummary:
        """Totals across every account owned by ``user_id``."""

        async with self.database.session() as session:
            stmt = select(Holding).join(Account, Account.id == Holding.account_id).where(Account.user_id == user_id)
            holdings = [_to_snapshot(row) for row in (await session.execute(stmt)).scalars().all()]
        quotes = await self.price_service.get_quotes(h.symbol for h in holdings if h.is_open and h.symbol)
        return aggregate_portfolio(holdings, quotes)

    async def account_performance(
        self,
        account_id: int,
        period: str = "1y",
        today: date | None = None,
    ) -> PerformanceResponse:
        """TWR and benchmark series for an account over a period preset.

        All price histories are fetched before the computation starts so it
        runs over one consistent snapshot.
        """

        preset = parse_period(period)
        window = resolve_period(preset, today or date.today())
        benchmark_symbol = self.settings.benchmark_symbol
        with tracer.start_as_current_span("ledger.account_performance") as span:
            span.set_attribute("ledger.account_id", account_id)
            span.set_attribute("ledger.period", preset.value)
            async with self.database.session() as session:
                ledger = await self._load_ledger(session, account_id)
                dividends = await self._load_dividends(session, account_id)
            if not ledger:
                result = PerformanceResult(reason=ReasonCode.EMPTY_LEDGER)
                return PerformanceResponse.from_result(result, period=preset.value, benchmark_symbol=benchmark_symbol)

            held_at_start = replay_positions(tx for tx in ledger if tx.date < window.start)
            symbols = sorted(
                {symbol for symbol, qty in held_at_start.items() if qty > 0}
                | {tx.symbol for tx in ledger if window.start <= tx.date <= window.end}
            )
            histories, benchmark = await asyncio.gather(
                self.price_service.get_price_histories(symbols, window.start, window.end),
                self.price_service.get_historical_prices(benchmark_symbol, window.start, window.end),
            )
            result = compute_twr(
                group_by_symbol(ledger),
                histories,
                benchmark,
                window.start,
                window.end,
                max_points=window.max_points,
                dividends=dividends,
            )
            span.set_attribute("ledger.points", len(result.portfolio))
            span.set_attribute("ledger.skipped_dates", len(result.skipped_dates))

        if result.reason is not None:
            logger.info("Performance for account %s (%s): %s", account_id, preset.value, result.reason.value)
        return PerformanceResponse.from_result(result, period=preset.value, benchmark_symbol=benchmark_symbol)


def group_by_symbol(transactions: Iterable[TransactionInput]) -> dict[str, list[TransactionInput]]:
    grouped: dict[str, list[TransactionInput]] = defaultdict(list)
    for tx in transactions:
        grouped[tx.symbol].append(tx)
    return dict(grouped)


__all__ = [
    "LedgerService",
    "OperationResult",
    "OperationStatus",
    "DividendCheckSummary",
    "TAX_RATE_SETTING_KEY",
]
