"""Dividend entitlement, tax snapshot and automated discovery planning."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from finance_tracker.errors import InsufficientOwnership, InvalidTransaction

from .ownership import shares_held_as_of
from .replay import ZERO, HoldingSnapshot, TransactionInput
from .tax import calculate_dividend_tax

logger = logging.getLogger(__name__)

DividendKey = tuple[int, str, date]


@dataclass(frozen=True)
class DividendEvent:
    """A declared dividend as reported by the quote provider."""

    ex_date: date
    amount_per_share: Decimal


@dataclass(frozen=True)
class DividendRecord:
    account_id: int
    symbol: str
    ex_date: date
    pay_date: date | None
    amount_per_share: Decimal
    shares_held: Decimal
    gross_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    transaction_created: bool = False
    id: int | None = None

    @property
    def key(self) -> DividendKey:
        return (self.account_id, self.symbol, self.ex_date)

    def is_payable(self, today: date) -> bool:
        return not self.transaction_created and self.pay_date is not None and self.pay_date <= today


def estimate_pay_date(ex_date: date, offset_days: int) -> date:
    return ex_date + timedelta(days=offset_days)


def build_dividend_record(
    account_id: int,
    symbol: str,
    ex_date: date,
    amount_per_share: Decimal,
    tax_rate: Decimal,
    *,
    pay_date: date | None = None,
    shares_held: Decimal | None = None,
    transactions: Iterable[TransactionInput] = (),
) -> DividendRecord:
    """Compute a dividend record, snapshotting ``tax_rate`` into it.

    When ``shares_held`` is omitted the entitlement is reconstructed from the
    ledger as of ``ex_date``; no ownership on that date is a rejection.
    """

    if amount_per_share <= 0:
        raise InvalidTransaction("amount per share must be > 0")
    if shares_held is None:
        shares_held = shares_held_as_of(transactions, ex_date)
    if shares_held <= 0:
        raise InsufficientOwnership(
            f"No {symbol} shares held on ex-date {ex_date.isoformat()}"
        )
    calc = calculate_dividend_tax(amount_per_share, shares_held, tax_rate)
    return DividendRecord(
        account_id=account_id,
        symbol=symbol.upper(),
        ex_date=ex_date,
        pay_date=pay_date,
        amount_per_share=Decimal(amount_per_share),
        shares_held=Decimal(shares_held),
        gross_amount=calc.gross_amount,
        tax_rate=calc.tax_rate,
        tax_amount=calc.tax_amount,
        net_amount=calc.net_amount,
    )


@dataclass
class DiscoveryPlan:
    records: list[DividendRecord] = field(default_factory=list)
    dividends_found: int = 0
    skipped_existing: int = 0
    skipped_not_owned: int = 0


def plan_dividend_discovery(
    account_id: int,
    holdings: Iterable[HoldingSnapshot],
    transactions_by_symbol: Mapping[str, Sequence[TransactionInput]],
    history_by_symbol: Mapping[str, Sequence[DividendEvent]],
    existing_keys: Iterable[DividendKey],
    tax_rate: Decimal,
    *,
    pay_date_offset_days: int,
) -> DiscoveryPlan:
    """Decide which provider dividends should become new records.

    Only open positions are checked. Each unseen ex-date is valued with the
    shares held on that date; ex-dates with no ownership are skipped.
    """

    plan = DiscoveryPlan()
    seen = set(existing_keys)
    for holding in holdings:
        if holding.shares <= 0 or holding.symbol is None:
            continue
        symbol = holding.symbol
        ledger = transactions_by_symbol.get(symbol, ())
        for event in history_by_symbol.get(symbol, ()):
            plan.dividends_found += 1
            key = (account_id, symbol, event.ex_date)
            if key in seen:
                plan.skipped_existing += 1
                continue
            held = shares_held_as_of(ledger, event.ex_date)
            if held <= ZERO or event.amount_per_share <= 0:
                plan.skipped_not_owned += 1
                continue
            record = build_dividend_record(
                account_id,
                symbol,
                event.ex_date,
                event.amount_per_share,
                tax_rate,
                pay_date=estimate_pay_date(event.ex_date, pay_date_offset_days),
                shares_held=held,
            )
            plan.records.append(record)
            seen.add(key)
    logger.debug(
        "Discovery for account %s: %s found, %s new",
        account_id,
        plan.dividends_found,
        len(plan.records),
    )
    return plan


def payable_dividends(records: Iterable[DividendRecord], today: date) -> list[DividendRecord]:
    """Records whose pay date has passed and that have not produced a cash entry."""

    return sorted(
        (record for record in records if record.is_payable(today)),
        key=lambda r: (r.pay_date, r.symbol),
    )


__all__ = [
    "DividendEvent",
    "DividendRecord",
    "DividendKey",
    "DiscoveryPlan",
    "estimate_pay_date",
    "build_dividend_record",
    "plan_dividend_discovery",
    "payable_dividends",
]
