"""Mark replayed holdings to market with live quotes."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping

from .prices import Quote
from .replay import ZERO, HoldingSnapshot
from .tax import round_currency

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class HoldingMetrics:
    symbol: str
    name: str
    shares: Decimal
    avg_cost: Decimal
    current_price: Decimal
    market_value: Decimal
    cost_basis: Decimal
    gain: Decimal
    gain_percent: Decimal
    day_change: Decimal
    day_change_percent: Decimal


@dataclass(frozen=True)
class AccountPortfolio:
    cash_balance: Decimal
    total_value: Decimal
    total_cost: Decimal
    total_gain: Decimal
    total_gain_percent: Decimal
    day_change: Decimal
    day_change_percent: Decimal
    holdings: list[HoldingMetrics] = field(default_factory=list)


@dataclass(frozen=True)
class PortfolioSummary:
    total_value: Decimal
    total_cost: Decimal
    total_gain: Decimal
    total_gain_percent: Decimal
    day_change: Decimal
    day_change_percent: Decimal
    holdings_count: int


def _percent_of(part: Decimal, whole: Decimal) -> Decimal:
    return part / whole * HUNDRED if whole > 0 else ZERO


def _day_change_percent(total_value: Decimal, day_change: Decimal) -> Decimal:
    previous_value = total_value - day_change
    if total_value > 0 and previous_value != 0:
        return day_change / previous_value * HUNDRED
    return ZERO


def holding_metrics(holding: HoldingSnapshot, quote: Quote | None) -> HoldingMetrics:
    """Per-holding valuation; a missing quote prices the position at zero."""

    current_price = quote.price if quote else ZERO
    market_value = holding.shares * current_price
    cost_basis = holding.cost_basis
    gain = market_value - cost_basis
    return HoldingMetrics(
        symbol=holding.symbol or "",
        name=(quote.name if quote and quote.name else holding.symbol) or "",
        shares=holding.shares,
        avg_cost=holding.avg_cost,
        current_price=current_price,
        market_value=market_value,
        cost_basis=cost_basis,
        gain=gain,
        gain_percent=_percent_of(gain, cost_basis),
        day_change=(quote.change if quote else ZERO) * holding.shares,
        day_change_percent=quote.change_percent if quote else ZERO,
    )


def summarize_account(
    holdings: Iterable[HoldingSnapshot],
    quotes: Mapping[str, Quote],
    cash_balance: Decimal = ZERO,
) -> AccountPortfolio:
    metrics = [holding_metrics(h, quotes.get(h.symbol or "")) for h in holdings if h.shares > 0]
    total_value = sum((m.market_value for m in metrics), ZERO)
    total_cost = sum((m.cost_basis for m in metrics), ZERO)
    day_change = sum((m.day_change for m in metrics), ZERO)
    total_gain = total_value - total_cost
    return AccountPortfolio(
        cash_balance=round_currency(cash_balance),
        total_value=round_currency(total_value),
        total_cost=round_currency(total_cost),
        total_gain=round_currency(total_gain),
        total_gain_percent=round_currency(_percent_of(total_gain, total_cost)),
        day_change=round_currency(day_change),
        day_change_percent=round_currency(_day_change_percent(total_value, day_change)),
        holdings=metrics,
    )


def aggregate_portfolio(
    holdings: Iterable[HoldingSnapshot],
    quotes: Mapping[str, Quote],
) -> PortfolioSummary:
    """Totals across accounts; unquoted holdings are valued at their average cost.

    Holdings of the same symbol in different accounts are not merged.
    """

    total_value = total_cost = day_change = ZERO
    count = 0
    for holding in holdings:
        if holding.shares <= 0:
            continue
        count += 1
        quote = quotes.get(holding.symbol or "")
        price = quote.price if quote and quote.price else holding.avg_cost
        total_value += holding.shares * price
        total_cost += holding.cost_basis
        day_change += (quote.change if quote else ZERO) * holding.shares
    total_gain = total_value - total_cost
    return PortfolioSummary(
        total_value=round_currency(total_value),
        total_cost=round_currency(total_cost),
        total_gain=round_currency(total_gain),
        total_gain_percent=round_currency(_percent_of(total_gain, total_cost)),
        day_change=round_currency(day_change),
        day_change_percent=round_currency(_day_change_percent(total_value, day_change)),
        holdings_count=count,
    )


__all__ = [
    "HoldingMetrics",
    "AccountPortfolio",
    "PortfolioSummary",
    "holding_metrics",
    "summarize_account",
    "aggregate_portfolio",
]
