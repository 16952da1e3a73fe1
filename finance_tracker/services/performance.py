"""Time-weighted return of a portfolio against a benchmark.

Raw portfolio value is dominated by the size and timing of buys and sells,
so it cannot be compared to an index. The timeline is split into
sub-periods bounded by cash flows; within a sub-period the basket of
holdings is fixed and its simple return is chained into the cumulative
multiplier ``prod(1 + r_i)``.

The computation is a fold over timeline ticks. The benchmark's trading
dates form the calendar; each date becomes either a ``PriceTick`` or, when
ledger transactions fall due on or before it, a ``CashFlowTick``. Every tick
maps an immutable ``TWRState`` to the next one and optionally emits a point.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Iterator, Mapping, Sequence, Union

from finance_tracker.errors import ReasonCode

from .dividends import DividendRecord
from .replay import ZERO, TransactionInput, TransactionKind, replay_positions, sort_transactions

logger = logging.getLogger(__name__)

ONE = Decimal("1")
HUNDRED = Decimal("100")

PriceHistory = Mapping[date, Decimal]


@dataclass(frozen=True)
class PerformancePoint:
    date: date
    value: Decimal
    change_percent: Decimal


@dataclass(frozen=True)
class PerformanceEvent:
    """Chart marker for a trade or dividend inside the rendered window."""

    date: date
    type: str
    symbol: str
    shares: Decimal | None = None
    price: Decimal | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class PerformanceResult:
    portfolio: list[PerformancePoint] = field(default_factory=list)
    benchmark: list[PerformancePoint] = field(default_factory=list)
    events: list[PerformanceEvent] = field(default_factory=list)
    # Reference dates that produced no portfolio point.
    skipped_dates: list[date] = field(default_factory=list)
    reason: ReasonCode | None = None


@dataclass(frozen=True)
class Valuation:
    value: Decimal
    has_any_holding: bool
    missing_price: bool

    @property
    def priced(self) -> bool:
        return self.has_any_holding and not self.missing_price


@dataclass(frozen=True)
class PriceTick:
    date: date


@dataclass(frozen=True)
class CashFlowTick:
    date: date
    transactions: tuple[TransactionInput, ...]


Tick = Union[PriceTick, CashFlowTick]


@dataclass(frozen=True)
class TWRState:
    cumulative: Decimal = ONE
    sub_period_start_value: Decimal | None = None
    shares: Mapping[str, Decimal] = field(default_factory=dict)


def to_percent(multiplier: Decimal) -> Decimal:
    return (multiplier - ONE) * HUNDRED


def value_portfolio(
    shares: Mapping[str, Decimal],
    prices: Mapping[str, PriceHistory],
    day: date,
) -> Valuation:
    """Value held shares at ``day``'s closes; any missing close spoils the day."""

    value = ZERO
    has_any_holding = False
    for symbol, quantity in shares.items():
        if quantity <= 0:
            continue
        has_any_holding = True
        price = prices.get(symbol, {}).get(day)
        if price is None:
            return Valuation(value=value, has_any_holding=True, missing_price=True)
        value += quantity * price
    return Valuation(value=value, has_any_holding=has_any_holding, missing_price=False)


def apply_cash_flows(
    shares: Mapping[str, Decimal],
    transactions: Iterable[TransactionInput],
) -> dict[str, Decimal]:
    updated = dict(shares)
    for tx in transactions:
        current = updated.get(tx.symbol, ZERO)
        if tx.kind == TransactionKind.BUY:
            updated[tx.symbol] = current + tx.shares
        else:
            updated[tx.symbol] = max(ZERO, current - tx.shares)
    return updated


def build_timeline(
    reference_dates: Sequence[date],
    transactions: Iterable[TransactionInput],
) -> Iterator[Tick]:
    """Merge trading dates and cash flows into one ordered tick stream.

    A transaction dated on a non-trading day is applied at the next
    reference date.
    """

    pending = sort_transactions(transactions)
    index = 0
    for day in reference_dates:
        due: list[TransactionInput] = []
        while index < len(pending) and pending[index].date <= day:
            due.append(pending[index])
            index += 1
        if due:
            yield CashFlowTick(day, tuple(due))
        else:
            yield PriceTick(day)


def step(
    state: TWRState,
    tick: Tick,
    prices: Mapping[str, PriceHistory],
) -> tuple[TWRState, PerformancePoint | None]:
    if isinstance(tick, CashFlowTick):
        return _step_cash_flow(state, tick, prices)
    valuation = value_portfolio(state.shares, prices, tick.date)
    if not valuation.priced:
        return state, None
    anchor = state.sub_period_start_value
    if anchor is None:
        anchor = valuation.value
    running = state.cumulative * valuation.value / anchor if anchor > 0 else state.cumulative
    point = PerformancePoint(tick.date, valuation.value, to_percent(running))
    return replace(state, sub_period_start_value=anchor), point


def _step_cash_flow(
    state: TWRState,
    tick: CashFlowTick,
    prices: Mapping[str, PriceHistory],
) -> tuple[TWRState, PerformancePoint | None]:
    # Close the running sub-period at pre-transaction holdings.
    cumulative = state.cumulative
    anchor = state.sub_period_start_value
    pre = value_portfolio(state.shares, prices, tick.date)
    if pre.priced and anchor is not None and anchor > 0:
        cumulative = cumulative * pre.value / anchor

    shares = apply_cash_flows(state.shares, tick.transactions)
    post = value_portfolio(shares, prices, tick.date)
    if not post.priced:
        # The next priced date anchors the new sub-period.
        return TWRState(cumulative=cumulative, sub_period_start_value=None, shares=shares), None
    next_state = TWRState(cumulative=cumulative, sub_period_start_value=post.value, shares=shares)
    return next_state, PerformancePoint(tick.date, post.value, to_percent(cumulative))


def fold_timeline(
    ticks: Iterable[Tick],
    prices: Mapping[str, PriceHistory],
    initial_shares: Mapping[str, Decimal],
) -> tuple[TWRState, list[PerformancePoint], list[date]]:
    state = TWRState(shares=dict(initial_shares))
    points: list[PerformancePoint] = []
    skipped: list[date] = []
    for tick in ticks:
        state, point = step(state, tick, prices)
        if point is None:
            skipped.append(tick.date)
        else:
            points.append(point)
    return state, points, skipped


def trim_reference_dates(dates: Sequence[date], max_points: int | None) -> list[date]:
    ordered = sorted(dates)
    if max_points is not None and len(ordered) > max_points:
        return ordered[-max_points:]
    return ordered


def normalize_benchmark(series: Sequence[tuple[date, Decimal]]) -> list[PerformancePoint]:
    """Plain percentage change from the first rendered benchmark close."""

    if not series:
        return []
    first = series[0][1]
    return [
        PerformancePoint(
            day,
            value,
            (value - first) / first * HUNDRED if first != 0 else ZERO,
        )
        for day, value in series
    ]


def collect_events(
    transactions: Iterable[TransactionInput],
    dividends: Iterable[DividendRecord],
    start: date,
    end: date,
) -> list[PerformanceEvent]:
    events = [
        PerformanceEvent(
            date=tx.date,
            type=tx.kind.value,
            symbol=tx.symbol,
            shares=tx.shares,
            price=tx.price,
        )
        for tx in sort_transactions(transactions)
        if start <= tx.date <= end
    ]
    events.extend(
        PerformanceEvent(
            date=dividend.ex_date,
            type="dividend",
            symbol=dividend.symbol,
            amount=dividend.net_amount,
        )
        for dividend in sorted(dividends, key=lambda d: (d.ex_date, d.symbol))
        if start <= dividend.ex_date <= end
    )
    return sorted(events, key=lambda e: e.date)


def compute_twr(
    ledger_by_symbol: Mapping[str, Sequence[TransactionInput]],
    price_history_by_symbol: Mapping[str, PriceHistory],
    benchmark_history: PriceHistory,
    period_start: date,
    period_end: date,
    *,
    max_points: int | None = None,
    dividends: Iterable[DividendRecord] = (),
) -> PerformanceResult:
    """Compute portfolio TWR and benchmark change series for a window.

    Transactions before ``period_start`` set the starting position; those
    inside ``[period_start, period_end]`` are cash flows. Dates that cannot
    be priced are skipped rather than failing the series.
    """

    benchmark = {d: v for d, v in benchmark_history.items() if period_start <= d <= period_end}
    if not benchmark:
        logger.debug("No benchmark prices between %s and %s", period_start, period_end)
        return PerformanceResult(reason=ReasonCode.EMPTY_BENCHMARK)

    transactions = [tx for txs in ledger_by_symbol.values() for tx in txs]
    if not transactions:
        return PerformanceResult(reason=ReasonCode.EMPTY_LEDGER)

    before = [tx for tx in transactions if tx.date < period_start]
    in_period = [tx for tx in transactions if period_start <= tx.date <= period_end]
    starting_shares = {symbol: qty for symbol, qty in replay_positions(before).items() if qty > 0}

    reference_dates = trim_reference_dates(list(benchmark), max_points)
    ticks = build_timeline(reference_dates, in_period)
    _, portfolio, skipped = fold_timeline(ticks, price_history_by_symbol, starting_shares)
    if skipped:
        logger.debug("Skipped %s unpriced dates", len(skipped))
    reason = None
    if not portfolio and (starting_shares or in_period):
        reason = ReasonCode.MISSING_PRICE_DATA

    benchmark_series = normalize_benchmark([(point.date, benchmark[point.date]) for point in portfolio])
    events = collect_events(transactions, dividends, reference_dates[0], reference_dates[-1])
    return PerformanceResult(
        portfolio=portfolio,
        benchmark=benchmark_series,
        events=events,
        skipped_dates=skipped,
        reason=reason,
    )


__all__ = [
    "PerformancePoint",
    "PerformanceEvent",
    "PerformanceResult",
    "Valuation",
    "PriceTick",
    "CashFlowTick",
    "TWRState",
    "value_portfolio",
    "apply_cash_flows",
    "build_timeline",
    "step",
    "fold_timeline",
    "trim_reference_dates",
    "normalize_benchmark",
    "collect_events",
    "compute_twr",
]
