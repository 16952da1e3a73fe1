"""Cost-basis replay over a stock transaction ledger.

Holdings are never patched incrementally: every create, update or delete of
a transaction for an ``(account, symbol)`` pair is followed by a full replay
of that pair's ledger in ``(date, id)`` order. The fold keeps a running share
count and total cost; buys add ``shares * price + fees`` to the cost, sells
keep the average cost of the remaining shares unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, getcontext
from enum import Enum
from typing import Iterable, Sequence

from finance_tracker.errors import InvalidTransaction, OversellRequested

getcontext().prec = 28

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DEFAULT_SELL_EPSILON = Decimal("0.0001")


class TransactionKind(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class TransactionInput:
    """A single buy or sell event as read from the ledger store."""

    id: int
    account_id: int
    symbol: str
    kind: TransactionKind
    shares: Decimal
    price: Decimal
    date: date
    fees: Decimal = ZERO

    @property
    def sort_key(self) -> tuple[date, int]:
        return (self.date, self.id)

    @property
    def signed_shares(self) -> Decimal:
        return self.shares if self.kind == TransactionKind.BUY else -self.shares


@dataclass(frozen=True)
class HoldingSnapshot:
    """Derived position for an ``(account, symbol)`` pair."""

    account_id: int | None
    symbol: str | None
    shares: Decimal
    avg_cost: Decimal

    @property
    def cost_basis(self) -> Decimal:
        return self.shares * self.avg_cost

    @property
    def is_open(self) -> bool:
        return self.shares > 0


@dataclass(frozen=True)
class _Position:
    shares: Decimal = ZERO
    total_cost: Decimal = ZERO

    @property
    def avg_cost(self) -> Decimal:
        return self.total_cost / self.shares if self.shares > 0 else ZERO


def sort_transactions(transactions: Iterable[TransactionInput]) -> list[TransactionInput]:
    """Return transactions in ledger order; ``id`` breaks same-day ties."""

    return sorted(transactions, key=lambda tx: tx.sort_key)


def validate_transaction(tx: TransactionInput) -> None:
    if not tx.symbol or not tx.symbol.strip():
        raise InvalidTransaction("symbol must not be empty")
    if tx.shares <= 0:
        raise InvalidTransaction("shares must be > 0")
    if tx.price < 0:
        raise InvalidTransaction("price must be >= 0")
    if tx.fees < 0:
        raise InvalidTransaction("fees must be >= 0")


def _apply(position: _Position, tx: TransactionInput) -> _Position:
    if tx.kind == TransactionKind.BUY:
        return _Position(
            shares=position.shares + tx.shares,
            total_cost=position.total_cost + tx.shares * tx.price + tx.fees,
        )
    if position.shares <= 0:
        # Sell against an empty position only happens with corrupt history.
        logger.debug("Ignoring sell %s with no open shares", tx.id)
        return position
    avg_cost_before = position.total_cost / position.shares
    remaining = position.shares - tx.shares
    if remaining <= 0:
        return _Position()
    return _Position(shares=remaining, total_cost=remaining * avg_cost_before)


def fold_position(transactions: Iterable[TransactionInput]) -> _Position:
    position = _Position()
    for tx in sort_transactions(transactions):
        position = _apply(position, tx)
    return position


def replay_holding(
    transactions: Iterable[TransactionInput],
    *,
    account_id: int | None = None,
    symbol: str | None = None,
) -> HoldingSnapshot:
    """Fold a ledger into ``(shares, weighted-average cost)``.

    Shares are clamped at zero; a fully closed position resets its average
    cost to zero so a later re-open starts a fresh cost basis.
    """

    ordered = sort_transactions(transactions)
    if ordered:
        account_id = account_id if account_id is not None else ordered[0].account_id
        symbol = symbol or ordered[0].symbol
    position = fold_position(ordered)
    return HoldingSnapshot(
        account_id=account_id,
        symbol=symbol,
        shares=position.shares,
        avg_cost=position.avg_cost,
    )


def replay_positions(transactions: Iterable[TransactionInput]) -> dict[str, Decimal]:
    """Return shares held per symbol after replaying a multi-symbol ledger."""

    by_symbol: dict[str, list[TransactionInput]] = {}
    for tx in transactions:
        by_symbol.setdefault(tx.symbol, []).append(tx)
    return {symbol: fold_position(txs).shares for symbol, txs in by_symbol.items()}


def resolve_sell_quantity(
    held: Decimal,
    requested: Decimal,
    *,
    epsilon: Decimal = DEFAULT_SELL_EPSILON,
) -> Decimal:
    """Return the quantity to record for a sell request.

    Requests within ``epsilon`` above the held amount are treated as
    "sell all" and clamped; anything larger is rejected.
    """

    if requested <= 0:
        raise InvalidTransaction("shares must be > 0")
    if requested > held + epsilon:
        raise OversellRequested(f"Cannot sell {requested} shares; only {held} held")
    if requested > held:
        logger.debug("Clamping sell of %s to held %s", requested, held)
        return held
    return requested


def validate_ledger(
    transactions: Sequence[TransactionInput],
    *,
    epsilon: Decimal = DEFAULT_SELL_EPSILON,
) -> None:
    """Reject a ledger whose running share count dips below zero."""

    running: dict[str, Decimal] = {}
    for tx in sort_transactions(transactions):
        balance = running.get(tx.symbol, ZERO) + tx.signed_shares
        if balance < -epsilon:
            raise OversellRequested(
                f"Transaction {tx.id} on {tx.date.isoformat()} sells more {tx.symbol} than held"
            )
        running[tx.symbol] = max(balance, ZERO)


__all__ = [
    "TransactionKind",
    "TransactionInput",
    "HoldingSnapshot",
    "DEFAULT_SELL_EPSILON",
    "sort_transactions",
    "validate_transaction",
    "fold_position",
    "replay_holding",
    "replay_positions",
    "resolve_sell_quantity",
    "validate_ledger",
]
