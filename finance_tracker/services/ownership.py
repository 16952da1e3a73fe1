"""Reconstruct how many shares were held on a past date."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable

from .replay import ZERO, TransactionInput, sort_transactions


def shares_held_as_of(transactions: Iterable[TransactionInput], as_of: date) -> Decimal:
    """Net shares from every transaction dated on or before ``as_of``.

    The result can be negative only for corrupt ledgers; callers treat
    anything ``<= 0`` as no ownership.
    """

    held = ZERO
    for tx in sort_transactions(transactions):
        if tx.date > as_of:
            break
        held += tx.signed_shares
    return held


def entitled_shares(transactions: Iterable[TransactionInput], ex_date: date) -> Decimal:
    """Shares entitled to a dividend with the given ex-date, floored at zero."""

    return max(shares_held_as_of(transactions, ex_date), ZERO)


__all__ = ["shares_held_as_of", "entitled_shares"]
