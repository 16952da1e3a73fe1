from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from finance_tracker.services.ownership import entitled_shares, shares_held_as_of
from finance_tracker.services.replay import TransactionInput, TransactionKind


def build_ledger():
    def tx(tx_id, kind, shares, day):
        return TransactionInput(
            id=tx_id,
            account_id=1,
            symbol="KO",
            kind=kind,
            shares=Decimal(shares),
            price=Decimal("60"),
            date=day,
        )

    return [
        tx(3, TransactionKind.SELL, "40", date(2024, 6, 1)),
        tx(1, TransactionKind.BUY, "100", date(2024, 1, 10)),
        tx(2, TransactionKind.BUY, "20", date(2024, 3, 15)),
    ]


def test_transaction_on_target_date_counts():
    ledger = build_ledger()
    assert shares_held_as_of(ledger, date(2024, 1, 9)) == Decimal("0")
    assert shares_held_as_of(ledger, date(2024, 1, 10)) == Decimal("100")
    assert shares_held_as_of(ledger, date(2024, 3, 15)) == Decimal("120")
    assert shares_held_as_of(ledger, date(2024, 6, 1)) == Decimal("80")


def test_ownership_is_constant_between_transactions():
    ledger = build_ledger()
    start = date(2024, 3, 15)
    values = {shares_held_as_of(ledger, start + timedelta(days=offset)) for offset in range(0, 78)}
    assert values == {Decimal("120")}


def test_entitlement_floors_corrupt_history_at_zero():
    ledger = [
        TransactionInput(
            id=1,
            account_id=1,
            symbol="KO",
            kind=TransactionKind.SELL,
            shares=Decimal("5"),
            price=Decimal("60"),
            date=date(2024, 1, 2),
        )
    ]
    assert shares_held_as_of(ledger, date(2024, 2, 1)) == Decimal("-5")
    assert entitled_shares(ledger, date(2024, 2, 1)) == Decimal("0")
