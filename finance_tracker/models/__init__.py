"""Database model exports."""

from .ledger import (
    CASH_SOURCES,
    CASH_TRANSACTION_TYPES,
    TRANSACTION_TYPES,
    Account,
    CashTransaction,
    Dividend,
    Holding,
    StockTransaction,
    UserSetting,
)

__all__ = [
    "Account",
    "StockTransaction",
    "Holding",
    "Dividend",
    "CashTransaction",
    "UserSetting",
    "TRANSACTION_TYPES",
    "CASH_TRANSACTION_TYPES",
    "CASH_SOURCES",
]
