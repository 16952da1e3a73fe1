"""Failure taxonomy shared by the replay, dividend and performance engines."""

from __future__ import annotations

from enum import Enum


class ReasonCode(str, Enum):
    OVERSELL_REQUESTED = "OVERSELL_REQUESTED"
    INSUFFICIENT_OWNERSHIP = "INSUFFICIENT_OWNERSHIP"
    DUPLICATE_DIVIDEND = "DUPLICATE_DIVIDEND"
    MISSING_PRICE_DATA = "MISSING_PRICE_DATA"
    EMPTY_BENCHMARK = "EMPTY_BENCHMARK"
    EMPTY_LEDGER = "EMPTY_LEDGER"
    INVALID_TRANSACTION = "INVALID_TRANSACTION"
    INVALID_TAX_RATE = "INVALID_TAX_RATE"
    NOT_FOUND = "NOT_FOUND"


class LedgerError(ValueError):
    """Base error for operations rejected before any ledger write."""

    reason: ReasonCode = ReasonCode.INVALID_TRANSACTION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTransaction(LedgerError):
    reason = ReasonCode.INVALID_TRANSACTION


class OversellRequested(LedgerError):
    """Raised when a sell would take a position below zero."""

    reason = ReasonCode.OVERSELL_REQUESTED


class InsufficientOwnership(LedgerError):
    """Raised when no shares were held on a dividend's ex-date."""

    reason = ReasonCode.INSUFFICIENT_OWNERSHIP


class DuplicateDividend(LedgerError):
    reason = ReasonCode.DUPLICATE_DIVIDEND


class InvalidTaxRate(LedgerError):
    reason = ReasonCode.INVALID_TAX_RATE


class RecordNotFound(LedgerError):
    reason = ReasonCode.NOT_FOUND


__all__ = [
    "ReasonCode",
    "LedgerError",
    "InvalidTransaction",
    "OversellRequested",
    "InsufficientOwnership",
    "DuplicateDividend",
    "InvalidTaxRate",
    "RecordNotFound",
]
