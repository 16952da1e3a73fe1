"""Transaction-replay engine for holdings, dividend tax and time-weighted returns."""

from .errors import LedgerError, ReasonCode
from .services.performance import compute_twr
from .services.replay import HoldingSnapshot, TransactionInput, TransactionKind, replay_holding

__all__ = [
    "LedgerError",
    "ReasonCode",
    "TransactionKind",
    "TransactionInput",
    "HoldingSnapshot",
    "replay_holding",
    "compute_twr",
]
