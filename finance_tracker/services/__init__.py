"""Engines and orchestration services."""

from .dividends import DividendEvent, DividendRecord, build_dividend_record, plan_dividend_discovery
from .ownership import entitled_shares, shares_held_as_of
from .performance import PerformanceEvent, PerformancePoint, PerformanceResult, compute_twr
from .periods import PerformancePeriod, PeriodWindow, resolve_period
from .prices import CircuitBreaker, InMemoryQuoteProvider, PricePoint, PriceService, Quote, QuoteProvider
from .replay import HoldingSnapshot, TransactionInput, TransactionKind, replay_holding
from .tax import AnnualTaxSummary, calculate_dividend_tax, summarize_dividend_taxes
from .ledger import DividendCheckSummary, LedgerService, OperationResult, OperationStatus

__all__ = [
    "TransactionKind",
    "TransactionInput",
    "HoldingSnapshot",
    "replay_holding",
    "shares_held_as_of",
    "entitled_shares",
    "DividendEvent",
    "DividendRecord",
    "build_dividend_record",
    "plan_dividend_discovery",
    "calculate_dividend_tax",
    "summarize_dividend_taxes",
    "AnnualTaxSummary",
    "PerformancePoint",
    "PerformanceEvent",
    "PerformanceResult",
    "compute_twr",
    "PerformancePeriod",
    "PeriodWindow",
    "resolve_period",
    "PricePoint",
    "Quote",
    "QuoteProvider",
    "InMemoryQuoteProvider",
    "CircuitBreaker",
    "PriceService",
    "LedgerService",
    "OperationResult",
    "OperationStatus",
    "DividendCheckSummary",
]
