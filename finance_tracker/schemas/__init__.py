"""Pydantic schema exports."""

from .ledger import (
    AccountPortfolioSchema,
    DividendSchema,
    HoldingMetricsSchema,
    HoldingSchema,
    TaxSummarySchema,
)
from .performance import PerformanceEventSchema, PerformancePointSchema, PerformanceResponse

__all__ = [
    "HoldingSchema",
    "DividendSchema",
    "TaxSummarySchema",
    "HoldingMetricsSchema",
    "AccountPortfolioSchema",
    "PerformancePointSchema",
    "PerformanceEventSchema",
    "PerformanceResponse",
]
