"""Pydantic schemas for holdings, dividends and tax summaries."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from finance_tracker.services.dividends import DividendRecord
from finance_tracker.services.replay import HoldingSnapshot
from finance_tracker.services.tax import AnnualTaxSummary
from finance_tracker.services.valuation import AccountPortfolio, HoldingMetrics


class HoldingSchema(BaseModel):
    account_id: int
    symbol: str
    shares: float
    avg_cost: float

    @classmethod
    def from_snapshot(cls, snapshot: HoldingSnapshot) -> "HoldingSchema":
        return cls(
            account_id=snapshot.account_id or 0,
            symbol=snapshot.symbol or "",
            shares=float(snapshot.shares),
            avg_cost=float(snapshot.avg_cost),
        )


class DividendSchema(BaseModel):
    id: int | None = None
    account_id: int
    symbol: str
    ex_date: date
    pay_date: date | None = None
    amount_per_share: float
    shares_held: float
    gross_amount: float
    tax_rate: float = Field(..., ge=0, le=1)
    tax_amount: float
    net_amount: float
    transaction_created: bool = False

    @classmethod
    def from_record(cls, record: DividendRecord) -> "DividendSchema":
        return cls(
            id=record.id,
            account_id=record.account_id,
            symbol=record.symbol,
            ex_date=record.ex_date,
            pay_date=record.pay_date,
            amount_per_share=float(record.amount_per_share),
            shares_held=float(record.shares_held),
            gross_amount=float(record.gross_amount),
            tax_rate=float(record.tax_rate),
            tax_amount=float(record.tax_amount),
            net_amount=float(record.net_amount),
            transaction_created=record.transaction_created,
        )


class TaxSummarySchema(BaseModel):
    year: int
    total_gross: float
    total_tax: float
    total_net: float
    dividend_count: int
    effective_rate: float

    @classmethod
    def from_summary(cls, summary: AnnualTaxSummary) -> "TaxSummarySchema":
        return cls(
            year=summary.year,
            total_gross=float(summary.total_gross),
            total_tax=float(summary.total_tax),
            total_net=float(summary.total_net),
            dividend_count=summary.dividend_count,
            effective_rate=float(summary.effective_rate),
        )


class HoldingMetricsSchema(BaseModel):
    symbol: str
    name: str
    shares: float
    avg_cost: float
    current_price: float
    market_value: float
    cost_basis: float
    gain: float
    gain_percent: float
    day_change: float
    day_change_percent: float

    @classmethod
    def from_metrics(cls, metrics: HoldingMetrics) -> "HoldingMetricsSchema":
        return cls(
            symbol=metrics.symbol,
            name=metrics.name,
            shares=float(metrics.shares),
            avg_cost=float(metrics.avg_cost),
            current_price=float(metrics.current_price),
            market_value=float(metrics.market_value),
            cost_basis=float(metrics.cost_basis),
            gain=float(metrics.gain),
            gain_percent=float(metrics.gain_percent),
            day_change=float(metrics.day_change),
            day_change_percent=float(metrics.day_change_percent),
        )


class AccountPortfolioSchema(BaseModel):
    account_id: int
    cash_balance: float
    total_value: float
    total_cost: float
    total_gain: float
    total_gain_percent: float
    day_change: float
    day_change_percent: float
    holdings: list[HoldingMetricsSchema]

    @classmethod
    def from_portfolio(cls, account_id: int, portfolio: AccountPortfolio) -> "AccountPortfolioSchema":
        return cls(
            account_id=account_id,
            cash_balance=float(portfolio.cash_balance),
            total_value=float(portfolio.total_value),
            total_cost=float(portfolio.total_cost),
            total_gain=float(portfolio.total_gain),
            total_gain_percent=float(portfolio.total_gain_percent),
            day_change=float(portfolio.day_change),
            day_change_percent=float(portfolio.day_change_percent),
            holdings=[HoldingMetricsSchema.from_metrics(m) for m in portfolio.holdings],
        )


__all__ = [
    "HoldingSchema",
    "DividendSchema",
    "TaxSummarySchema",
    "HoldingMetricsSchema",
    "AccountPortfolioSchema",
]
