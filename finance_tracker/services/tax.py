"""Dividend withholding tax calculations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Protocol

import pandas as pd

from finance_tracker.errors import InvalidTaxRate

ZERO = Decimal("0")
CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.0001")


def round_currency(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_tax_rate(rate: Decimal) -> Decimal:
    try:
        rate = Decimal(str(rate))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidTaxRate("Tax rate must be a number") from exc
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise InvalidTaxRate("Tax rate must be between 0 and 1")
    return rate


@dataclass(frozen=True)
class DividendTaxCalculation:
    gross_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    net_amount: Decimal


def calculate_dividend_tax(
    amount_per_share: Decimal,
    shares_held: Decimal,
    tax_rate: Decimal,
) -> DividendTaxCalculation:
    """Split a dividend into gross, tax and net amounts at cent precision.

    ``net`` is derived from the rounded gross and tax so the three amounts
    always reconcile exactly.
    """

    rate = validate_tax_rate(tax_rate)
    gross = round_currency(Decimal(amount_per_share) * Decimal(shares_held))
    tax = round_currency(gross * rate)
    return DividendTaxCalculation(
        gross_amount=gross,
        tax_rate=rate,
        tax_amount=tax,
        net_amount=gross - tax,
    )


class TaxedDividend(Protocol):
    ex_date: date
    pay_date: date | None
    gross_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class AnnualTaxSummary:
    year: int
    total_gross: Decimal
    total_tax: Decimal
    total_net: Decimal
    dividend_count: int

    @property
    def effective_rate(self) -> Decimal:
        if self.total_gross <= 0:
            return ZERO
        return (self.total_tax / self.total_gross).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def summarize_dividend_taxes(
    dividends: Iterable[TaxedDividend],
    *,
    year: int | None = None,
) -> list[AnnualTaxSummary]:
    """Group dividends by the calendar year they were paid, newest first.

    Dividends without a pay date fall into the year of their ex-date.
    """

    rows = [
        {
            "year": (dividend.pay_date or dividend.ex_date).year,
            "gross": dividend.gross_amount,
            "tax": dividend.tax_amount,
            "net": dividend.net_amount,
        }
        for dividend in dividends
    ]
    if not rows:
        return []
    frame = pd.DataFrame(rows)
    if year is not None:
        frame = frame[frame["year"] == year]
    summaries: list[AnnualTaxSummary] = []
    for group_year, group in frame.groupby("year", sort=False):
        summaries.append(
            AnnualTaxSummary(
                year=int(group_year),
                total_gross=sum(group["gross"], ZERO),
                total_tax=sum(group["tax"], ZERO),
                total_net=sum(group["net"], ZERO),
                dividend_count=len(group),
            )
        )
    return sorted(summaries, key=lambda s: s.year, reverse=True)


__all__ = [
    "CENT",
    "DividendTaxCalculation",
    "AnnualTaxSummary",
    "round_currency",
    "validate_tax_rate",
    "calculate_dividend_tax",
    "summarize_dividend_taxes",
]
