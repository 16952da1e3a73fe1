"""Pydantic schemas for performance charts."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from finance_tracker.services.performance import PerformanceEvent, PerformancePoint, PerformanceResult


class PerformancePointSchema(BaseModel):
    date: date
    value: float
    change_percent: float = Field(..., description="Cumulative change from the start of the window")

    @classmethod
    def from_point(cls, point: PerformancePoint) -> "PerformancePointSchema":
        return cls(date=point.date, value=float(point.value), change_percent=float(point.change_percent))


class PerformanceEventSchema(BaseModel):
    date: date
    type: str = Field(..., examples=["buy", "sell", "dividend"])
    symbol: str
    shares: float | None = None
    price: float | None = None
    amount: float | None = None

    @classmethod
    def from_event(cls, event: PerformanceEvent) -> "PerformanceEventSchema":
        return cls(
            date=event.date,
            type=event.type,
            symbol=event.symbol,
            shares=float(event.shares) if event.shares is not None else None,
            price=float(event.price) if event.price is not None else None,
            amount=float(event.amount) if event.amount is not None else None,
        )


class PerformanceResponse(BaseModel):
    period: str
    portfolio: list[PerformancePointSchema]
    benchmark: list[PerformancePointSchema]
    events: list[PerformanceEventSchema]
    benchmark_symbol: str | None = None
    reason: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "period": "1y",
                "portfolio": [{"date": "2024-03-01", "value": 1520.0, "change_percent": 1.33}],
                "benchmark": [{"date": "2024-03-01", "value": 5137.08, "change_percent": 0.8}],
                "events": [{"date": "2024-03-01", "type": "buy", "symbol": "AAPL", "shares": 5, "price": 180}],
                "benchmark_symbol": "^GSPC",
            }
        }

    @classmethod
    def from_result(
        cls,
        result: PerformanceResult,
        *,
        period: str,
        benchmark_symbol: str | None = None,
    ) -> "PerformanceResponse":
        return cls(
            period=period,
            portfolio=[PerformancePointSchema.from_point(p) for p in result.portfolio],
            benchmark=[PerformancePointSchema.from_point(p) for p in result.benchmark],
            events=[PerformanceEventSchema.from_event(e) for e in result.events],
            benchmark_symbol=benchmark_symbol,
            reason=result.reason.value if result.reason else None,
        )


__all__ = ["PerformancePointSchema", "PerformanceEventSchema", "PerformanceResponse"]
