"""Injectable price service wrapping an external quote provider.

The service owns its quote cache and circuit breaker so no module-level
state is shared between callers. Provider failures are logged and turned
into "no data" answers; the performance engine skips dates it cannot price.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Mapping, MutableMapping, Protocol, Sequence

from .dividends import DividendEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricePoint:
    date: date
    close: Decimal


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: Decimal
    change: Decimal = Decimal("0")
    change_percent: Decimal = Decimal("0")
    name: str | None = None


class QuoteProvider(Protocol):
    """External market data source."""

    async def get_quote(self, symbol: str) -> Quote | None:
        ...

    async def get_historical_prices(
        self,
        symbol: str,
        start: date,
        end: date,
        interval: str = "1d",
    ) -> Sequence[PricePoint]:
        ...

    async def get_dividend_history(self, symbol: str, start: date, end: date) -> Sequence[DividendEvent]:
        ...


class InMemoryQuoteProvider:
    """Simple provider for tests and examples."""

    def __init__(
        self,
        prices: Mapping[str, Mapping[date, Decimal | str | float]] | None = None,
        *,
        quotes: Mapping[str, Quote] | None = None,
        dividends: Mapping[str, Iterable[DividendEvent]] | None = None,
    ):
        self._prices: dict[str, dict[date, Decimal]] = {
            symbol: {d: Decimal(str(v)) for d, v in series.items()}
            for symbol, series in (prices or {}).items()
        }
        self._quotes = dict(quotes or {})
        self._dividends = {symbol: list(events) for symbol, events in (dividends or {}).items()}

    async def get_quote(self, symbol: str) -> Quote | None:
        if symbol in self._quotes:
            return self._quotes[symbol]
        series = self._prices.get(symbol)
        if not series:
            return None
        return Quote(symbol=symbol, price=series[max(series)])

    async def get_historical_prices(
        self,
        symbol: str,
        start: date,
        end: date,
        interval: str = "1d",
    ) -> Sequence[PricePoint]:
        series = self._prices.get(symbol, {})
        return [PricePoint(d, series[d]) for d in sorted(series) if start <= d <= end]

    async def get_dividend_history(self, symbol: str, start: date, end: date) -> Sequence[DividendEvent]:
        events = self._dividends.get(symbol, [])
        return sorted((e for e in events if start <= e.ex_date <= end), key=lambda e: e.ex_date)


class CircuitBreaker:
    """Stop calling a failing provider until a cool-down has elapsed."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_after_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_after_seconds = reset_after_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        if self._clock() - self._opened_at >= self.reset_after_seconds:
            # Half-open: let the next call through as a probe.
            return False
        return True

    def allow(self) -> bool:
        return not self.is_open

    def record_success(self) -> None:
        self._failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures >= self.failure_threshold:
            if self._opened_at is None:
                logger.warning("Price provider circuit opened after %s failures", self._failures)
            self._opened_at = self._clock()


class PriceService:
    """Caching, failure-isolating facade over a ``QuoteProvider``."""

    def __init__(
        self,
        provider: QuoteProvider,
        *,
        quote_ttl_seconds: float = 60.0,
        failure_threshold: int = 5,
        reset_after_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.quote_ttl_seconds = quote_ttl_seconds
        self.breaker = CircuitBreaker(failure_threshold, reset_after_seconds, clock=clock)
        self._clock = clock
        self._quote_cache: MutableMapping[str, tuple[float, Quote]] = {}

    @classmethod
    def from_settings(cls, provider: QuoteProvider, settings) -> "PriceService":
        return cls(
            provider,
            quote_ttl_seconds=settings.quote_cache_ttl_seconds,
            failure_threshold=settings.price_failure_threshold,
            reset_after_seconds=settings.price_circuit_reset_seconds,
        )

    def clear_cache(self) -> None:
        self._quote_cache.clear()

    async def get_quote(self, symbol: str) -> Quote | None:
        cached = self._quote_cache.get(symbol)
        if cached and self._clock() - cached[0] < self.quote_ttl_seconds:
            return cached[1]
        if not self.breaker.allow():
            return cached[1] if cached else None
        try:
            quote = await self.provider.get_quote(symbol)
        except Exception:  # noqa: BLE001 - provider errors degrade to missing data
            logger.warning("Quote lookup failed for %s", symbol, exc_info=True)
            self.breaker.record_failure()
            return cached[1] if cached else None
        self.breaker.record_success()
        if quote is not None:
            self._quote_cache[symbol] = (self._clock(), quote)
        return quote

    async def get_quotes(self, symbols: Iterable[str]) -> dict[str, Quote]:
        unique = list(dict.fromkeys(symbols))
        results = await asyncio.gather(*(self.get_quote(symbol) for symbol in unique))
        return {symbol: quote for symbol, quote in zip(unique, results) if quote is not None}

    async def get_historical_prices(
        self,
        symbol: str,
        start: date,
        end: date,
        interval: str = "1d",
    ) -> dict[date, Decimal]:
        """Return ``{date: close}`` for the window; empty when unavailable."""

        if not self.breaker.allow():
            return {}
        try:
            points = await self.provider.get_historical_prices(symbol, start, end, interval)
        except Exception:  # noqa: BLE001 - provider errors degrade to missing data
            logger.warning("Historical prices unavailable for %s", symbol, exc_info=True)
            self.breaker.record_failure()
            return {}
        self.breaker.record_success()
        return {point.date: Decimal(str(point.close)) for point in sorted(points, key=lambda p: p.date)}

    async def get_price_histories(
        self,
        symbols: Iterable[str],
        start: date,
        end: date,
        interval: str = "1d",
    ) -> dict[str, dict[date, Decimal]]:
        unique = list(dict.fromkeys(symbols))
        results = await asyncio.gather(
            *(self.get_historical_prices(symbol, start, end, interval) for symbol in unique)
        )
        return dict(zip(unique, results))

    async def get_dividend_history(self, symbol: str, start: date, end: date) -> list[DividendEvent]:
        if not self.breaker.allow():
            return []
        try:
            events = await self.provider.get_dividend_history(symbol, start, end)
        except Exception:  # noqa: BLE001 - provider errors degrade to missing data
            logger.warning("Dividend history unavailable for %s", symbol, exc_info=True)
            self.breaker.record_failure()
            return []
        self.breaker.record_success()
        return [event for event in events if event.amount_per_share > 0]


__all__ = [
    "PricePoint",
    "Quote",
    "QuoteProvider",
    "InMemoryQuoteProvider",
    "CircuitBreaker",
    "PriceService",
]
