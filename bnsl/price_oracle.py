"""
price_oracle.py - Spot gold price infrastructure

Provides the spot price interface the lifecycle consumes, plus two in-process
implementations.

Classes:
- SpotQuote: A price per gram with its observation time and source
- PriceOracle: Protocol defining the async pricing interface
- StaticPriceOracle: A single settable price (time-independent)
- TimeSeriesPriceOracle: Historical prices with point-in-time lookup

Functions:
- fetch_spot_price: Query an oracle and enforce freshness (fails closed)

All prices are USD per gram of gold.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .core import PriceUnavailable, ZERO, to_decimal
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SpotQuote:
    """A spot price observation in USD per gram."""
    price_per_gram: Decimal
    timestamp: datetime
    source: str = "unknown"

    def __post_init__(self):
        if not isinstance(self.price_per_gram, Decimal):
            object.__setattr__(self, 'price_per_gram', to_decimal(self.price_per_gram))

    def age_at(self, now: datetime) -> timedelta:
        return now - self.timestamp


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for spot price sources.

    get_spot_price_per_gram returns the most recent quote at or before as_of
    (the latest available quote when as_of is None). Implementations raise
    PriceUnavailable when no price can be supplied; they never return a
    default value.
    """

    async def get_spot_price_per_gram(self, as_of: Optional[datetime] = None) -> SpotQuote:
        ...


class StaticPriceOracle:
    """
    Oracle with a single price that holds until updated.

    The quote is stamped with the requested time, so it is always fresh.
    """

    def __init__(self, price_per_gram, source: str = "static"):
        self.price_per_gram = to_decimal(price_per_gram)
        self.source = source

    async def get_spot_price_per_gram(self, as_of: Optional[datetime] = None) -> SpotQuote:
        stamp = as_of if as_of is not None else datetime.now()
        return SpotQuote(self.price_per_gram, stamp, self.source)

    def update_price(self, price_per_gram) -> None:
        self.price_per_gram = to_decimal(price_per_gram)

    def __repr__(self):
        return f"StaticPriceOracle({self.price_per_gram}/g, source={self.source})"


class TimeSeriesPriceOracle:
    """
    Oracle backed by a price history.

    Returns the most recent observation at or before the requested time, with
    the observation's own timestamp so that staleness can be judged by the
    caller.

    Examples:
        oracle = TimeSeriesPriceOracle([(t0, 50), (t1, 52)])
        oracle.add_price(t2, 48)
    """

    def __init__(
        self,
        history: Optional[Sequence[Tuple[datetime, Decimal]]] = None,
        source: str = "timeseries",
    ):
        self.source = source
        self.history: List[Tuple[datetime, Decimal]] = sorted(
            ((ts, to_decimal(p)) for ts, p in (history or ())),
            key=lambda x: x[0],
        )

    def add_price(self, timestamp: datetime, price_per_gram) -> None:
        self.history.append((timestamp, to_decimal(price_per_gram)))
        self.history.sort(key=lambda x: x[0])

    async def get_spot_price_per_gram(self, as_of: Optional[datetime] = None) -> SpotQuote:
        if not self.history:
            raise PriceUnavailable(f"{self.source}: no price observations")
        if as_of is None:
            ts, price = self.history[-1]
            return SpotQuote(price, ts, self.source)

        # Rightmost observation with ts <= as_of
        timestamps = [ts for ts, _ in self.history]
        idx = bisect_right(timestamps, as_of)
        if idx == 0:
            raise PriceUnavailable(f"{self.source}: no price at or before {as_of.isoformat()}")
        ts, price = self.history[idx - 1]
        return SpotQuote(price, ts, self.source)

    def __repr__(self):
        return f"TimeSeriesPriceOracle({len(self.history)} observations, source={self.source})"


async def fetch_spot_price(oracle: PriceOracle, now: datetime, max_age: timedelta) -> Decimal:
    """
    Get a usable spot price per gram at `now`.

    Raises:
        PriceUnavailable: If the oracle fails, the price is non-positive, or the
            quote is older than max_age relative to now
    """
    quote = await oracle.get_spot_price_per_gram(now)

    if not quote.price_per_gram.is_finite() or quote.price_per_gram <= ZERO:
        raise PriceUnavailable(f"{quote.source}: non-positive spot price {quote.price_per_gram}")
    age = quote.age_at(now)
    if age > max_age:
        logger.warning(
            "Stale spot quote from %s: %s old (limit %s)", quote.source, age, max_age,
        )
        raise PriceUnavailable(
            f"{quote.source}: quote from {quote.timestamp.isoformat()} is older than {max_age}"
        )
    return quote.price_per_gram
