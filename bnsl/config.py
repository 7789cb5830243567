"""
config.py - Platform settings for the BNSL engine

BnslConfig holds every tunable number the lifecycle needs: the offered tenors
and their rate bands, the enrollment gold range, early-termination fee and
penalty percentages, price staleness and concurrency retry limits.

All values are validated at construction; an invalid configuration raises
ConfigurationError rather than surfacing later as a settlement error.
"""

from __future__ import annotations
import json
import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from .core import ConfigurationError, InvalidInput, HUNDRED, ZERO, to_decimal


@dataclass(frozen=True, slots=True)
class TenorRate:
    """
    Rate band offered for one tenor.

    rate_percent is the default annual margin rate; a plan may be created at
    any rate in [min_rate_percent, max_rate_percent].
    """
    rate_percent: Decimal
    min_rate_percent: Optional[Decimal] = None
    max_rate_percent: Optional[Decimal] = None

    def __post_init__(self):
        rate = _decimal_setting('rate_percent', self.rate_percent)
        low = rate if self.min_rate_percent is None else _decimal_setting('min_rate_percent', self.min_rate_percent)
        high = rate if self.max_rate_percent is None else _decimal_setting('max_rate_percent', self.max_rate_percent)
        object.__setattr__(self, 'rate_percent', rate)
        object.__setattr__(self, 'min_rate_percent', low)
        object.__setattr__(self, 'max_rate_percent', high)

        if rate <= ZERO:
            raise ConfigurationError(f"rate_percent must be positive, got {rate}")
        if not (low <= rate <= high):
            raise ConfigurationError(
                f"rate band must satisfy min <= rate <= max, got {low} <= {rate} <= {high}"
            )

    def allows(self, rate_percent: Decimal) -> bool:
        return self.min_rate_percent <= rate_percent <= self.max_rate_percent


def _decimal_setting(name: str, value: Any) -> Decimal:
    try:
        return to_decimal(value)
    except InvalidInput as exc:
        raise ConfigurationError(f"{name}: {exc}") from exc


def _default_tenor_rates() -> Dict[int, TenorRate]:
    return {
        12: TenorRate(Decimal("10.00"), Decimal("8.00"), Decimal("12.00")),
        24: TenorRate(Decimal("11.00"), Decimal("9.00"), Decimal("13.00")),
        36: TenorRate(Decimal("12.00"), Decimal("10.00"), Decimal("14.00")),
    }


@dataclass(frozen=True, slots=True)
class BnslConfig:
    """
    Immutable BNSL platform configuration.

    Attributes:
        admin_fee_percent: Early-termination admin fee, percent of base value
        penalty_percent: Early-termination penalty, percent of base value
        min_gold_grams: Smallest principal accepted at enrollment, grams
        max_gold_grams: Largest principal accepted at enrollment, grams
        tenor_rates: Offered tenor (months) -> TenorRate
        max_price_age: Oldest spot quote accepted relative to the operation time
        max_concurrency_retries: Re-load/re-apply attempts on a version conflict
        log_level: Level passed to setup_logging by entry points
    """
    admin_fee_percent: Decimal = Decimal("1.00")
    penalty_percent: Decimal = Decimal("5.00")
    min_gold_grams: Decimal = Decimal("10")
    max_gold_grams: Decimal = Decimal("10000")
    tenor_rates: Mapping[int, TenorRate] = field(default_factory=_default_tenor_rates)
    max_price_age: timedelta = timedelta(minutes=15)
    max_concurrency_retries: int = 3
    log_level: str = "INFO"

    def __post_init__(self):
        for name in ('admin_fee_percent', 'penalty_percent', 'min_gold_grams', 'max_gold_grams'):
            object.__setattr__(self, name, _decimal_setting(name, getattr(self, name)))
        object.__setattr__(self, 'tenor_rates', dict(self.tenor_rates))

        if self.admin_fee_percent < ZERO or self.penalty_percent < ZERO:
            raise ConfigurationError("fee and penalty percentages cannot be negative")
        if self.admin_fee_percent + self.penalty_percent > HUNDRED:
            raise ConfigurationError(
                f"admin fee ({self.admin_fee_percent}%) plus penalty ({self.penalty_percent}%) exceeds 100%"
            )
        if self.min_gold_grams <= ZERO:
            raise ConfigurationError(f"min_gold_grams must be positive, got {self.min_gold_grams}")
        if self.max_gold_grams < self.min_gold_grams:
            raise ConfigurationError(
                f"max_gold_grams ({self.max_gold_grams}) is below min_gold_grams ({self.min_gold_grams})"
            )
        if not self.tenor_rates:
            raise ConfigurationError("at least one tenor must be offered")
        for tenor, band in self.tenor_rates.items():
            if not isinstance(tenor, int) or tenor <= 0:
                raise ConfigurationError(f"tenor must be a positive number of months, got {tenor!r}")
            if not isinstance(band, TenorRate):
                raise ConfigurationError(f"tenor {tenor}: expected TenorRate, got {type(band).__name__}")
        if self.max_price_age <= timedelta(0):
            raise ConfigurationError("max_price_age must be positive")
        if self.max_concurrency_retries < 0:
            raise ConfigurationError("max_concurrency_retries cannot be negative")

    @property
    def offered_tenors(self) -> tuple:
        return tuple(sorted(self.tenor_rates))

    def rate_band(self, tenor_months: int) -> TenorRate:
        """
        Look up the rate band for a tenor.

        Raises:
            InvalidInput: If the tenor is not offered
        """
        try:
            return self.tenor_rates[tenor_months]
        except KeyError:
            raise InvalidInput(
                f"tenor of {tenor_months} months is not offered (offered: {list(self.offered_tenors)})"
            ) from None

    @classmethod
    def from_env(cls) -> "BnslConfig":
        """
        Create config from BNSL_* environment variables.

        BNSL_TENOR_RATES is a JSON object mapping tenor months to either a rate
        or a [rate, min, max] triple, e.g. {"12": [10, 8, 12], "24": 11}.
        """
        kwargs: Dict[str, Any] = {}
        simple = {
            'BNSL_ADMIN_FEE_PERCENT': 'admin_fee_percent',
            'BNSL_PENALTY_PERCENT': 'penalty_percent',
            'BNSL_MIN_GOLD_GRAMS': 'min_gold_grams',
            'BNSL_MAX_GOLD_GRAMS': 'max_gold_grams',
        }
        for env_name, attr in simple.items():
            value = os.getenv(env_name)
            if value is not None:
                kwargs[attr] = value

        tenor_json = os.getenv('BNSL_TENOR_RATES')
        if tenor_json:
            kwargs['tenor_rates'] = _parse_tenor_rates(tenor_json)

        try:
            age = os.getenv('BNSL_MAX_PRICE_AGE_SECONDS')
            if age is not None:
                kwargs['max_price_age'] = timedelta(seconds=float(age))
            retries = os.getenv('BNSL_MAX_CONCURRENCY_RETRIES')
            if retries is not None:
                kwargs['max_concurrency_retries'] = int(retries)
        except ValueError as exc:
            raise ConfigurationError(f"invalid numeric environment setting: {exc}") from exc

        kwargs['log_level'] = os.getenv('BNSL_LOG_LEVEL', 'INFO')
        return cls(**kwargs)


def _parse_tenor_rates(raw: str) -> Dict[int, TenorRate]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"BNSL_TENOR_RATES is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("BNSL_TENOR_RATES must be a JSON object")

    rates: Dict[int, TenorRate] = {}
    for key, value in data.items():
        try:
            tenor = int(key)
        except ValueError:
            raise ConfigurationError(f"BNSL_TENOR_RATES: tenor {key!r} is not an integer") from None
        if isinstance(value, list):
            if len(value) != 3:
                raise ConfigurationError(f"BNSL_TENOR_RATES: tenor {tenor} needs [rate, min, max]")
            rates[tenor] = TenorRate(*value)
        else:
            rates[tenor] = TenorRate(value)
    return rates
