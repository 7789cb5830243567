"""
settlement.py - Pure BNSL settlement calculations

Every function here is a pure function of its arguments: no I/O, no clock
reads, no mutation. The lifecycle controller supplies the current time and
spot price and persists whatever these functions return.

Functions:
- compute_locked_principal: principal grams x locked price
- compute_distribution_schedule: quarterly payouts of fixed USD value
- realize_distribution: convert a due payout into gold at spot
- compute_maturity_settlement: principal returned at full term
- compute_early_termination_settlement: worst-of-two pricing, fees, clawback
- forfeit_distributions: cancel the remaining payouts of a terminated plan

Rounding: USD amounts are rounded to cents (half-even); gold grams are
rounded down to 6 decimal places.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from .core import (
    Distribution, DistributionStatus, Plan, PlanStatus,
    MaturitySettlement, EarlyTerminationSettlement,
    AlreadyPaid, IncompleteDistributions, InvalidInput, InvalidTransition, NotActive, NotDue,
    DISTRIBUTION_INTERVAL_MONTHS, DISTRIBUTIONS_PER_YEAR, HUNDRED, ZERO,
    add_months, quantize_grams, quantize_usd, require_positive, to_decimal,
)


# ============================================================================
# PRINCIPAL AND SCHEDULE
# ============================================================================

def compute_locked_principal(gold_grams, locked_price) -> Decimal:
    """
    USD value of the principal at the locked-in price.

    Raises:
        InvalidInput: If either argument is not positive
    """
    grams = require_positive("gold_grams", gold_grams)
    price = require_positive("locked_price", locked_price)
    return quantize_usd(grams * price)


def compute_distribution_value(locked_principal_usd, annual_rate_percent) -> Decimal:
    """Fixed USD value of one quarterly distribution."""
    principal = require_positive("locked_principal_usd", locked_principal_usd)
    rate = require_positive("annual_rate_percent", annual_rate_percent)
    return quantize_usd(principal * rate / HUNDRED / DISTRIBUTIONS_PER_YEAR)


def compute_distribution_schedule(
    locked_principal_usd,
    annual_rate_percent,
    tenor_months: int,
    start_date: datetime,
) -> Tuple[Distribution, ...]:
    """
    Build the quarterly payout schedule.

    Produces tenor_months // 3 distributions of equal monetary value, the i-th
    scheduled i x 3 calendar months after start_date. A tenor that is not a
    multiple of 3 is floored; the trailing partial quarter earns nothing.

    Raises:
        InvalidInput: If principal, rate or tenor is not positive
    """
    if not isinstance(tenor_months, int) or tenor_months <= 0:
        raise InvalidInput(f"tenor_months must be a positive integer, got {tenor_months!r}")
    value = compute_distribution_value(locked_principal_usd, annual_rate_percent)

    count = tenor_months // DISTRIBUTION_INTERVAL_MONTHS
    return tuple(
        Distribution(
            sequence_number=i,
            scheduled_date=add_months(start_date, DISTRIBUTION_INTERVAL_MONTHS * i),
            monetary_value_usd=value,
        )
        for i in range(1, count + 1)
    )


# ============================================================================
# DISTRIBUTION REALIZATION
# ============================================================================

def realize_distribution(distribution: Distribution, current_spot_price, now: datetime) -> Distribution:
    """
    Convert a due distribution into gold at the current spot price.

    The monetary value is fixed; only the grams credited depend on the price.

    Raises:
        AlreadyPaid: If the distribution was already paid
        InvalidTransition: If the distribution was forfeited
        NotDue: If now is before the scheduled date
        InvalidInput: If the spot price is not positive
    """
    if distribution.status is DistributionStatus.PAID:
        raise AlreadyPaid(
            f"distribution #{distribution.sequence_number} was already paid at {distribution.paid_at}"
        )
    if distribution.status is DistributionStatus.FORFEITED:
        raise InvalidTransition(
            f"distribution #{distribution.sequence_number} was forfeited and cannot be paid"
        )
    if now < distribution.scheduled_date:
        raise NotDue(
            f"distribution #{distribution.sequence_number} is scheduled for "
            f"{distribution.scheduled_date.isoformat()}, not due at {now.isoformat()}"
        )
    price = require_positive("current_spot_price", current_spot_price)

    return replace(
        distribution,
        status=DistributionStatus.PAID,
        market_price_used_per_gram=price,
        gold_credited_grams=quantize_grams(distribution.monetary_value_usd / price),
        paid_at=now,
    )


def forfeit_distributions(
    distributions: Iterable[Distribution],
    sequence_numbers: Iterable[int],
) -> Tuple[Distribution, ...]:
    """
    Mark the named distributions FORFEITED.

    Only Upcoming distributions can be forfeited; a paid one named here is an
    error since its gold has already left the platform.
    """
    targets = set(sequence_numbers)
    result = []
    for d in distributions:
        if d.sequence_number in targets:
            if not d.is_upcoming:
                raise InvalidTransition(
                    f"distribution #{d.sequence_number} is {d.status.name} and cannot be forfeited"
                )
            d = replace(d, status=DistributionStatus.FORFEITED)
        result.append(d)
    return tuple(result)


# ============================================================================
# MATURITY
# ============================================================================

def compute_maturity_settlement(plan: Plan) -> MaturitySettlement:
    """
    Principal returned at the end of a full term.

    The full principal in grams comes back; its USD equivalent is the locked
    principal value regardless of where spot has moved.

    Raises:
        IncompleteDistributions: If any distribution is not yet paid
        InvalidInput: If the plan was never activated
    """
    if plan.locked_principal_value_usd is None:
        raise InvalidInput(f"plan {plan.id} has no locked principal value (never activated)")
    unpaid = [d.sequence_number for d in plan.distributions if not d.is_paid]
    if unpaid:
        raise IncompleteDistributions(
            f"plan {plan.id} cannot mature: distributions {unpaid} are not paid"
        )
    return MaturitySettlement(
        gold_returned_grams=plan.principal_gold_grams,
        usd_equivalent=plan.locked_principal_value_usd,
    )


# ============================================================================
# EARLY TERMINATION
# ============================================================================

def compute_early_termination_settlement(
    plan: Plan,
    current_spot_price,
    admin_fee_percent,
    penalty_percent,
    requested_by: Optional[str] = None,
    computed_at: Optional[datetime] = None,
    reason: Optional[str] = None,
) -> EarlyTerminationSettlement:
    """
    Settlement for a holder exiting before maturity.

    1. base = min(locked principal, principal grams x spot)
    2. after_fees = base - admin fee - penalty (both percentages of base)
    3. clawback = value of distribution #1 if it has been paid
    4. payout_usd = max(0, after_fees - clawback)
    5. payout_gold_grams = payout_usd / spot
    6. every Upcoming distribution is forfeited

    Raises:
        NotActive: If the plan is not ACTIVE
        InvalidInput: On a non-positive price, negative percentages, or
            percentages summing above 100
    """
    if plan.status is not PlanStatus.ACTIVE:
        raise NotActive(f"plan {plan.id} is not active (status={plan.status.name})")

    spot = require_positive("current_spot_price", current_spot_price)
    admin_pct = to_decimal(admin_fee_percent)
    penalty_pct = to_decimal(penalty_percent)
    if admin_pct < ZERO or penalty_pct < ZERO:
        raise InvalidInput("fee and penalty percentages cannot be negative")
    if admin_pct + penalty_pct > HUNDRED:
        raise InvalidInput(
            f"admin fee ({admin_pct}%) plus penalty ({penalty_pct}%) exceeds 100%"
        )

    locked = plan.locked_principal_value_usd
    market_value = quantize_usd(plan.principal_gold_grams * spot)
    base = min(locked, market_value)

    admin_fee = quantize_usd(base * admin_pct / HUNDRED)
    penalty = quantize_usd(base * penalty_pct / HUNDRED)
    after_fees = base - admin_fee - penalty

    clawback = ZERO
    if plan.distributions and plan.distributions[0].is_paid:
        clawback = plan.distributions[0].monetary_value_usd

    payout_usd = max(ZERO, after_fees - clawback)
    payout_grams = quantize_grams(payout_usd / spot)

    return EarlyTerminationSettlement(
        spot_price_per_gram=spot,
        admin_fee_percent=admin_pct,
        penalty_percent=penalty_pct,
        market_value_usd=market_value,
        base_value_usd=base,
        admin_fee_usd=admin_fee,
        penalty_usd=penalty,
        after_fees_usd=after_fees,
        clawback_usd=clawback,
        payout_usd=payout_usd,
        payout_gold_grams=payout_grams,
        forfeited_distributions=tuple(d.sequence_number for d in plan.distributions if d.is_upcoming),
        gold_shortfall_grams=plan.principal_gold_grams - payout_grams,
        requested_by=requested_by,
        reason=reason,
        computed_at=computed_at,
    )
