"""
projection.py - Read-side views of BNSL plans

Snapshots and portfolio totals are computed on demand from plan rows. Nothing
here is cached or stored, so the figures cannot drift from the ledger.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

from .core import Distribution, Plan, PlanStatus, ZERO


@dataclass(frozen=True, slots=True)
class PlanSnapshot:
    """Presentation shape of one plan at a point in time."""
    id: str
    user_id: str
    status: PlanStatus
    principal_gold_grams: Decimal
    locked_in_price_per_gram: Decimal
    locked_principal_value_usd: Optional[Decimal]
    tenor_months: int
    annual_rate_percent: Decimal
    start_date: Optional[datetime]
    maturity_date: Optional[datetime]
    distributions: Tuple[Distribution, ...]
    total_distributions_paid_gold: Decimal
    monetary_value_distributed_usd: Decimal
    remaining_margin_usd: Decimal
    next_distribution_date: Optional[datetime]
    due_distribution_count: int
    as_of: datetime

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly dict: Decimals as strings, datetimes as ISO 8601."""
        def fmt(value):
            if isinstance(value, Decimal):
                return str(value)
            if isinstance(value, datetime):
                return value.isoformat()
            return value

        return {
            'id': self.id,
            'user_id': self.user_id,
            'status': self.status.value,
            'principal_gold_grams': fmt(self.principal_gold_grams),
            'locked_in_price_per_gram': fmt(self.locked_in_price_per_gram),
            'locked_principal_value_usd': fmt(self.locked_principal_value_usd),
            'tenor_months': self.tenor_months,
            'annual_rate_percent': fmt(self.annual_rate_percent),
            'start_date': fmt(self.start_date),
            'maturity_date': fmt(self.maturity_date),
            'distributions': [
                {
                    'sequence_number': d.sequence_number,
                    'scheduled_date': fmt(d.scheduled_date),
                    'monetary_value_usd': fmt(d.monetary_value_usd),
                    'status': d.status.value,
                    'market_price_used_per_gram': fmt(d.market_price_used_per_gram),
                    'gold_credited_grams': fmt(d.gold_credited_grams),
                    'paid_at': fmt(d.paid_at),
                }
                for d in self.distributions
            ],
            'total_distributions_paid_gold': fmt(self.total_distributions_paid_gold),
            'monetary_value_distributed_usd': fmt(self.monetary_value_distributed_usd),
            'remaining_margin_usd': fmt(self.remaining_margin_usd),
            'next_distribution_date': fmt(self.next_distribution_date),
            'due_distribution_count': self.due_distribution_count,
            'as_of': fmt(self.as_of),
        }


def plan_snapshot(plan: Plan, now: datetime) -> PlanSnapshot:
    return PlanSnapshot(
        id=plan.id,
        user_id=plan.user_id,
        status=plan.status,
        principal_gold_grams=plan.principal_gold_grams,
        locked_in_price_per_gram=plan.locked_in_price_per_gram,
        locked_principal_value_usd=plan.locked_principal_value_usd,
        tenor_months=plan.tenor_months,
        annual_rate_percent=plan.annual_rate_percent,
        start_date=plan.start_date,
        maturity_date=plan.maturity_date,
        distributions=plan.distributions,
        total_distributions_paid_gold=plan.total_distributions_paid_gold,
        monetary_value_distributed_usd=plan.monetary_value_distributed_usd,
        remaining_margin_usd=plan.remaining_margin_usd,
        next_distribution_date=plan.next_distribution_date,
        due_distribution_count=len(plan.due_distributions(now)),
        as_of=now,
    )


@dataclass(frozen=True, slots=True)
class PortfolioSummary:
    """
    Aggregate figures across a set of plans.

    Attributes:
        plan_count: All plans considered
        active_plans: Plans currently ACTIVE
        plans_by_status: PlanStatus -> count, every status present
        locked_gold_grams: Principal grams held in ACTIVE plans
        total_principal_usd: Locked principal value of ACTIVE plans
        distributed_usd: Monetary value paid out, all plans
        distributed_gold_grams: Gold credited by distributions, all plans
        expected_remaining_payouts_usd: Upcoming distribution value of ACTIVE plans
        overdue_distributions: Upcoming distributions past their date at as_of
    """
    plan_count: int
    active_plans: int
    plans_by_status: Dict[PlanStatus, int]
    locked_gold_grams: Decimal
    total_principal_usd: Decimal
    distributed_usd: Decimal
    distributed_gold_grams: Decimal
    expected_remaining_payouts_usd: Decimal
    overdue_distributions: int
    as_of: Optional[datetime] = None


def project_portfolio(plans: Iterable[Plan], as_of: Optional[datetime] = None) -> PortfolioSummary:
    """
    Fold plans into a PortfolioSummary.

    overdue_distributions is only counted when as_of is given.
    """
    by_status = {status: 0 for status in PlanStatus}
    count = 0
    locked_gold = ZERO
    principal_usd = ZERO
    distributed_usd = ZERO
    distributed_gold = ZERO
    remaining = ZERO
    overdue = 0

    for plan in plans:
        count += 1
        by_status[plan.status] += 1
        distributed_usd += plan.monetary_value_distributed_usd
        distributed_gold += plan.total_distributions_paid_gold
        if plan.status is PlanStatus.ACTIVE:
            locked_gold += plan.principal_gold_grams
            principal_usd += plan.locked_principal_value_usd
            remaining += plan.remaining_margin_usd
            if as_of is not None:
                overdue += len(plan.due_distributions(as_of))

    return PortfolioSummary(
        plan_count=count,
        active_plans=by_status[PlanStatus.ACTIVE],
        plans_by_status=by_status,
        locked_gold_grams=locked_gold,
        total_principal_usd=principal_usd,
        distributed_usd=distributed_usd,
        distributed_gold_grams=distributed_gold,
        expected_remaining_payouts_usd=remaining,
        overdue_distributions=overdue,
        as_of=as_of,
    )
