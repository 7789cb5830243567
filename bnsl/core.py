"""
Core types and pure helpers for the BNSL plan engine.

This module provides the foundational data structures for the engine:
1. Decimal context and quantization helpers for USD amounts and gold grams
2. Enums: PlanStatus, DistributionStatus
3. Exceptions: BnslError and the named failure conditions
4. Immutable data structures: Distribution, Plan, settlement results, LedgerEntry
5. Transition rules: the one-directional plan state table

Everything here is immutable. State changes produce new instances via
dataclasses.replace(); nothing in this module performs I/O.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from dateutil.relativedelta import relativedelta


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Settlement arithmetic must be deterministic. The global context is set once
# at import time; callers needing a different context use decimal.localcontext().
#
_BNSL_DECIMAL_CONTEXT = getcontext()
_BNSL_DECIMAL_CONTEXT.prec = 50
_BNSL_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Distributions are paid quarterly.
DISTRIBUTION_INTERVAL_MONTHS = 3
DISTRIBUTIONS_PER_YEAR = 4

USD_PLACES = 2
GOLD_PLACES = 6

# Cash is rounded without bias; gold credits are rounded down so the platform
# never credits more metal than was earned.
USD_QUANTUM = Decimal(10) ** -USD_PLACES
GOLD_QUANTUM = Decimal(10) ** -GOLD_PLACES

ZERO = Decimal("0")
HUNDRED = Decimal("100")


# ============================================================================
# ENUMS
# ============================================================================

class PlanStatus(Enum):
    """
    Lifecycle state of a BNSL plan.

    PENDING: Created, awaiting funding/approval.
    ACTIVE: Principal locked, distributions accruing.
    COMPLETED: Matured; principal returned. Terminal.
    EARLY_TERMINATED: Holder exited before maturity. Terminal.
    """
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    EARLY_TERMINATED = "early_terminated"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.EARLY_TERMINATED)


class DistributionStatus(Enum):
    """State of a single scheduled payout."""
    UPCOMING = "upcoming"
    PAID = "paid"
    FORFEITED = "forfeited"


# Allowed plan transitions. Terminal states have no outgoing edges.
ALLOWED_TRANSITIONS: Mapping[PlanStatus, FrozenSet[PlanStatus]] = {
    PlanStatus.PENDING: frozenset({PlanStatus.ACTIVE}),
    PlanStatus.ACTIVE: frozenset({PlanStatus.COMPLETED, PlanStatus.EARLY_TERMINATED}),
    PlanStatus.COMPLETED: frozenset(),
    PlanStatus.EARLY_TERMINATED: frozenset(),
}


# ============================================================================
# EXCEPTIONS
# ============================================================================

class BnslError(Exception):
    """Base exception for all BNSL engine errors."""
    pass


class InvalidInput(BnslError):
    """Raised for malformed arithmetic inputs: non-positive amounts, prices or rates."""
    pass


class AlreadyPaid(BnslError):
    """Raised when a distribution that is already paid is realized again."""
    pass


class NotDue(BnslError):
    """Raised when a distribution is realized before its scheduled date."""
    pass


class PrematureMaturity(BnslError):
    """Raised when maturity is attempted before the maturity date or with unpaid distributions."""
    pass


class IncompleteDistributions(PrematureMaturity):
    """Raised when a maturity settlement is computed while distributions remain unpaid."""
    pass


class NotActive(BnslError):
    """Raised when an operation requiring an ACTIVE plan meets any other status."""
    pass


class InvalidTransition(BnslError):
    """Raised when a status change is not permitted by the transition table."""
    pass


class NotApproved(BnslError):
    """Raised when activation is attempted before the approval gate has cleared the plan."""
    pass


class NotFound(BnslError):
    """Raised when a plan id is unknown to the ledger."""
    pass


class ConcurrentModification(BnslError):
    """Raised when a save carries a stale version (optimistic concurrency conflict)."""
    pass


class PriceUnavailable(BnslError):
    """Raised when the price oracle cannot supply a fresh spot price."""
    pass


class WalletCreditError(BnslError):
    """Raised by a wallet collaborator when a credit cannot be applied."""
    pass


class ConfigurationError(BnslError):
    """Raised when configuration is invalid or missing."""
    pass


# ============================================================================
# DECIMAL HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """
    Convert a number to Decimal via its string form.

    Floats go through str() so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise InvalidInput(f"not a decimal number: {value!r}") from exc


def quantize_usd(value: Decimal) -> Decimal:
    """Round a USD amount to cents (banker's rounding)."""
    return value.quantize(USD_QUANTUM, rounding=ROUND_HALF_EVEN)


def quantize_grams(value: Decimal) -> Decimal:
    """Round a gold quantity down to 6 decimal places."""
    return value.quantize(GOLD_QUANTUM, rounding=ROUND_DOWN)


def require_positive(name: str, value: Any) -> Decimal:
    """Convert to Decimal and raise InvalidInput unless strictly positive and finite."""
    d = to_decimal(value)
    if not d.is_finite() or d <= ZERO:
        raise InvalidInput(f"{name} must be positive, got {value}")
    return d


def add_months(start: datetime, months: int) -> datetime:
    """
    Calendar month arithmetic.

    Day-of-month is clipped to the target month (Jan 31 + 1 month = Feb 28/29).
    Always offset from the original start so clipping never accumulates.
    """
    return start + relativedelta(months=months)


# ============================================================================
# DISTRIBUTION
# ============================================================================

@dataclass(frozen=True, slots=True)
class Distribution:
    """
    One scheduled quarterly payout.

    monetary_value_usd is fixed when the schedule is created. The gold actually
    credited depends on the spot price on the day the payout is realized.
    """
    sequence_number: int
    scheduled_date: datetime
    monetary_value_usd: Decimal
    status: DistributionStatus = DistributionStatus.UPCOMING
    market_price_used_per_gram: Optional[Decimal] = None
    gold_credited_grams: Optional[Decimal] = None
    paid_at: Optional[datetime] = None

    def __post_init__(self):
        if self.sequence_number < 1:
            raise InvalidInput(f"sequence_number must be >= 1, got {self.sequence_number}")
        if not isinstance(self.monetary_value_usd, Decimal):
            object.__setattr__(self, 'monetary_value_usd', to_decimal(self.monetary_value_usd))

    @property
    def is_paid(self) -> bool:
        return self.status is DistributionStatus.PAID

    @property
    def is_upcoming(self) -> bool:
        return self.status is DistributionStatus.UPCOMING

    def is_due(self, now: datetime) -> bool:
        """Upcoming and at or past its scheduled date."""
        return self.is_upcoming and now >= self.scheduled_date


# ============================================================================
# SETTLEMENT RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class MaturitySettlement:
    """
    Result of a full-term maturity.

    The principal grams come back unchanged; usd_equivalent is valued at the
    locked-in price for display and is never re-priced at market.
    """
    gold_returned_grams: Decimal
    usd_equivalent: Decimal


@dataclass(frozen=True, slots=True)
class EarlyTerminationSettlement:
    """
    Itemised result of an early exit.

    Attributes:
        spot_price_per_gram: Spot price used for the calculation
        market_value_usd: principal_gold_grams x spot
        base_value_usd: min(locked principal, market value)
        admin_fee_usd: base_value_usd x admin_fee_percent / 100
        penalty_usd: base_value_usd x penalty_percent / 100
        after_fees_usd: base_value_usd - admin_fee_usd - penalty_usd
        clawback_usd: First distribution's value if it was already paid
        payout_usd: max(0, after_fees_usd - clawback_usd)
        payout_gold_grams: payout_usd converted at spot
        forfeited_distributions: Sequence numbers of distributions cancelled
        gold_shortfall_grams: principal grams minus payout grams
        requested_by: Who asked for the exit
        reason: Why the holder is exiting, as recorded on the audit trail
    """
    spot_price_per_gram: Decimal
    admin_fee_percent: Decimal
    penalty_percent: Decimal
    market_value_usd: Decimal
    base_value_usd: Decimal
    admin_fee_usd: Decimal
    penalty_usd: Decimal
    after_fees_usd: Decimal
    clawback_usd: Decimal
    payout_usd: Decimal
    payout_gold_grams: Decimal
    forfeited_distributions: Tuple[int, ...]
    gold_shortfall_grams: Decimal
    requested_by: Optional[str] = None
    reason: Optional[str] = None
    computed_at: Optional[datetime] = None


# ============================================================================
# PLAN
# ============================================================================

@dataclass(frozen=True, slots=True)
class Plan:
    """
    One BNSL agreement - the persisted row.

    Term fields (principal, locked price, tenor, rate, fee percentages) are set
    at creation. locked_principal_value_usd, the schedule and the dates are
    fixed at activation. Only status, distribution payment fields, the
    accumulators and the settlement records change afterwards.

    version is the optimistic concurrency counter owned by the PlanLedger.
    """
    id: str
    user_id: str
    principal_gold_grams: Decimal
    locked_in_price_per_gram: Decimal
    tenor_months: int
    annual_rate_percent: Decimal
    admin_fee_percent: Decimal
    penalty_percent: Decimal
    status: PlanStatus = PlanStatus.PENDING
    created_at: Optional[datetime] = None
    locked_principal_value_usd: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    maturity_date: Optional[datetime] = None
    distributions: Tuple[Distribution, ...] = ()
    total_distributions_paid_gold: Decimal = ZERO
    monetary_value_distributed_usd: Decimal = ZERO
    maturity_settlement: Optional[MaturitySettlement] = None
    termination_settlement: Optional[EarlyTerminationSettlement] = None
    closed_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        for name in ('principal_gold_grams', 'locked_in_price_per_gram',
                     'annual_rate_percent', 'admin_fee_percent', 'penalty_percent',
                     'total_distributions_paid_gold', 'monetary_value_distributed_usd'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))
        if self.tenor_months <= 0:
            raise InvalidInput(f"tenor_months must be positive, got {self.tenor_months}")
        if not isinstance(self.distributions, tuple):
            object.__setattr__(self, 'distributions', tuple(self.distributions))

    @property
    def distribution_count(self) -> int:
        """Number of scheduled quarterly payouts: floor(tenor / 3)."""
        return self.tenor_months // DISTRIBUTION_INTERVAL_MONTHS

    @property
    def total_margin_usd(self) -> Decimal:
        """Sum of all scheduled distribution values."""
        return sum((d.monetary_value_usd for d in self.distributions), ZERO)

    @property
    def remaining_margin_usd(self) -> Decimal:
        """Value of distributions still Upcoming."""
        return sum((d.monetary_value_usd for d in self.distributions if d.is_upcoming), ZERO)

    @property
    def next_distribution_date(self) -> Optional[datetime]:
        for d in self.distributions:
            if d.is_upcoming:
                return d.scheduled_date
        return None

    def due_distributions(self, now: datetime) -> Tuple[Distribution, ...]:
        return tuple(d for d in self.distributions if d.is_due(now))

    def all_distributions_paid(self) -> bool:
        return all(d.is_paid for d in self.distributions)


# ============================================================================
# AUDIT ENTRY
# ============================================================================

@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    Immutable audit record written alongside a plan save.

    action is one of PLAN_CREATED, PLAN_ACTIVATED, DISTRIBUTION_PAID,
    PLAN_MATURED, PLAN_EARLY_TERMINATED.
    """
    plan_id: str
    action: str
    timestamp: datetime
    actor: str = "system"
    details: Tuple[Tuple[str, Any], ...] = ()
    receipt_id: Optional[str] = None

    @property
    def details_dict(self) -> Dict[str, Any]:
        return dict(self.details)


ACTION_PLAN_CREATED = "PLAN_CREATED"
ACTION_PLAN_ACTIVATED = "PLAN_ACTIVATED"
ACTION_DISTRIBUTION_PAID = "DISTRIBUTION_PAID"
ACTION_PLAN_MATURED = "PLAN_MATURED"
ACTION_PLAN_EARLY_TERMINATED = "PLAN_EARLY_TERMINATED"


# ============================================================================
# TRANSITION RULES
# ============================================================================

def check_transition(old: PlanStatus, new: PlanStatus) -> None:
    """
    Validate a status change against ALLOWED_TRANSITIONS.

    Staying in the same status is always allowed (e.g. an Active plan
    recording a paid distribution).

    Raises:
        InvalidTransition: If the edge is not in the table
    """
    if old is new:
        return
    if new not in ALLOWED_TRANSITIONS[old]:
        raise InvalidTransition(f"cannot move plan from {old.name} to {new.name}")


def check_locked_fields(stored: Plan, updated: Plan) -> None:
    """
    Ensure values fixed at creation/activation are untouched by an update.

    Raises:
        InvalidTransition: If a locked value or a scheduled monetary value changed
    """
    fixed = ('user_id', 'principal_gold_grams', 'locked_in_price_per_gram',
             'tenor_months', 'annual_rate_percent', 'admin_fee_percent', 'penalty_percent')
    for name in fixed:
        if getattr(stored, name) != getattr(updated, name):
            raise InvalidTransition(f"plan {stored.id}: {name} is immutable")

    if stored.locked_principal_value_usd is not None:
        if updated.locked_principal_value_usd != stored.locked_principal_value_usd:
            raise InvalidTransition(f"plan {stored.id}: locked principal value is immutable")
        if updated.start_date != stored.start_date or updated.maturity_date != stored.maturity_date:
            raise InvalidTransition(f"plan {stored.id}: plan dates are immutable")
        if len(updated.distributions) != len(stored.distributions):
            raise InvalidTransition(f"plan {stored.id}: distribution schedule is immutable")
        for old_d, new_d in zip(stored.distributions, updated.distributions):
            if (old_d.sequence_number != new_d.sequence_number
                    or old_d.scheduled_date != new_d.scheduled_date
                    or old_d.monetary_value_usd != new_d.monetary_value_usd):
                raise InvalidTransition(
                    f"plan {stored.id}: distribution #{old_d.sequence_number} terms are immutable"
                )
            if old_d.status is not DistributionStatus.UPCOMING and new_d != old_d:
                raise InvalidTransition(
                    f"plan {stored.id}: distribution #{old_d.sequence_number} is already {old_d.status.name}"
                )

    if updated.total_distributions_paid_gold < stored.total_distributions_paid_gold:
        raise InvalidTransition(f"plan {stored.id}: paid gold accumulator cannot decrease")
    if updated.monetary_value_distributed_usd < stored.monetary_value_distributed_usd:
        raise InvalidTransition(f"plan {stored.id}: distributed USD accumulator cannot decrease")
