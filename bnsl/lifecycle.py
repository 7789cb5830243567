"""
lifecycle.py - BNSL Lifecycle Controller

The controller is the single authority over Plan.status. Every operation
follows the same shape:

1. Take the plan's lock
2. Load the current row
3. Validate preconditions (raising a named BnslError)
4. Compute the new row with the pure settlement functions
5. Credit the holder's wallet (idempotent by reference)
6. Save the row and its audit entries in one call

A ConcurrentModification on save is retried from step 2, up to
config.max_concurrency_retries times. Wallet credits carry a reference
derived from the plan and the event, so a retried step never credits twice.
A step that finds its credit already made rebuilds the row from that credit
rather than pricing it again, and process_due_distributions saves after every
single payout so no credit is ever ahead of more than one unsaved row.
"""

from __future__ import annotations
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from .core import (
    Plan, PlanStatus, LedgerEntry, EarlyTerminationSettlement,
    ConcurrentModification, InvalidInput, InvalidTransition, NotActive, NotApproved,
    PrematureMaturity, WalletCreditError,
    ACTION_PLAN_CREATED, ACTION_PLAN_ACTIVATED, ACTION_DISTRIBUTION_PAID,
    ACTION_PLAN_MATURED, ACTION_PLAN_EARLY_TERMINATED,
    add_months, require_positive,
)
from .config import BnslConfig
from .plan_ledger import PlanLedger
from .price_oracle import PriceOracle, fetch_spot_price
from .wallet import (
    WalletCredit, WalletCreditRecord, credit_reference,
    CREDIT_DISTRIBUTION, CREDIT_MATURITY, CREDIT_EARLY_TERMINATION,
)
from .approval import ApprovalGate
from .settlement import (
    compute_locked_principal,
    compute_distribution_schedule,
    realize_distribution,
    compute_maturity_settlement,
    compute_early_termination_settlement,
    forfeit_distributions,
)
from .projection import PlanSnapshot, PortfolioSummary, plan_snapshot, project_portfolio
from .logging import get_logger

logger = get_logger(__name__)

# A step returns the row to save and its audit entries, or None when there is
# nothing to change.
StepResult = Optional[Tuple[Plan, List[LedgerEntry]]]


class LifecycleController:
    """
    Drives BNSL plans through PENDING -> ACTIVE -> {COMPLETED, EARLY_TERMINATED}.

    Collaborators are injected: the plan ledger (system of record), the price
    oracle, the holder wallet and the activation approval gate. Configuration
    is passed explicitly; the controller reads no ambient settings.

    Example:
        controller = LifecycleController(ledger, oracle, wallet, approvals, BnslConfig())
        plan = await controller.create_plan("alice", 100, 12, now)
        plan = await controller.activate(plan.id, now)
        plan = await controller.process_due_distributions(plan.id, now + relativedelta(months=3))
    """

    def __init__(
        self,
        ledger: PlanLedger,
        oracle: PriceOracle,
        wallet: WalletCredit,
        approvals: ApprovalGate,
        config: Optional[BnslConfig] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.ledger = ledger
        self.oracle = oracle
        self.wallet = wallet
        self.approvals = approvals
        self.config = config or BnslConfig()
        self.id_factory = id_factory or (lambda: uuid.uuid4().hex)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _spot(self, now: datetime) -> Decimal:
        return await fetch_spot_price(self.oracle, now, self.config.max_price_age)

    async def _transition(
        self,
        plan_id: str,
        operation: str,
        step: Callable[[Plan], Awaitable[StepResult]],
    ) -> Plan:
        """Run one locked load/compute/save cycle, retrying version conflicts."""
        retries = self.config.max_concurrency_retries
        attempt = 0
        while True:
            attempt += 1
            async with self.ledger.lock(plan_id):
                plan = await self.ledger.load(plan_id)
                result = await step(plan)
                if result is None:
                    return plan
                updated, entries = result
                try:
                    return await self.ledger.save(updated, entries)
                except ConcurrentModification:
                    if attempt > retries:
                        logger.error(
                            "%s on plan %s gave up after %d version conflicts", operation, plan_id, attempt,
                        )
                        raise
                    logger.warning(
                        "%s on plan %s hit a version conflict (attempt %d of %d), retrying",
                        operation, plan_id, attempt, retries + 1,
                    )

    async def _pinned_credit(self, reference: str) -> Optional[WalletCreditRecord]:
        """An earlier credit under `reference` that recorded its price, if any."""
        existing = await self.wallet.find_credit(reference)
        if existing is None or existing.price_per_gram is None:
            return None
        return existing

    @staticmethod
    def _require_active(plan: Plan, operation: str) -> None:
        if plan.status is not PlanStatus.ACTIVE:
            raise NotActive(
                f"cannot {operation} plan {plan.id}: plan is not active (status={plan.status.name})"
            )

    # ------------------------------------------------------------------
    # Creation and activation
    # ------------------------------------------------------------------

    async def create_plan(
        self,
        user_id: str,
        gold_grams,
        tenor_months: int,
        now: datetime,
        annual_rate_percent=None,
    ) -> Plan:
        """
        Enroll a new PENDING plan.

        The locked-in price is the oracle's spot at `now`. Fee and penalty
        percentages are captured from configuration so that later changes to
        the platform settings do not alter existing agreements.

        Raises:
            InvalidInput: Gold outside the allowed range, unknown tenor, or a
                rate outside the tenor's band
            PriceUnavailable: If no fresh spot price is available
        """
        grams = require_positive("gold_grams", gold_grams)
        cfg = self.config
        if not (cfg.min_gold_grams <= grams <= cfg.max_gold_grams):
            raise InvalidInput(
                f"gold_grams must be between {cfg.min_gold_grams} and {cfg.max_gold_grams}, got {grams}"
            )
        band = cfg.rate_band(tenor_months)
        rate = band.rate_percent if annual_rate_percent is None else require_positive(
            "annual_rate_percent", annual_rate_percent)
        if not band.allows(rate):
            raise InvalidInput(
                f"rate {rate}% outside the {tenor_months}-month band "
                f"[{band.min_rate_percent}%, {band.max_rate_percent}%]"
            )

        spot = await self._spot(now)
        plan = Plan(
            id=self.id_factory(),
            user_id=user_id,
            principal_gold_grams=grams,
            locked_in_price_per_gram=spot,
            tenor_months=tenor_months,
            annual_rate_percent=rate,
            admin_fee_percent=cfg.admin_fee_percent,
            penalty_percent=cfg.penalty_percent,
            status=PlanStatus.PENDING,
            created_at=now,
        )
        entry = LedgerEntry(
            plan_id=plan.id,
            action=ACTION_PLAN_CREATED,
            timestamp=now,
            actor=user_id,
            details=(
                ('principal_gold_grams', grams),
                ('locked_in_price_per_gram', spot),
                ('tenor_months', tenor_months),
                ('annual_rate_percent', rate),
            ),
        )
        stored = await self.ledger.save(plan, [entry])
        logger.info(
            "Created plan %s for %s: %sg at %s/g, %d months at %s%%",
            stored.id, user_id, grams, spot, tenor_months, rate,
        )
        return stored

    async def activate(self, plan_id: str, now: datetime, actor: str = "system") -> Plan:
        """
        PENDING -> ACTIVE.

        Fixes the locked principal value, the distribution schedule and the
        start and maturity dates.

        Raises:
            InvalidTransition: If the plan is not PENDING
            NotApproved: If the approval gate has not cleared the plan
        """
        async def step(plan: Plan) -> StepResult:
            if plan.status is not PlanStatus.PENDING:
                raise InvalidTransition(
                    f"cannot activate plan {plan.id}: status is {plan.status.name}, expected PENDING"
                )
            if not await self.approvals.is_approved(plan.id):
                raise NotApproved(f"cannot activate plan {plan.id}: funding not approved")

            locked = compute_locked_principal(plan.principal_gold_grams, plan.locked_in_price_per_gram)
            schedule = compute_distribution_schedule(
                locked, plan.annual_rate_percent, plan.tenor_months, now,
            )
            updated = replace(
                plan,
                status=PlanStatus.ACTIVE,
                locked_principal_value_usd=locked,
                start_date=now,
                maturity_date=add_months(now, plan.tenor_months),
                distributions=schedule,
            )
            entry = LedgerEntry(
                plan_id=plan.id,
                action=ACTION_PLAN_ACTIVATED,
                timestamp=now,
                actor=actor,
                details=(
                    ('locked_principal_value_usd', locked),
                    ('distribution_count', len(schedule)),
                    ('maturity_date', updated.maturity_date),
                ),
            )
            return updated, [entry]

        plan = await self._transition(plan_id, "activate", step)
        logger.info(
            "Activated plan %s: locked principal %s USD, matures %s",
            plan.id, plan.locked_principal_value_usd, plan.maturity_date.isoformat(),
        )
        return plan

    # ------------------------------------------------------------------
    # Distributions
    # ------------------------------------------------------------------

    async def process_due_distributions(self, plan_id: str, now: datetime) -> Plan:
        """
        Pay every Upcoming distribution scheduled at or before `now`.

        Due distributions are paid oldest first, each with its own wallet
        credit and its own save, so a failure part way through a catch-up
        keeps the payouts already made. They are realized at one spot price
        read at `now`. A distribution whose credit already went through on an
        earlier attempt is rebuilt from that credit's price and time.
        Calling again with nothing due is a no-op and does not read a price.

        Raises:
            NotActive: If the plan is not ACTIVE
            PriceUnavailable: If a payout is due and no fresh price exists
            WalletCreditError: If the wallet rejects a credit (distributions
                paid before it stay paid)
        """
        spot: List[Decimal] = []

        async def step(plan: Plan) -> StepResult:
            self._require_active(plan, "pay distributions on")
            due = plan.due_distributions(now)
            if not due:
                return None

            d = due[0]
            reference = credit_reference(plan.id, CREDIT_DISTRIBUTION, d.sequence_number)
            existing = await self._pinned_credit(reference)
            if existing is not None:
                paid = realize_distribution(d, existing.price_per_gram, existing.credited_at or now)
                receipt = existing.receipt_id
                logger.info(
                    "Plan %s: distribution #%d already credited at %s/g, recording it",
                    plan.id, d.sequence_number, existing.price_per_gram,
                )
            else:
                if not spot:
                    spot.append(await self._spot(now))
                paid = realize_distribution(d, spot[0], now)
                receipt = await self.wallet.credit(
                    plan.user_id,
                    paid.gold_credited_grams,
                    paid.monetary_value_usd,
                    f"BNSL distribution #{paid.sequence_number}",
                    reference,
                    price_per_gram=paid.market_price_used_per_gram,
                    credited_at=paid.paid_at,
                )

            distributions = list(plan.distributions)
            distributions[paid.sequence_number - 1] = paid
            updated = replace(
                plan,
                distributions=tuple(distributions),
                total_distributions_paid_gold=plan.total_distributions_paid_gold + paid.gold_credited_grams,
                monetary_value_distributed_usd=plan.monetary_value_distributed_usd + paid.monetary_value_usd,
            )
            entry = LedgerEntry(
                plan_id=plan.id,
                action=ACTION_DISTRIBUTION_PAID,
                timestamp=now,
                details=(
                    ('sequence_number', paid.sequence_number),
                    ('monetary_value_usd', paid.monetary_value_usd),
                    ('market_price_used_per_gram', paid.market_price_used_per_gram),
                    ('gold_credited_grams', paid.gold_credited_grams),
                ),
                receipt_id=receipt,
            )
            logger.info(
                "Plan %s: paying distribution #%d, %sg at %s/g",
                plan.id, paid.sequence_number, paid.gold_credited_grams, paid.market_price_used_per_gram,
            )
            return updated, [entry]

        while True:
            plan = await self._transition(plan_id, "process distributions", step)
            if not plan.due_distributions(now):
                return plan

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    async def mature_plan(self, plan_id: str, now: datetime) -> Plan:
        """
        ACTIVE -> COMPLETED: return the principal gold.

        Raises:
            NotActive: If the plan is not ACTIVE
            PrematureMaturity: If now is before the maturity date
            IncompleteDistributions: If a distribution is still unpaid
        """
        async def step(plan: Plan) -> StepResult:
            self._require_active(plan, "mature")
            if now < plan.maturity_date:
                raise PrematureMaturity(
                    f"cannot mature plan {plan.id}: maturity date is {plan.maturity_date.isoformat()}"
                )
            settlement = compute_maturity_settlement(plan)
            receipt = await self.wallet.credit(
                plan.user_id,
                settlement.gold_returned_grams,
                settlement.usd_equivalent,
                "BNSL principal return at maturity",
                credit_reference(plan.id, CREDIT_MATURITY),
                credited_at=now,
            )
            updated = replace(
                plan,
                status=PlanStatus.COMPLETED,
                maturity_settlement=settlement,
                closed_at=now,
            )
            entry = LedgerEntry(
                plan_id=plan.id,
                action=ACTION_PLAN_MATURED,
                timestamp=now,
                details=(
                    ('gold_returned_grams', settlement.gold_returned_grams),
                    ('usd_equivalent', settlement.usd_equivalent),
                ),
                receipt_id=receipt,
            )
            return updated, [entry]

        plan = await self._transition(plan_id, "mature", step)
        logger.info("Plan %s matured: %sg returned", plan.id, plan.principal_gold_grams)
        return plan

    async def _early_termination(
        self,
        plan: Plan,
        now: datetime,
        requested_by: Optional[str],
        reason: Optional[str] = None,
        pinned: Optional[WalletCreditRecord] = None,
    ) -> EarlyTerminationSettlement:
        self._require_active(plan, "terminate")
        if now >= plan.maturity_date:
            raise InvalidTransition(
                f"cannot terminate plan {plan.id} early: maturity date "
                f"{plan.maturity_date.isoformat()} has passed, mature the plan instead"
            )
        if pinned is not None:
            spot, computed_at = pinned.price_per_gram, pinned.credited_at or now
        else:
            spot, computed_at = await self._spot(now), now
        return compute_early_termination_settlement(
            plan, spot, plan.admin_fee_percent, plan.penalty_percent,
            requested_by=requested_by, computed_at=computed_at, reason=reason,
        )

    async def terminate_early(self, plan_id: str, now: datetime, requested_by: str, reason: str) -> Plan:
        """
        ACTIVE -> EARLY_TERMINATED.

        Credits the settlement payout in gold and forfeits every Upcoming
        distribution. Uses the fee and penalty percentages captured on the plan.
        If the payout was already credited on an earlier attempt, the
        settlement is recomputed at that credit's price.

        Raises:
            InvalidInput: If no reason is given
            NotActive: If the plan is not ACTIVE (including a concurrent termination)
            InvalidTransition: If the maturity date has been reached
            PriceUnavailable: If no fresh spot price exists
        """
        if not reason or not reason.strip():
            raise InvalidInput(f"cannot terminate plan {plan_id}: a reason is required")
        reason = reason.strip()

        async def step(plan: Plan) -> StepResult:
            reference = credit_reference(plan.id, CREDIT_EARLY_TERMINATION)
            existing = await self._pinned_credit(reference)
            settlement = await self._early_termination(plan, now, requested_by, reason, pinned=existing)
            receipt = None
            if existing is not None:
                if existing.gold_grams != settlement.payout_gold_grams:
                    raise WalletCreditError(
                        f"plan {plan.id}: early termination already credited {existing.gold_grams}g "
                        f"but the settlement now pays {settlement.payout_gold_grams}g"
                    )
                receipt = existing.receipt_id
            elif settlement.payout_gold_grams > 0:
                receipt = await self.wallet.credit(
                    plan.user_id,
                    settlement.payout_gold_grams,
                    settlement.payout_usd,
                    "BNSL early termination payout",
                    reference,
                    price_per_gram=settlement.spot_price_per_gram,
                    credited_at=now,
                )
            updated = replace(
                plan,
                status=PlanStatus.EARLY_TERMINATED,
                distributions=forfeit_distributions(plan.distributions, settlement.forfeited_distributions),
                termination_settlement=settlement,
                closed_at=now,
            )
            entry = LedgerEntry(
                plan_id=plan.id,
                action=ACTION_PLAN_EARLY_TERMINATED,
                timestamp=now,
                actor=requested_by,
                details=(
                    ('reason', reason),
                    ('spot_price_per_gram', settlement.spot_price_per_gram),
                    ('base_value_usd', settlement.base_value_usd),
                    ('admin_fee_usd', settlement.admin_fee_usd),
                    ('penalty_usd', settlement.penalty_usd),
                    ('clawback_usd', settlement.clawback_usd),
                    ('payout_usd', settlement.payout_usd),
                    ('payout_gold_grams', settlement.payout_gold_grams),
                    ('forfeited_distributions', settlement.forfeited_distributions),
                ),
                receipt_id=receipt,
            )
            return updated, [entry]

        plan = await self._transition(plan_id, "terminate", step)
        logger.info(
            "Plan %s terminated early by %s (%s): payout %s USD (%sg), forfeited %s",
            plan.id, requested_by, reason,
            plan.termination_settlement.payout_usd,
            plan.termination_settlement.payout_gold_grams,
            list(plan.termination_settlement.forfeited_distributions),
        )
        return plan

    async def quote_early_termination(self, plan_id: str, now: datetime) -> EarlyTerminationSettlement:
        """Preview the early-termination settlement; nothing is saved or credited."""
        plan = await self.ledger.load(plan_id)
        return await self._early_termination(plan, now, None)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def snapshot(self, plan_id: str, now: datetime) -> PlanSnapshot:
        return plan_snapshot(await self.ledger.load(plan_id), now)

    async def portfolio(self, now: datetime, user_id: Optional[str] = None) -> PortfolioSummary:
        plans: Iterable[Plan] = await self.ledger.list_plans()
        if user_id is not None:
            plans = [p for p in plans if p.user_id == user_id]
        return project_portfolio(plans, as_of=now)
