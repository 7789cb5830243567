"""
sweep.py - Periodic processing of due plans

A sweep is what a scheduler (cron, a worker loop) runs on each tick:

1. Ask the ledger for plans with a payout due or a maturity date reached
2. For each plan, concurrently:
   a. Pay due distributions
   b. Mature the plan if its maturity date has passed and everything is paid
3. Report what happened

A plan whose price is unavailable is skipped for this cycle and picked up
again on the next one, since it stays due. A plan closed by another caller
between the due-plan query and its processing is reported as closed and does
not make the cycle unclean. Other BnslErrors are recorded against the plan;
anything else propagates.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Tuple

from .core import Plan, BnslError, NotActive, PriceUnavailable
from .lifecycle import LifecycleController
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SweepReport:
    """
    Outcome of one sweep cycle.

    `closed` lists plans another caller closed after they were found due;
    they do not count against `clean`.
    """
    timestamp: datetime
    distributions_paid: int = 0
    matured: Tuple[str, ...] = ()
    skipped: Tuple[str, ...] = ()
    closed: Tuple[str, ...] = ()
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def clean(self) -> bool:
        return not self.skipped and not self.failed


@dataclass(frozen=True, slots=True)
class _PlanOutcome:
    plan_id: str
    paid: int = 0
    matured: bool = False
    skipped: bool = False
    closed: bool = False
    error: str = ""


class Sweep:
    """
    Runs the lifecycle controller over every due plan.

    Plans are processed concurrently; the controller's per-plan lock keeps
    each plan's operations serialized.

    Example:
        sweep = Sweep(controller)
        report = await sweep.run_once(now)
    """

    def __init__(self, controller: LifecycleController):
        self.controller = controller

    async def _process(self, plan: Plan, now: datetime) -> _PlanOutcome:
        paid_before = sum(1 for d in plan.distributions if d.is_paid)
        try:
            updated = await self.controller.process_due_distributions(plan.id, now)
            paid = sum(1 for d in updated.distributions if d.is_paid) - paid_before
            matured = False
            if now >= updated.maturity_date and updated.all_distributions_paid():
                await self.controller.mature_plan(plan.id, now)
                matured = True
            return _PlanOutcome(plan.id, paid=paid, matured=matured)
        except PriceUnavailable as exc:
            logger.warning("Sweep skipped plan %s: %s", plan.id, exc)
            return _PlanOutcome(plan.id, skipped=True)
        except NotActive as exc:
            logger.info("Sweep skipped plan %s, closed since it was found due: %s", plan.id, exc)
            return _PlanOutcome(plan.id, closed=True)
        except BnslError as exc:
            logger.error("Sweep failed on plan %s: %s: %s", plan.id, type(exc).__name__, exc)
            return _PlanOutcome(plan.id, error=f"{type(exc).__name__}: {exc}")

    async def run_once(self, now: datetime) -> SweepReport:
        due = await self.controller.ledger.find_due_plans(now)
        outcomes = await asyncio.gather(*(self._process(plan, now) for plan in due))

        report = SweepReport(
            timestamp=now,
            distributions_paid=sum(o.paid for o in outcomes),
            matured=tuple(o.plan_id for o in outcomes if o.matured),
            skipped=tuple(o.plan_id for o in outcomes if o.skipped),
            closed=tuple(o.plan_id for o in outcomes if o.closed),
            failed={o.plan_id: o.error for o in outcomes if o.error},
        )
        logger.info(
            "Sweep at %s: %d due plans, %d distributions paid, %d matured, %d skipped, %d failed",
            now.isoformat(), len(due), report.distributions_paid,
            len(report.matured), len(report.skipped), len(report.failed),
        )
        return report

    async def run(self, timestamps: Iterable[datetime]) -> List[SweepReport]:
        """Run one cycle per timestamp, in order."""
        return [await self.run_once(ts) for ts in timestamps]
