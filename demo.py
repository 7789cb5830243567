#!/usr/bin/env python3
"""
demo.py - Walkthrough: One BNSL Plan from Enrollment to Exit

Each step drives the lifecycle controller one transition further and prints
what the holder would see. Press Enter to advance.

WHAT YOU'LL SEE:
  1-2: Enrollment   - Locking 100g at spot, activation and the payout schedule
  3-4: Payouts      - Quarterly distributions bought at the day's spot price
  5:   Early exit   - Quote and settle an early termination in a falling market
  6:   Maturity     - A second plan run to full term by the sweep
  7:   Audit        - The ledger entries and the portfolio view

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
    BNSL_LOG_LEVEL=INFO python demo.py   # Also show the engine log
"""

import asyncio
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from bnsl import (
    BnslConfig, LifecycleController, Sweep,
    InMemoryPlanLedger, InMemoryWallet, StaticApprovalGate, StaticPriceOracle,
    setup_logging,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Settings for the walkthrough. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 15, 10, 0, 0)
    gold_grams: Decimal = Decimal("100")
    lock_price: Decimal = Decimal("50")
    tenor_months: int = 12
    payout_prices: tuple = (Decimal("100"), Decimal("80"))
    exit_price: Decimal = Decimal("40")


CONFIG = DemoConfig()
QUICK = "--quick" in sys.argv


def wait_for_enter():
    if not QUICK:
        input("\n  [Press Enter to continue]")


def step_header(number: int, title: str):
    print()
    print("=" * 72)
    print(f"  STEP {number}: {title}")
    print("=" * 72)


def show_plan(plan):
    print(f"  plan {plan.id[:8]}  status={plan.status.name}")
    print(f"    principal      {plan.principal_gold_grams}g at {plan.locked_in_price_per_gram}/g")
    print(f"    locked value   {plan.locked_principal_value_usd} USD")
    print(f"    paid so far    {plan.monetary_value_distributed_usd} USD = {plan.total_distributions_paid_gold}g")
    for d in plan.distributions:
        grams = f"{d.gold_credited_grams}g @ {d.market_price_used_per_gram}" if d.is_paid else ""
        print(f"    #{d.sequence_number} {d.scheduled_date:%Y-%m-%d}  {d.monetary_value_usd:>8} USD  "
              f"{d.status.name:<9} {grams}")


# ============================================================================
# WALKTHROUGH
# ============================================================================

async def main(config: BnslConfig):
    oracle = StaticPriceOracle(CONFIG.lock_price, source="demo")
    wallet = InMemoryWallet()
    ledger = InMemoryPlanLedger()
    approvals = StaticApprovalGate()
    controller = LifecycleController(ledger, oracle, wallet, approvals, config)
    now = CONFIG.start_time

    step_header(1, "Enroll: lock gold at today's spot")
    plan = await controller.create_plan("alice", CONFIG.gold_grams, CONFIG.tenor_months, now)
    show_plan(plan)
    print("\n  The plan is PENDING until funding is approved.")
    wait_for_enter()

    step_header(2, "Approve and activate")
    approvals.approve(plan.id)
    plan = await controller.activate(plan.id, now)
    show_plan(plan)
    print(f"\n  Matures {plan.maturity_date:%Y-%m-%d}. Each payout is worth a fixed USD amount.")
    wait_for_enter()

    for n, price in enumerate(CONFIG.payout_prices, start=1):
        step_header(2 + n, f"Payout #{n} with spot at {price}/g")
        oracle.update_price(price)
        due = plan.distributions[n - 1].scheduled_date
        plan = await controller.process_due_distributions(plan.id, due)
        show_plan(plan)
        print(f"\n  alice's wallet: {wallet.balance('alice')}g")
        wait_for_enter()

    step_header(5, f"Early exit with spot at {CONFIG.exit_price}/g")
    oracle.update_price(CONFIG.exit_price)
    exit_time = plan.distributions[1].scheduled_date + timedelta(days=10)
    quote = await controller.quote_early_termination(plan.id, exit_time)
    print(f"    market value   {quote.market_value_usd} USD")
    print(f"    base value     {quote.base_value_usd} USD (worse of locked and market)")
    print(f"    admin fee      -{quote.admin_fee_usd} USD")
    print(f"    penalty        -{quote.penalty_usd} USD")
    print(f"    clawback       -{quote.clawback_usd} USD (first payout)")
    print(f"    payout         {quote.payout_usd} USD = {quote.payout_gold_grams}g")
    print(f"    shortfall      {quote.gold_shortfall_grams}g versus the principal")
    plan = await controller.terminate_early(plan.id, exit_time, "alice", "needs cash for a house deposit")
    show_plan(plan)
    wait_for_enter()

    step_header(6, "A second plan, run to maturity by the sweep")
    oracle.update_price(CONFIG.lock_price)
    second = await controller.create_plan("bob", Decimal("40"), 12, now)
    approvals.approve(second.id)
    second = await controller.activate(second.id, now)
    sweep = Sweep(controller)
    ticks = [d.scheduled_date for d in second.distributions]
    for report in await sweep.run(ticks):
        print(f"  {report.timestamp:%Y-%m-%d}: paid {report.distributions_paid}, matured {len(report.matured)}")
    show_plan(await ledger.load(second.id))
    print(f"\n  bob's wallet: {wallet.balance('bob')}g")
    wait_for_enter()

    step_header(7, "Audit trail and portfolio")
    for entry in await ledger.entries():
        print(f"  {entry.timestamp:%Y-%m-%d}  {entry.plan_id[:8]}  {entry.action:<22} by {entry.actor}")
    summary = await controller.portfolio(ticks[-1])
    print(f"\n  plans: {summary.plan_count}, active: {summary.active_plans}")
    print(f"  distributed: {summary.distributed_usd} USD = {summary.distributed_gold_grams}g")


if __name__ == "__main__":
    # Quiet by default so the walkthrough output stays readable
    os.environ.setdefault("BNSL_LOG_LEVEL", "WARNING")
    bnsl_config = BnslConfig.from_env()
    setup_logging(bnsl_config.log_level)
    asyncio.run(main(bnsl_config))
