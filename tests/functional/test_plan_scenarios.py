"""
test_plan_scenarios.py - End-to-end BNSL plan scenarios

Each scenario drives a plan through the LifecycleController with in-memory
collaborators and checks the figures a holder would see.

Scenarios:
1. Full term: 100g locked at 50/g, four payouts at moving prices, maturity
2. Payout conversion: a 100 USD distribution at spot 80 buys 1.25g
3. Early exit under a falling price with the first payout clawed back
4. Early exit before any payout, market above the locked price
5. Price feed outage during a scheduled sweep
6. Portfolio view across several holders
"""

from datetime import datetime, timedelta
from decimal import Decimal

from bnsl import (
    BnslConfig, DistributionStatus, PlanStatus, Sweep,
    compute_early_termination_settlement, compute_maturity_settlement,
    realize_distribution, Distribution,
)
from tests.fakes import active_plan, build_controller, open_plan, run, T0


class TestFullTermScenario:
    """Plan runs to maturity."""

    def test_full_term_at_moving_prices(self):
        async def scenario():
            controller = build_controller(price="50")
            plan = await open_plan(controller, gold_grams="100")
            assert plan.locked_principal_value_usd == Decimal("5000.00")

            for spot, d in zip(["100", "80", "62.5", "50"], plan.distributions):
                controller.oracle.update_price(spot)
                await controller.process_due_distributions(plan.id, d.scheduled_date)

            controller.oracle.update_price("70")
            done = await controller.mature_plan(plan.id, plan.maturity_date)
            entries = await controller.ledger.entries(plan.id)
            return controller, done, entries

        controller, done, entries = run(scenario())

        assert done.status is PlanStatus.COMPLETED
        assert [d.gold_credited_grams for d in done.distributions] == [
            Decimal("1.25"), Decimal("1.5625"), Decimal("2"), Decimal("2.5"),
        ]
        assert done.total_distributions_paid_gold == Decimal("7.3125")
        assert done.monetary_value_distributed_usd == Decimal("500.00")
        # Spot of 70 at maturity does not change the principal return
        assert done.maturity_settlement.gold_returned_grams == Decimal("100")
        assert done.maturity_settlement.usd_equivalent == Decimal("5000.00")
        assert controller.wallet.balance("alice") == Decimal("107.3125")
        assert [e.action for e in entries] == [
            "PLAN_CREATED", "PLAN_ACTIVATED",
            "DISTRIBUTION_PAID", "DISTRIBUTION_PAID", "DISTRIBUTION_PAID", "DISTRIBUTION_PAID",
            "PLAN_MATURED",
        ]

    def test_maturity_settlement_independent_of_spot(self):
        plan = active_plan(gold_grams="100", locked_price="50", paid=4, paid_price="70")
        result = compute_maturity_settlement(plan)
        assert result.gold_returned_grams == Decimal("100")
        assert result.usd_equivalent == Decimal("5000")


class TestDistributionConversion:

    def test_hundred_dollars_at_eighty(self):
        d = Distribution(sequence_number=1, scheduled_date=T0, monetary_value_usd=Decimal("100"))
        paid = realize_distribution(d, Decimal("80"), T0)
        assert paid.gold_credited_grams == Decimal("1.25")


class TestEarlyTerminationScenarios:

    def test_worst_of_two_with_clawback(self):
        """
        100g locked at 50 (5000), spot 40 (4000): base 4000.
        2% admin + 5% penalty leaves 3720; payout #1 of 100 is clawed back.
        """
        # 5000 x 8% / 4 = 100 per payout
        plan = active_plan(gold_grams="100", locked_price="50", rate_percent="8", paid=1)
        assert plan.distributions[0].monetary_value_usd == Decimal("100.00")

        result = compute_early_termination_settlement(plan, Decimal("40"), Decimal("2"), Decimal("5"))
        assert result.base_value_usd == Decimal("4000.00")
        assert result.after_fees_usd == Decimal("3720.00")
        assert result.clawback_usd == Decimal("100.00")
        assert result.payout_usd == Decimal("3620.00")
        assert result.payout_gold_grams == Decimal("90.5")
        assert result.forfeited_distributions == (2, 3, 4)

    def test_controller_termination_end_to_end(self):
        config = BnslConfig(admin_fee_percent="2", penalty_percent="5")

        async def scenario():
            controller = build_controller(price="50", config=config)
            plan = await controller.create_plan("alice", Decimal("100"), 12, T0, annual_rate_percent=Decimal("8"))
            plan = await controller.activate(plan.id, T0)
            await controller.process_due_distributions(plan.id, plan.distributions[0].scheduled_date)

            when = plan.distributions[0].scheduled_date + timedelta(days=5)
            controller.oracle.update_price("40")
            quote = await controller.quote_early_termination(plan.id, when)
            closed = await controller.terminate_early(plan.id, when, "alice", "holder request")
            return controller, quote, closed

        controller, quote, closed = run(scenario())

        assert quote.payout_usd == Decimal("3620.00")
        assert closed.status is PlanStatus.EARLY_TERMINATED
        assert closed.termination_settlement.payout_gold_grams == Decimal("90.5")
        assert [d.status for d in closed.distributions] == [
            DistributionStatus.PAID,
            DistributionStatus.FORFEITED,
            DistributionStatus.FORFEITED,
            DistributionStatus.FORFEITED,
        ]
        # 100 USD at 50/g plus the settlement
        assert controller.wallet.balance("alice") == Decimal("2") + Decimal("90.5")

    def test_exit_before_first_payout_in_rising_market(self):
        async def scenario():
            controller = build_controller(price="50")
            plan = await open_plan(controller, gold_grams="100")
            controller.oracle.update_price("55")
            return await controller.terminate_early(plan.id, T0 + timedelta(days=45), "alice", "holder request")

        closed = run(scenario())
        s = closed.termination_settlement
        # Locked value 5000 is the worse of the two; 6% of it goes in fees
        assert s.base_value_usd == Decimal("5000.00")
        assert s.payout_usd == Decimal("4700.00")
        assert s.clawback_usd == Decimal("0")
        # 4700 / 55 = 85.454545...
        assert s.payout_gold_grams == Decimal("85.454545")
        assert s.gold_shortfall_grams == Decimal("14.545455")
        assert s.forfeited_distributions == (1, 2, 3, 4)


class TestSweepScenarios:

    def test_outage_delays_but_does_not_lose_payout(self):
        async def scenario():
            controller = build_controller(price="50")
            plan = await open_plan(controller)
            sweep = Sweep(controller)
            q1 = plan.distributions[0].scheduled_date

            controller.oracle.available = False
            outage = await sweep.run_once(q1)
            controller.oracle.available = True
            controller.oracle.update_price("62.5")
            recovered = await sweep.run_once(q1 + timedelta(hours=1))
            return controller, plan, outage, recovered

        controller, plan, outage, recovered = run(scenario())
        assert outage.skipped == (plan.id,)
        assert recovered.distributions_paid == 1
        stored = run(controller.ledger.load(plan.id))
        assert stored.distributions[0].market_price_used_per_gram == Decimal("62.5")
        assert stored.distributions[0].paid_at == plan.distributions[0].scheduled_date + timedelta(hours=1)

    def test_sweep_drives_plans_to_maturity(self):
        async def scenario():
            controller = build_controller(price="50")
            short = await open_plan(controller, user_id="alice", tenor_months=12)
            long = await open_plan(controller, user_id="bob", tenor_months=24)
            sweep = Sweep(controller)
            ticks = [T0 + timedelta(days=30 * i) for i in range(1, 26)]
            reports = await sweep.run(ticks)
            return controller, short, long, reports

        controller, short, long, reports = run(scenario())
        assert sum(r.distributions_paid for r in reports) == 12
        assert run(controller.ledger.load(short.id)).status is PlanStatus.COMPLETED
        assert run(controller.ledger.load(long.id)).status is PlanStatus.COMPLETED
        assert all(r.clean for r in reports)


class TestPortfolioScenario:

    def test_portfolio_across_holders(self):
        async def scenario():
            controller = build_controller(price="50")
            a = await open_plan(controller, user_id="alice", gold_grams="100")
            await open_plan(controller, user_id="bob", gold_grams="40", tenor_months=24)
            pending = await controller.create_plan("carol", Decimal("10"), 36, T0)
            await controller.process_due_distributions(a.id, a.distributions[0].scheduled_date)
            return await controller.portfolio(datetime(2025, 5, 1)), pending

        summary, pending = run(scenario())
        assert summary.plan_count == 3
        assert summary.active_plans == 2
        assert summary.plans_by_status[PlanStatus.PENDING] == 1
        assert summary.locked_gold_grams == Decimal("140")
        assert summary.total_principal_usd == Decimal("7000.00")
        assert summary.distributed_usd == Decimal("125.00")
        # alice: 3 x 125 remaining; bob: 2000 x 11% / 4 = 55 x 8
        assert summary.expected_remaining_payouts_usd == Decimal("815.00")
        # bob's first payout is due 2025-04-15 and has not been processed
        assert summary.overdue_distributions == 1
