"""
Transition Conformance Tests

INVARIANT: Plan status follows PENDING → ACTIVE → {COMPLETED, EARLY_TERMINATED}.

    ∀ sequence of operations on a plan:
        every observed status change is an edge of ALLOWED_TRANSITIONS
        once terminal, status never changes again
        failed operations leave the stored row untouched
        the audit trail records exactly one entry per transition
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal
from datetime import timedelta

from bnsl import ALLOWED_TRANSITIONS, BnslError, PlanStatus
from tests.fakes import build_controller, run, T0


operations = st.lists(
    st.tuples(
        st.sampled_from(["activate", "process", "mature", "terminate"]),
        st.integers(min_value=0, max_value=500),
    ),
    min_size=1,
    max_size=10,
)

ACTION_FOR_STATUS = {
    PlanStatus.ACTIVE: "PLAN_ACTIVATED",
    PlanStatus.COMPLETED: "PLAN_MATURED",
    PlanStatus.EARLY_TERMINATED: "PLAN_EARLY_TERMINATED",
}


class TestTransitionProperties:
    """Property-based state machine tests."""

    @given(operations)
    @settings(max_examples=50, deadline=None)
    def test_only_allowed_edges(self, ops):
        """
        PROPERTY: Arbitrary operation sequences only move along allowed edges.
        """
        async def scenario():
            controller = build_controller()
            plan = await controller.create_plan("alice", Decimal("100"), 12, T0)
            observed = [plan.status]

            for op, days in sorted(ops, key=lambda o: o[1]):
                now = T0 + timedelta(days=days)
                before = await controller.ledger.load(plan.id)
                try:
                    if op == "activate":
                        await controller.activate(plan.id, now)
                    elif op == "process":
                        await controller.process_due_distributions(plan.id, now)
                    elif op == "mature":
                        await controller.mature_plan(plan.id, now)
                    else:
                        await controller.terminate_early(plan.id, now, "alice", "holder request")
                except BnslError:
                    assert await controller.ledger.load(plan.id) == before
                    continue

                after = await controller.ledger.load(plan.id)
                if after.status is not before.status:
                    assert after.status in ALLOWED_TRANSITIONS[before.status]
                    observed.append(after.status)
                if before.status.is_terminal:
                    assert after == before

            entries = await controller.ledger.entries(plan.id)
            actions = [e.action for e in entries]
            assert actions[0] == "PLAN_CREATED"
            transition_actions = [a for a in actions if a in ACTION_FOR_STATUS.values()]
            assert transition_actions == [ACTION_FOR_STATUS[s] for s in observed[1:]]

        run(scenario())
