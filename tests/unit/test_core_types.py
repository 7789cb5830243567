"""
test_core_types.py - Unit tests for BNSL core types and helpers

Tests:
- Decimal helpers: to_decimal, quantize_usd, quantize_grams, require_positive
- Month arithmetic
- Plan and Distribution construction, immutability, derived properties
- Transition table and locked-field checks
"""

import pytest
from dataclasses import FrozenInstanceError, replace
from datetime import datetime
from decimal import Decimal

from bnsl import (
    Plan, Distribution, PlanStatus, DistributionStatus, LedgerEntry,
    ALLOWED_TRANSITIONS, InvalidInput, InvalidTransition,
    quantize_usd, quantize_grams, add_months,
)
from bnsl.core import to_decimal, require_positive, check_transition, check_locked_fields
from tests.fakes import active_plan, T0


class TestDecimalHelpers:
    """Tests for Decimal conversion and rounding helpers."""

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_decimal_passthrough(self):
        d = Decimal("1.5")
        assert to_decimal(d) is d

    @pytest.mark.parametrize("value", [None, True, "abc"])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(InvalidInput):
            to_decimal(value)

    def test_usd_half_even(self):
        assert quantize_usd(Decimal("2.345")) == Decimal("2.34")
        assert quantize_usd(Decimal("2.355")) == Decimal("2.36")

    def test_grams_round_down(self):
        assert quantize_grams(Decimal("1.2345679")) == Decimal("1.234567")

    @pytest.mark.parametrize("value", ["0", "-1", "NaN", "Infinity"])
    def test_require_positive_rejects(self, value):
        with pytest.raises(InvalidInput):
            require_positive("x", value)


class TestAddMonths:
    """Tests for calendar month arithmetic."""

    def test_simple(self):
        assert add_months(datetime(2025, 1, 15), 3) == datetime(2025, 4, 15)

    def test_clips_to_month_end(self):
        assert add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)

    def test_leap_year(self):
        assert add_months(datetime(2023, 11, 29), 3) == datetime(2024, 2, 29)

    def test_crosses_year(self):
        assert add_months(datetime(2025, 11, 1), 36) == datetime(2028, 11, 1)


class TestDistribution:
    """Tests for the Distribution dataclass."""

    def test_value_converted_to_decimal(self):
        d = Distribution(1, T0, "125")
        assert d.monetary_value_usd == Decimal("125")
        assert isinstance(d.monetary_value_usd, Decimal)

    def test_sequence_number_starts_at_one(self):
        with pytest.raises(InvalidInput):
            Distribution(0, T0, Decimal("125"))

    def test_frozen(self):
        d = Distribution(1, T0, Decimal("125"))
        with pytest.raises(FrozenInstanceError):
            d.monetary_value_usd = Decimal("999")

    def test_is_due(self):
        d = Distribution(1, datetime(2025, 4, 15), Decimal("125"))
        assert not d.is_due(datetime(2025, 4, 14))
        assert d.is_due(datetime(2025, 4, 15))
        paid = replace(d, status=DistributionStatus.PAID)
        assert not paid.is_due(datetime(2025, 5, 1))


class TestPlan:
    """Tests for the Plan dataclass and its derived properties."""

    def test_distribution_count_floors(self):
        assert active_plan(tenor_months=12).distribution_count == 4
        assert active_plan(tenor_months=24).distribution_count == 8
        assert active_plan(tenor_months=13).distribution_count == 4

    def test_numbers_converted_to_decimal(self):
        plan = Plan(
            id="p", user_id="u", principal_gold_grams=100, locked_in_price_per_gram=50.5,
            tenor_months=12, annual_rate_percent=10, admin_fee_percent=1, penalty_percent=5,
        )
        assert plan.locked_in_price_per_gram == Decimal("50.5")
        assert plan.status is PlanStatus.PENDING
        assert plan.locked_principal_value_usd is None
        assert plan.distributions == ()

    def test_rejects_non_positive_tenor(self):
        with pytest.raises(InvalidInput):
            Plan(
                id="p", user_id="u", principal_gold_grams=100, locked_in_price_per_gram=50,
                tenor_months=0, annual_rate_percent=10, admin_fee_percent=1, penalty_percent=5,
            )

    def test_margin_totals(self):
        plan = active_plan(paid=1)
        assert plan.total_margin_usd == Decimal("500.00")
        assert plan.remaining_margin_usd == Decimal("375.00")

    def test_next_distribution_date(self):
        assert active_plan(paid=0).next_distribution_date == datetime(2025, 4, 15, 12, 0)
        assert active_plan(paid=2).next_distribution_date == datetime(2025, 10, 15, 12, 0)
        assert active_plan(paid=4).next_distribution_date is None

    def test_due_distributions(self):
        plan = active_plan(paid=1)
        due = plan.due_distributions(datetime(2025, 10, 15, 12, 0))
        assert [d.sequence_number for d in due] == [2, 3]

    def test_all_distributions_paid(self):
        assert not active_plan(paid=3).all_distributions_paid()
        assert active_plan(paid=4).all_distributions_paid()

    def test_frozen(self):
        plan = active_plan()
        with pytest.raises(FrozenInstanceError):
            plan.status = PlanStatus.COMPLETED

    def test_terminal_statuses(self):
        assert PlanStatus.COMPLETED.is_terminal
        assert PlanStatus.EARLY_TERMINATED.is_terminal
        assert not PlanStatus.ACTIVE.is_terminal
        assert not PlanStatus.PENDING.is_terminal


class TestTransitions:
    """Tests for the plan transition table."""

    @pytest.mark.parametrize("old,new", [
        (PlanStatus.PENDING, PlanStatus.ACTIVE),
        (PlanStatus.ACTIVE, PlanStatus.COMPLETED),
        (PlanStatus.ACTIVE, PlanStatus.EARLY_TERMINATED),
        (PlanStatus.ACTIVE, PlanStatus.ACTIVE),
    ])
    def test_allowed(self, old, new):
        check_transition(old, new)

    @pytest.mark.parametrize("old,new", [
        (PlanStatus.PENDING, PlanStatus.COMPLETED),
        (PlanStatus.PENDING, PlanStatus.EARLY_TERMINATED),
        (PlanStatus.ACTIVE, PlanStatus.PENDING),
        (PlanStatus.COMPLETED, PlanStatus.ACTIVE),
        (PlanStatus.COMPLETED, PlanStatus.EARLY_TERMINATED),
        (PlanStatus.EARLY_TERMINATED, PlanStatus.ACTIVE),
        (PlanStatus.EARLY_TERMINATED, PlanStatus.COMPLETED),
    ])
    def test_rejected(self, old, new):
        with pytest.raises(InvalidTransition):
            check_transition(old, new)

    def test_terminal_states_have_no_edges(self):
        assert ALLOWED_TRANSITIONS[PlanStatus.COMPLETED] == frozenset()
        assert ALLOWED_TRANSITIONS[PlanStatus.EARLY_TERMINATED] == frozenset()


class TestLockedFields:
    """Tests for check_locked_fields."""

    def test_unchanged_plan_passes(self):
        plan = active_plan()
        check_locked_fields(plan, plan)

    def test_paying_a_distribution_passes(self):
        check_locked_fields(active_plan(paid=0), active_plan(paid=1))

    @pytest.mark.parametrize("field,value", [
        ("locked_principal_value_usd", Decimal("5001.00")),
        ("locked_in_price_per_gram", Decimal("51")),
        ("principal_gold_grams", Decimal("101")),
        ("annual_rate_percent", Decimal("11")),
        ("penalty_percent", Decimal("0")),
        ("maturity_date", datetime(2030, 1, 1)),
    ])
    def test_locked_value_change_rejected(self, field, value):
        plan = active_plan()
        with pytest.raises(InvalidTransition):
            check_locked_fields(plan, replace(plan, **{field: value}))

    def test_distribution_value_change_rejected(self):
        plan = active_plan()
        changed = list(plan.distributions)
        changed[2] = replace(changed[2], monetary_value_usd=Decimal("1"))
        with pytest.raises(InvalidTransition):
            check_locked_fields(plan, replace(plan, distributions=tuple(changed)))

    def test_paid_distribution_cannot_be_rewritten(self):
        plan = active_plan(paid=1)
        changed = list(plan.distributions)
        changed[0] = replace(changed[0], gold_credited_grams=Decimal("99"))
        with pytest.raises(InvalidTransition):
            check_locked_fields(plan, replace(plan, distributions=tuple(changed)))

    def test_accumulators_cannot_decrease(self):
        plan = active_plan(paid=2)
        with pytest.raises(InvalidTransition):
            check_locked_fields(plan, replace(plan, monetary_value_distributed_usd=Decimal("0")))


class TestLedgerEntry:
    """Tests for LedgerEntry."""

    def test_details_dict(self):
        entry = LedgerEntry("p", "PLAN_ACTIVATED", T0, details=(("a", 1), ("b", 2)))
        assert entry.details_dict == {"a": 1, "b": 2}
        assert entry.actor == "system"
