"""
conftest.py - Shared pytest fixtures for BNSL tests

Provides common fixtures used across unit, conformance and functional tests:
- Collaborators (plan ledger, oracle, wallet, approval gate)
- A configured LifecycleController
- An already-activated plan
"""

import pytest
from decimal import Decimal

from bnsl import (
    BnslConfig,
    InMemoryPlanLedger,
    InMemoryWallet,
    LifecycleController,
    StaticApprovalGate,
)

from tests.fakes import SwitchablePriceOracle, T0, run


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def config():
    return BnslConfig()


@pytest.fixture
def plan_ledger():
    return InMemoryPlanLedger()


@pytest.fixture
def oracle():
    return SwitchablePriceOracle(Decimal("50"))


@pytest.fixture
def wallet():
    return InMemoryWallet()


@pytest.fixture
def approvals():
    return StaticApprovalGate(approve_all=True)


@pytest.fixture
def controller(plan_ledger, oracle, wallet, approvals, config):
    return LifecycleController(plan_ledger, oracle, wallet, approvals, config)


@pytest.fixture
def active_plan_id(controller, t0):
    """Id of a 100g / 12 month plan locked at 50/g and activated at t0."""
    async def setup():
        plan = await controller.create_plan("alice", Decimal("100"), 12, t0)
        plan = await controller.activate(plan.id, t0)
        return plan.id
    return run(setup())
