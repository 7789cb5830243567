"""
bnsl - Buy-Now-Sell-Later plan lifecycle and settlement engine

A BNSL plan locks a quantity of gold at a fixed price for a fixed tenor. The
holder receives quarterly distributions of fixed USD value, credited in gold
at the spot price of the payout day, and gets the principal gold back at
maturity. An early exit is settled at the worse of the locked and market
value, less fees and a clawback of the first payout.

Usage:
    import asyncio
    from datetime import datetime
    from bnsl import (
        LifecycleController, InMemoryPlanLedger, StaticPriceOracle,
        InMemoryWallet, StaticApprovalGate, BnslConfig,
    )

    async def main():
        now = datetime(2025, 1, 15)
        oracle = StaticPriceOracle(50)
        controller = LifecycleController(
            InMemoryPlanLedger(), oracle, InMemoryWallet(),
            StaticApprovalGate(approve_all=True), BnslConfig(),
        )
        plan = await controller.create_plan("alice", 100, 12, now)
        plan = await controller.activate(plan.id, now)
        quote = await controller.quote_early_termination(plan.id, now)

    asyncio.run(main())
"""

# Core types
from .core import (
    Plan,
    Distribution,
    PlanStatus,
    DistributionStatus,
    MaturitySettlement,
    EarlyTerminationSettlement,
    LedgerEntry,
    ALLOWED_TRANSITIONS,
    BnslError,
    InvalidInput,
    AlreadyPaid,
    NotDue,
    PrematureMaturity,
    IncompleteDistributions,
    NotActive,
    InvalidTransition,
    NotApproved,
    NotFound,
    ConcurrentModification,
    PriceUnavailable,
    WalletCreditError,
    ConfigurationError,
    quantize_usd,
    quantize_grams,
    add_months,
    USD_QUANTUM,
    GOLD_QUANTUM,
)

# Configuration
from .config import BnslConfig, TenorRate

# Settlement (pure functions)
from .settlement import (
    compute_locked_principal,
    compute_distribution_value,
    compute_distribution_schedule,
    realize_distribution,
    compute_maturity_settlement,
    compute_early_termination_settlement,
    forfeit_distributions,
)

# Collaborators
from .price_oracle import (
    SpotQuote,
    PriceOracle,
    StaticPriceOracle,
    TimeSeriesPriceOracle,
    fetch_spot_price,
)
from .plan_ledger import PlanLedger, InMemoryPlanLedger, KeyedLock
from .wallet import WalletCredit, WalletCreditRecord, InMemoryWallet, credit_reference
from .approval import ApprovalGate, StaticApprovalGate

# Lifecycle
from .lifecycle import LifecycleController
from .sweep import Sweep, SweepReport

# Read side
from .projection import PlanSnapshot, PortfolioSummary, plan_snapshot, project_portfolio

# Logging
from .logging import setup_logging, get_logger, JsonFormatter

__all__ = [
    # Core
    'Plan', 'Distribution', 'PlanStatus', 'DistributionStatus',
    'MaturitySettlement', 'EarlyTerminationSettlement', 'LedgerEntry',
    'ALLOWED_TRANSITIONS', 'quantize_usd', 'quantize_grams', 'add_months',
    'USD_QUANTUM', 'GOLD_QUANTUM',
    # Errors
    'BnslError', 'InvalidInput', 'AlreadyPaid', 'NotDue', 'PrematureMaturity',
    'IncompleteDistributions', 'NotActive', 'InvalidTransition', 'NotApproved',
    'NotFound', 'ConcurrentModification', 'PriceUnavailable', 'WalletCreditError',
    'ConfigurationError',
    # Configuration
    'BnslConfig', 'TenorRate',
    # Settlement
    'compute_locked_principal', 'compute_distribution_value',
    'compute_distribution_schedule', 'realize_distribution',
    'compute_maturity_settlement', 'compute_early_termination_settlement',
    'forfeit_distributions',
    # Collaborators
    'SpotQuote', 'PriceOracle', 'StaticPriceOracle', 'TimeSeriesPriceOracle',
    'fetch_spot_price',
    'PlanLedger', 'InMemoryPlanLedger', 'KeyedLock',
    'WalletCredit', 'WalletCreditRecord', 'InMemoryWallet', 'credit_reference',
    'ApprovalGate', 'StaticApprovalGate',
    # Lifecycle
    'LifecycleController', 'Sweep', 'SweepReport',
    # Read side
    'PlanSnapshot', 'PortfolioSummary', 'plan_snapshot', 'project_portfolio',
    # Logging
    'setup_logging', 'get_logger', 'JsonFormatter',
]

__version__ = '1.0.0'
