"""
plan_ledger.py - System of record for BNSL plans

The PlanLedger is the only place plan rows live. Callers load a Plan, derive
a new Plan from it with dataclasses.replace(), and save it back. Saves are
full-row upserts guarded by an optimistic version check: a save whose
version does not match the stored row fails with ConcurrentModification.

Key responsibilities:
    - load / save / find_due_plans / list_plans
    - Reject saves that break the transition table or alter locked values
    - Append audit LedgerEntry records in the same call as the row they describe
    - Per-plan serialization via a keyed lock; different plans never contend
"""

from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from .core import (
    Plan, PlanStatus, LedgerEntry,
    ConcurrentModification, InvalidTransition, NotFound,
    check_transition, check_locked_fields,
)
from .logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class PlanLedger(Protocol):
    """
    Protocol for plan persistence.

    A production implementation backs this with a database row per plan and a
    row or advisory lock for lock(); the in-memory ledger below backs tests
    and simulations.
    """

    async def load(self, plan_id: str) -> Plan:
        ...

    async def save(self, plan: Plan, entries: Iterable[LedgerEntry] = ()) -> Plan:
        ...

    async def find_due_plans(self, now: datetime) -> List[Plan]:
        ...

    async def list_plans(self) -> List[Plan]:
        ...

    async def entries(self, plan_id: Optional[str] = None) -> List[LedgerEntry]:
        ...

    def lock(self, plan_id: str):
        """Async context manager serializing work on one plan."""
        ...


class KeyedLock:
    """
    Registry of asyncio locks, one per key.

    Locks are created on first use and dropped when no task holds or awaits
    them, so the registry does not grow with the number of plans ever seen.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def __call__(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self):
        return len(self._locks)


def is_due(plan: Plan, now: datetime) -> bool:
    """An ACTIVE plan with a payout due or its maturity date reached."""
    if plan.status is not PlanStatus.ACTIVE:
        return False
    if plan.maturity_date is not None and now >= plan.maturity_date:
        return True
    return any(d.is_due(now) for d in plan.distributions)


class InMemoryPlanLedger:
    """
    Dict-backed PlanLedger.

    Stored rows are immutable Plan instances, so load() hands out the stored
    object itself. The audit trail is append-only.

    Example:
        ledger = InMemoryPlanLedger()
        stored = await ledger.save(plan, [entry])
        async with ledger.lock(stored.id):
            current = await ledger.load(stored.id)
    """

    def __init__(self):
        self._plans: Dict[str, Plan] = {}
        self._entries: List[LedgerEntry] = []
        self.lock = KeyedLock()

    async def load(self, plan_id: str) -> Plan:
        try:
            return self._plans[plan_id]
        except KeyError:
            raise NotFound(f"plan {plan_id} not found") from None

    async def save(self, plan: Plan, entries: Iterable[LedgerEntry] = ()) -> Plan:
        """
        Upsert a plan row and append its audit entries.

        The incoming plan must carry the version it was loaded at; the stored
        row gets version + 1. A new plan must have version 0 and be PENDING.

        Raises:
            ConcurrentModification: If the version is stale
            InvalidTransition: If the status edge or a locked field is invalid
        """
        entries = list(entries)
        for entry in entries:
            if entry.plan_id != plan.id:
                raise ValueError(f"audit entry for {entry.plan_id} saved with plan {plan.id}")

        stored = self._plans.get(plan.id)
        if stored is None:
            if plan.version != 0:
                raise ConcurrentModification(
                    f"plan {plan.id} does not exist but save carries version {plan.version}"
                )
            if plan.status is not PlanStatus.PENDING:
                raise InvalidTransition(
                    f"plan {plan.id} must be created PENDING, got {plan.status.name}"
                )
        else:
            if plan.version != stored.version:
                raise ConcurrentModification(
                    f"plan {plan.id} was modified concurrently "
                    f"(saved version {plan.version}, stored version {stored.version})"
                )
            check_transition(stored.status, plan.status)
            check_locked_fields(stored, plan)

        new_row = replace(plan, version=plan.version + 1)
        self._plans[plan.id] = new_row
        self._entries.extend(entries)
        logger.debug("Saved plan %s at version %d (%s)", plan.id, new_row.version, new_row.status.name)
        return new_row

    async def find_due_plans(self, now: datetime) -> List[Plan]:
        return [p for p in sorted(self._plans.values(), key=lambda p: p.id) if is_due(p, now)]

    async def list_plans(self) -> List[Plan]:
        return sorted(self._plans.values(), key=lambda p: p.id)

    async def entries(self, plan_id: Optional[str] = None) -> List[LedgerEntry]:
        if plan_id is None:
            return list(self._entries)
        return [e for e in self._entries if e.plan_id == plan_id]

    def __len__(self):
        return len(self._plans)

    def __repr__(self):
        return f"InMemoryPlanLedger({len(self._plans)} plans, {len(self._entries)} entries)"
