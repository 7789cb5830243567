"""
approval.py - Activation gate

A plan moves from PENDING to ACTIVE only once funding and the principal lock
have been confirmed by an outside party (an admin or compliance review).
The engine only asks the question; how approval is granted is not its
concern.
"""

from __future__ import annotations
from typing import Iterable, Protocol, Set, runtime_checkable


@runtime_checkable
class ApprovalGate(Protocol):
    async def is_approved(self, plan_id: str) -> bool:
        ...


class StaticApprovalGate:
    """Approves a fixed set of plan ids, or every plan when approve_all is set."""

    def __init__(self, approved: Iterable[str] = (), approve_all: bool = False):
        self.approved: Set[str] = set(approved)
        self.approve_all = approve_all

    def approve(self, plan_id: str) -> None:
        self.approved.add(plan_id)

    def revoke(self, plan_id: str) -> None:
        self.approved.discard(plan_id)

    async def is_approved(self, plan_id: str) -> bool:
        return self.approve_all or plan_id in self.approved
