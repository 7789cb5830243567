"""
wallet.py - Gold wallet credit interface

The lifecycle credits gold to the holder's wallet on every payout, at
maturity and at early termination. Each credit carries a reference string
("{plan_id}:{kind}:{n}") that identifies the business event; a wallet must
treat a repeated reference as the same credit, which makes a retried
lifecycle transition safe.

A credit also records the spot price and time it was realized at. When a
credit went through but the plan row was never saved, the lifecycle looks the
credit up by reference and rebuilds the row from it instead of re-pricing.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .core import ZERO, WalletCreditError, to_decimal
from .logging import get_logger

logger = get_logger(__name__)

CREDIT_DISTRIBUTION = "distribution"
CREDIT_MATURITY = "maturity"
CREDIT_EARLY_TERMINATION = "early_termination"


def credit_reference(plan_id: str, kind: str, n: int = 0) -> str:
    return f"{plan_id}:{kind}:{n}"


@runtime_checkable
class WalletCredit(Protocol):
    """
    Protocol for the wallet collaborator.

    credit() returns a receipt id. find_credit() returns the credit already
    made under a reference, or None.
    """

    async def credit(
        self,
        user_id: str,
        gold_grams: Decimal,
        usd_equivalent: Decimal,
        reason: str,
        reference: str,
        price_per_gram: Optional[Decimal] = None,
        credited_at: Optional[datetime] = None,
    ) -> str:
        ...

    async def find_credit(self, reference: str) -> Optional[WalletCreditRecord]:
        ...


@dataclass(frozen=True, slots=True)
class WalletCreditRecord:
    receipt_id: str
    user_id: str
    gold_grams: Decimal
    usd_equivalent: Decimal
    reason: str
    reference: str
    price_per_gram: Optional[Decimal] = None
    credited_at: Optional[datetime] = None


class InMemoryWallet:
    """
    Wallet that keeps gold balances per user.

    Credits are deduplicated by reference: a repeated reference returns the
    original receipt and leaves balances unchanged.
    """

    def __init__(self):
        self.balances: Dict[str, Decimal] = {}
        self.credits: List[WalletCreditRecord] = []
        self._by_reference: Dict[str, WalletCreditRecord] = {}

    async def credit(
        self,
        user_id: str,
        gold_grams: Decimal,
        usd_equivalent: Decimal,
        reason: str,
        reference: str,
        price_per_gram: Optional[Decimal] = None,
        credited_at: Optional[datetime] = None,
    ) -> str:
        existing = self._by_reference.get(reference)
        if existing is not None:
            if existing.user_id != user_id or existing.gold_grams != to_decimal(gold_grams):
                raise WalletCreditError(
                    f"reference {reference} reused with different credit details"
                )
            logger.info("Duplicate wallet credit %s ignored (receipt %s)", reference, existing.receipt_id)
            return existing.receipt_id

        grams = to_decimal(gold_grams)
        if grams < ZERO:
            raise WalletCreditError(f"cannot credit negative gold ({grams}g) to {user_id}")

        record = WalletCreditRecord(
            receipt_id=uuid.uuid4().hex,
            user_id=user_id,
            gold_grams=grams,
            usd_equivalent=to_decimal(usd_equivalent),
            reason=reason,
            reference=reference,
            price_per_gram=None if price_per_gram is None else to_decimal(price_per_gram),
            credited_at=credited_at,
        )
        self.balances[user_id] = self.balances.get(user_id, ZERO) + grams
        self.credits.append(record)
        self._by_reference[reference] = record
        return record.receipt_id

    async def find_credit(self, reference: str) -> Optional[WalletCreditRecord]:
        return self._by_reference.get(reference)

    def balance(self, user_id: str) -> Decimal:
        return self.balances.get(user_id, ZERO)

    def __repr__(self):
        return f"InMemoryWallet({len(self.balances)} users, {len(self.credits)} credits)"
