"""
Spending-limit ledger for sessions.

Arithmetic runs in integer base units at each asset's precision: allowances
round down and spends round up, so rounding can never widen what the owner
approved. ``SpendLedger`` adds the two things pure arithmetic cannot give:
per-session mutual exclusion and at-most-once application per signature.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from decimal import Decimal
from typing import Mapping, Optional

from .errors import LimitExceededError, SignatureConflictError
from .models import Session, SpendingLimit
from .money import (
    ZERO,
    base_units_to_decimal,
    is_representable,
    limit_to_base_units,
    spend_to_base_units,
    to_decimal,
)

logger = logging.getLogger(__name__)


def _remaining_units(limit: SpendingLimit, spent: Optional[SpendingLimit]) -> int:
    limit_units = limit_to_base_units(limit.amount, limit.decimals)
    spent_units = spend_to_base_units(spent.amount, limit.decimals) if spent else 0
    return max(0, limit_units - spent_units)


def remaining(limit: SpendingLimit, spent: Optional[SpendingLimit] = None) -> Decimal:
    """Allowance left for one mint, clamped at zero."""
    return base_units_to_decimal(_remaining_units(limit, spent), limit.decimals)


def remaining_for(session: Session, mint: str) -> Decimal:
    limit = session.limit_for(mint)
    if limit is None:
        return ZERO
    return remaining(limit, session.spent_for(mint))


def can_spend(session: Session, mint: str, amount: Decimal | float | int | str) -> bool:
    """True iff ``amount`` is positive and fits the mint's remaining allowance.

    A mint with no limit on the session has no allowance at all.
    """
    value = to_decimal(amount)
    if value <= 0:
        return False
    limit = session.limit_for(mint)
    if limit is None or not is_representable(value, limit.decimals):
        return False
    return spend_to_base_units(value, limit.decimals) <= _remaining_units(limit, session.spent_for(mint))


def apply_spend(session: Session, mint: str, amount: Decimal | float | int | str) -> Session:
    """Return a copy of ``session`` with ``amount`` added to ``spent[mint]``."""
    value = to_decimal(amount)
    if not can_spend(session, mint, value):
        raise LimitExceededError(mint, value, remaining_for(session, mint))

    limit = session.limits[mint]
    current = session.spent_for(mint)
    spent_units = spend_to_base_units(current.amount, limit.decimals) if current else 0
    total_units = spent_units + spend_to_base_units(value, limit.decimals)
    updated = limit.with_amount(base_units_to_decimal(total_units, limit.decimals))
    return dataclasses.replace(session, spent={**session.spent, mint: updated})


def percent_spent(session: Session, mint: str) -> float:
    """Share of the allowance consumed, 0-100. Display only."""
    limit = session.limit_for(mint)
    if limit is None or limit.amount <= 0:
        return 0.0
    spent = session.spent_for(mint)
    used = spent.amount if spent else ZERO
    return float(min(Decimal(100), used / limit.amount * 100))


def summarize(session: Session) -> list[dict]:
    """Per-mint allowance view for listings."""
    rows = []
    for mint, limit in session.limits.items():
        spent = session.spent_for(mint)
        rows.append({
            "mint": mint,
            "symbol": limit.symbol,
            "limit": limit.amount,
            "spent": spent.amount if spent else ZERO,
            "remaining": remaining(limit, spent),
            "percent_spent": percent_spent(session, mint),
        })
    return rows


class SpendLedger:
    """
    Applies confirmed spends to sessions exactly once.

    Callers hold ``lock_for(session_id)`` while they read the current session,
    apply and store the result, which linearizes concurrent spends against
    the same session.
    """

    def __init__(self, applied: Optional[Mapping[str, str]] = None):
        # signature -> session id
        self._applied: dict[str, str] = dict(applied or {})
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.Lock()
            return lock

    def is_applied(self, signature: str) -> bool:
        return signature in self._applied

    def apply(
        self,
        session: Session,
        mint: str,
        amount: Decimal | float | int | str,
        signature: str,
    ) -> tuple[Session, bool]:
        """Apply a spend keyed on ``signature``.

        Returns ``(session, applied)``; ``applied`` is False for a replay, in
        which case the session comes back unchanged.
        """
        if not signature:
            raise ValueError("Transaction signature is required")
        owner = self._applied.get(signature)
        if owner is not None:
            if owner != session.id:
                raise SignatureConflictError(signature, session.id, owner)
            logger.info("Ignoring replayed confirmation %s for session %s", signature, session.id)
            return session, False

        updated = apply_spend(session, mint, amount)
        self._applied[signature] = session.id
        return updated, True

    def mark_applied(self, signature: str, session_id: str) -> None:
        """Record a signature already reflected in a session's ``spent``."""
        self._applied.setdefault(signature, session_id)

    def to_dict(self) -> dict[str, str]:
        return dict(self._applied)
