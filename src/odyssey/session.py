"""
Session lifecycle.

    pending --> active --> expired
       |          |
       +----------+-----> revoked

Expiry is never stored by a timer: it is computed from ``expires_at``
whenever a session is read.
"""

from __future__ import annotations

import dataclasses
from typing import Optional

from .errors import InvalidTransitionError
from .models import Session, SessionRequest, SessionStatus, SpendingLimit, index_limits, now_ms


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.ACTIVE, SessionStatus.EXPIRED, SessionStatus.REVOKED}),
    SessionStatus.ACTIVE: frozenset({SessionStatus.EXPIRED, SessionStatus.REVOKED}),
    SessionStatus.EXPIRED: frozenset(),
    SessionStatus.REVOKED: frozenset(),
}


def create_session(
    session_id: str,
    request: SessionRequest,
    created_at: Optional[int] = None,
    status: SessionStatus = SessionStatus.PENDING,
) -> Session:
    """Materialize a session from an approved request.

    ``expires_at`` is fixed here as ``created_at + duration``.
    """
    created = now_ms() if created_at is None else created_at
    return Session(
        id=session_id,
        agent_id=request.agent_id,
        wallet_pubkey=request.wallet_pubkey,
        session_pubkey=request.session_pubkey,
        limits=index_limits(request.limits),
        duration_seconds=request.duration_seconds,
        created_at=created,
        expires_at=created + request.duration_seconds * 1000,
        status=status,
        spent={},
    )


def effective_status(session: Session, now: Optional[int] = None) -> SessionStatus:
    """Status as of ``now`` (epoch ms), with lazy expiry applied."""
    if session.status.is_terminal:
        return session.status
    current = now_ms() if now is None else now
    if current >= session.expires_at:
        return SessionStatus.EXPIRED
    return session.status


def is_spendable(session: Session, now: Optional[int] = None) -> bool:
    return effective_status(session, now) is SessionStatus.ACTIVE


def transition(session: Session, target: SessionStatus) -> Session:
    if target == session.status:
        return session
    if target not in _TRANSITIONS[session.status]:
        raise InvalidTransitionError("session", session.status.value, target.value)
    return dataclasses.replace(session, status=target)


def activate(session: Session, now: Optional[int] = None) -> Session:
    """pending -> active, once the session key is usable on the ledger.

    A session whose window already closed cannot be activated.
    """
    if effective_status(session, now) is SessionStatus.EXPIRED:
        raise InvalidTransitionError("session", SessionStatus.EXPIRED.value, SessionStatus.ACTIVE.value)
    return transition(session, SessionStatus.ACTIVE)


def revoke(session: Session) -> Session:
    return transition(session, SessionStatus.REVOKED)


def refresh(session: Session, now: Optional[int] = None) -> Session:
    """Persistable copy with lazy expiry folded into the stored status."""
    status = effective_status(session, now)
    if status is SessionStatus.EXPIRED and session.status is not SessionStatus.EXPIRED:
        return transition(session, SessionStatus.EXPIRED)
    return session


def time_remaining_ms(session: Session, now: Optional[int] = None) -> int:
    if effective_status(session, now).is_terminal:
        return 0
    current = now_ms() if now is None else now
    return max(0, session.expires_at - current)


def merge_spent(session: Session, spent: dict[str, SpendingLimit]) -> Session:
    """Replace the consumption record, e.g. after reconciling with the ledger."""
    unknown = set(spent) - set(session.limits)
    if unknown:
        raise ValueError(f"Spent mints without a limit: {', '.join(sorted(unknown))}")
    return dataclasses.replace(session, spent=dict(spent))


def format_duration(seconds: int) -> str:
    """Human-readable approval window, e.g. ``1 hour`` or ``2h 30m``."""
    hours, rest = divmod(int(seconds), 3600)
    minutes = rest // 60
    if hours >= 24:
        days = hours // 24
        return f"{days} day{'s' if days > 1 else ''}"
    if hours > 0:
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours} hour{'s' if hours > 1 else ''}"
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


def format_time_remaining(session: Session, now: Optional[int] = None) -> str:
    status = effective_status(session, now)
    if status is SessionStatus.EXPIRED:
        return "Expired"
    if status is SessionStatus.REVOKED:
        return "Revoked"
    left = time_remaining_ms(session, now)
    hours, rest = divmod(left, 3_600_000)
    minutes = rest // 60_000
    if hours > 0:
        return f"{hours}h {minutes}m left"
    return f"{minutes}m left"
