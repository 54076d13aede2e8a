"""
Pairing and session-request negotiation.

Both negotiations share one shape: ``pending`` until the owner's device
decides, then exactly one of ``approved``, ``rejected`` or ``expired``.
Transitions are observations of the backend's state; this module only
guards that what we observe is a legal move from what we already knew.
"""

from __future__ import annotations

import dataclasses
from typing import TypeVar, Union

from .errors import InvalidTransitionError
from .models import NegotiationStatus, PairingRequest, SessionRequest


NegotiationRecord = Union[PairingRequest, SessionRequest]
R = TypeVar("R", PairingRequest, SessionRequest)


def can_transition(current: NegotiationStatus, target: NegotiationStatus) -> bool:
    if current == target:
        return True
    return current is NegotiationStatus.PENDING


def advance(request: R, observed: NegotiationStatus | str) -> R:
    """Return ``request`` updated to the backend-observed status.

    Re-observing the current status is a no-op. Moving out of a terminal
    state raises ``InvalidTransitionError``.
    """
    target = NegotiationStatus(observed)
    if target == request.status:
        return request
    if not can_transition(request.status, target):
        raise InvalidTransitionError(_kind(request), request.status.value, target.value)
    return dataclasses.replace(request, status=target)


def _kind(request: NegotiationRecord) -> str:
    return "pairing request" if isinstance(request, PairingRequest) else "session request"
