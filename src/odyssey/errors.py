"""
Odyssey error types.

Specific exceptions for each failure mode so callers (and the UI layer
above them) can tell "the owner said no" from "we gave up waiting" from
"the network went away" and render each differently.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class OdysseyError(Exception):
    """Base error for all Odyssey operations."""
    pass


class InvalidTransitionError(OdysseyError):
    """A state change was attempted that the state machine does not allow."""
    def __init__(self, kind: str, current: str, target: str):
        self.kind = kind
        self.current = current
        self.target = target
        super().__init__(f"Invalid {kind} transition: {current} -> {target}")


class AgentNotActiveError(InvalidTransitionError):
    """Sessions can only be requested for an active agent."""
    def __init__(self, agent_id: str, status: str):
        self.agent_id = agent_id
        super().__init__("agent", status, "session request")


class NotFoundError(OdysseyError):
    """Referenced agent, session or request does not exist."""
    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class NotOnboardedError(OdysseyError):
    """No wallet has been created on this device yet."""
    pass


# Budget errors
class BudgetError(OdysseyError):
    """Base error for spending limit violations."""
    pass


class LimitExceededError(BudgetError):
    """Spend would exceed the remaining allowance for a mint."""
    def __init__(self, mint: str, amount: Decimal, remaining: Decimal):
        self.mint = mint
        self.amount = amount
        self.remaining = remaining
        super().__init__(f"{amount} ({mint}) exceeds remaining allowance {remaining}")


class SessionInactiveError(BudgetError):
    """Session is not active (pending, expired or revoked) so nothing can be spent."""
    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is {status}")


class SignatureConflictError(BudgetError):
    """A confirmed transaction was already counted against another session."""
    def __init__(self, signature: str, session_id: str, owner_session_id: str):
        self.signature = signature
        self.session_id = session_id
        self.owner_session_id = owner_session_id
        super().__init__(f"Signature {signature} already applied to session {owner_session_id}")


# Negotiation outcomes
class NegotiationError(OdysseyError):
    """A pairing or session request did not end in approval.

    All subclasses are recoverable by starting a fresh request.
    """
    def __init__(self, message: str, request_id: Optional[str] = None, attempts: int = 0):
        self.request_id = request_id
        self.attempts = attempts
        super().__init__(message)


class RejectedError(NegotiationError):
    """The owner's device rejected the request."""
    pass


class RequestExpiredError(NegotiationError):
    """The backend reported that the request expired."""
    pass


class PollTimeoutError(NegotiationError):
    """Attempt budget exhausted while the request was still pending.

    ``transport_failures`` counts attempts lost to connectivity on the way.
    """
    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        attempts: int = 0,
        transport_failures: int = 0,
    ):
        self.transport_failures = transport_failures
        super().__init__(message, request_id=request_id, attempts=attempts)


class PollTransportError(NegotiationError):
    """Attempt budget exhausted while the backend was unreachable."""
    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        attempts: int = 0,
        transport_failures: int = 0,
    ):
        self.transport_failures = transport_failures
        super().__init__(message, request_id=request_id, attempts=attempts)


class PollCancelledError(NegotiationError):
    """The caller abandoned the poll."""
    pass


# API / network errors
class ApiError(OdysseyError):
    """Base error for backend API failures."""
    pass


class ApiRequestError(ApiError):
    """Backend answered with a non-2xx status."""
    def __init__(self, message: str, status_code: int, code: Optional[str] = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class SchemaError(ApiError):
    """A payload did not match the expected shape."""
    pass


class TransportError(ApiError):
    """Network-level failure (DNS, connection refused, timeout, etc.)."""
    pass


# Ledger errors
class LedgerError(OdysseyError):
    """The ledger service failed.

    ``idempotent`` is True when repeating the call would be harmless (the
    remote state already matches what was asked for).
    """
    def __init__(self, message: str, idempotent: bool = False):
        self.idempotent = idempotent
        super().__init__(message)


class InvalidAddressError(LedgerError):
    """Destination is not a valid ledger address."""
    pass


# Storage errors
class StorageError(OdysseyError):
    """Secure storage could not be read or written."""
    pass
