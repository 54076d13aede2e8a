"""
Odyssey — Delegated spending sessions for agents acting on a wallet.

Owner pairs an agent → Agent asks for a bounded session → Owner approves
on their device → Spends are checked and counted against per-asset limits.
"""

__version__ = "0.1.0"

from .models import (
    Agent,
    AgentStatus,
    NegotiationStatus,
    PairingRequest,
    Session,
    SessionRequest,
    SessionStatus,
    SpendingLimit,
    StoredWallet,
    Transaction,
    TransactionStatus,
    Wallet,
)
from .budget import SpendLedger, can_spend, remaining
from .poller import PollPolicy, poll_until_terminal
from .config import OdysseyConfig
from .api_client import ApprovalApiClient
from .ledger import InMemoryLedger, LedgerService
from .storage import FileSecureStore, MemorySecureStore
from .keys import SessionKeypair
from .audit import AuditTrail, EventType
from .authorization import AuthorizationService

__all__ = [
    "Agent", "AgentStatus", "NegotiationStatus", "PairingRequest",
    "Session", "SessionRequest", "SessionStatus", "SpendingLimit",
    "StoredWallet", "Transaction", "TransactionStatus", "Wallet",
    "SpendLedger", "can_spend", "remaining",
    "PollPolicy", "poll_until_terminal", "OdysseyConfig",
    "ApprovalApiClient", "InMemoryLedger", "LedgerService",
    "FileSecureStore", "MemorySecureStore", "SessionKeypair",
    "AuditTrail", "EventType", "AuthorizationService",
]
