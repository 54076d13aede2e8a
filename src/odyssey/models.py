"""
Data model for wallets, agents, negotiations, sessions and transactions.

Records serialize to the camelCase shapes the approval backend speaks;
``from_dict`` validates incoming payloads and raises ``SchemaError`` on
anything malformed. Timestamps are epoch milliseconds.
"""

from __future__ import annotations

import functools
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from .errors import SchemaError
from .money import NATIVE_MINT, is_representable, to_decimal


def now_ms() -> int:
    return int(time.time() * 1000)


def _schema(fn):
    """Wrap a ``from_dict`` so shape errors surface as SchemaError."""

    @functools.wraps(fn)
    def wrapper(cls, payload):
        if not isinstance(payload, Mapping):
            raise SchemaError(f"{cls.__name__}: expected object, got {type(payload).__name__}")
        try:
            return fn(cls, payload)
        except SchemaError:
            raise
        except KeyError as e:
            raise SchemaError(f"{cls.__name__}: missing field {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            raise SchemaError(f"{cls.__name__}: {e}") from e

    return classmethod(wrapper)


def _str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    return int(value)


def _opt_str(value: Any, name: str) -> Optional[str]:
    return None if value is None else _str(value, name)


def _drop_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


# ---------------------------------------------------------------------------
# Status enums
# ---------------------------------------------------------------------------


class NegotiationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not NegotiationStatus.PENDING


class SessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.EXPIRED, SessionStatus.REVOKED)


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransactionType(str, Enum):
    TRANSFER = "transfer"
    TOKEN_TRANSFER = "token_transfer"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


@dataclass
class Wallet:
    """Root identity of the owner. Never leaves the device."""

    public_key: str
    created_at: int
    name: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({"publicKey": self.public_key, "createdAt": self.created_at, "name": self.name})

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "Wallet":
        return cls(
            public_key=_str(payload["publicKey"], "publicKey"),
            created_at=_int(payload["createdAt"], "createdAt"),
            name=_opt_str(payload.get("name"), "name"),
        )


@dataclass
class StoredWallet:
    """The single secure-storage entry written at onboarding."""

    wallet: Wallet
    credential_id: str

    def to_dict(self) -> dict:
        return {"wallet": self.wallet.to_dict(), "credentialId": self.credential_id}

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "StoredWallet":
        return cls(
            wallet=Wallet.from_dict(payload["wallet"]),
            credential_id=_str(payload["credentialId"], "credentialId"),
        )


# ---------------------------------------------------------------------------
# Agents and pairing
# ---------------------------------------------------------------------------


@dataclass
class Agent:
    """An external actor paired with the wallet.

    ``wallet_pubkey`` and ``auth_secret`` come from the approved pairing
    response; the secret authenticates later session requests.
    """

    id: str
    name: str
    paired_at: int
    status: AgentStatus = AgentStatus.ACTIVE
    last_seen: Optional[int] = None
    wallet_pubkey: Optional[str] = None
    auth_secret: Optional[str] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "name": self.name,
            "pairedAt": self.paired_at,
            "lastSeen": self.last_seen,
            "status": self.status.value,
            "walletPubkey": self.wallet_pubkey,
            "authSecret": self.auth_secret,
        })

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "Agent":
        last_seen = payload.get("lastSeen")
        return cls(
            id=_str(payload["id"], "id"),
            name=_str(payload["name"], "name"),
            paired_at=_int(payload["pairedAt"], "pairedAt"),
            status=AgentStatus(payload["status"]),
            last_seen=None if last_seen is None else _int(last_seen, "lastSeen"),
            wallet_pubkey=_opt_str(payload.get("walletPubkey"), "walletPubkey"),
            auth_secret=_opt_str(payload.get("authSecret"), "authSecret"),
        )


@dataclass(frozen=True)
class PairingRequest:
    request_id: str
    code: str
    agent_id: str
    agent_name: str
    created_at: int
    status: NegotiationStatus = NegotiationStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "code": self.code,
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "createdAt": self.created_at,
            "status": self.status.value,
        }

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "PairingRequest":
        return cls(
            request_id=_str(payload["requestId"], "requestId"),
            code=_str(payload["code"], "code"),
            agent_id=_str(payload["agentId"], "agentId"),
            agent_name=_str(payload["agentName"], "agentName"),
            created_at=_int(payload["createdAt"], "createdAt"),
            status=NegotiationStatus(payload["status"]),
        )


# ---------------------------------------------------------------------------
# Spending limits
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpendingLimit:
    """Per-asset amount in decimal units. ``mint == "native"`` is the base asset."""

    mint: str
    amount: Decimal
    decimals: int
    symbol: Optional[str] = None

    def __post_init__(self):
        if not self.mint:
            raise ValueError("mint is required")
        object.__setattr__(self, "amount", to_decimal(self.amount))
        if self.amount < 0:
            raise ValueError(f"amount must not be negative: {self.amount}")
        if isinstance(self.decimals, bool) or not isinstance(self.decimals, int) or self.decimals < 0:
            raise ValueError(f"decimals must be a non-negative integer: {self.decimals!r}")
        if not is_representable(self.amount, self.decimals):
            raise ValueError(f"amount {self.amount} is too large for {self.decimals} decimals")

    @property
    def is_native(self) -> bool:
        return self.mint == NATIVE_MINT

    def with_amount(self, amount: Decimal) -> "SpendingLimit":
        return SpendingLimit(mint=self.mint, amount=amount, decimals=self.decimals, symbol=self.symbol)

    def to_dict(self) -> dict:
        """Exact form for storage; the amount is a decimal string."""
        return _drop_none({
            "mint": self.mint,
            "amount": str(self.amount),
            "decimals": self.decimals,
            "symbol": self.symbol,
        })

    def to_wire(self) -> dict:
        """Backend form; the contract carries amounts as JSON numbers."""
        return {**self.to_dict(), "amount": float(self.amount)}

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "SpendingLimit":
        amount = payload["amount"]
        if isinstance(amount, bool) or not isinstance(amount, (int, float, str)):
            raise ValueError("amount must be a number")
        return cls(
            mint=_str(payload["mint"], "mint"),
            amount=to_decimal(amount),
            decimals=_int(payload["decimals"], "decimals"),
            symbol=_opt_str(payload.get("symbol"), "symbol"),
        )


def index_limits(limits: Iterable[SpendingLimit]) -> dict[str, SpendingLimit]:
    """Key limits by mint, rejecting duplicates."""
    indexed: dict[str, SpendingLimit] = {}
    for limit in limits:
        if limit.mint in indexed:
            raise ValueError(f"Duplicate spending limit for mint {limit.mint}")
        indexed[limit.mint] = limit
    return indexed


def _limits_from_wire(items: Any, name: str) -> dict[str, SpendingLimit]:
    if not isinstance(items, list):
        raise ValueError(f"{name} must be an array")
    return index_limits(SpendingLimit.from_dict(item) for item in items)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionRequest:
    request_id: str
    agent_id: str
    agent_name: str
    wallet_pubkey: str
    session_pubkey: str
    limits: tuple[SpendingLimit, ...]
    duration_seconds: int
    created_at: int
    status: NegotiationStatus = NegotiationStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "walletPubkey": self.wallet_pubkey,
            "sessionPubkey": self.session_pubkey,
            "limits": [limit.to_dict() for limit in self.limits],
            "durationSeconds": self.duration_seconds,
            "createdAt": self.created_at,
            "status": self.status.value,
        }

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "SessionRequest":
        return cls(
            request_id=_str(payload["requestId"], "requestId"),
            agent_id=_str(payload["agentId"], "agentId"),
            agent_name=_str(payload["agentName"], "agentName"),
            wallet_pubkey=_str(payload["walletPubkey"], "walletPubkey"),
            session_pubkey=_str(payload["sessionPubkey"], "sessionPubkey"),
            limits=tuple(_limits_from_wire(payload["limits"], "limits").values()),
            duration_seconds=_int(payload["durationSeconds"], "durationSeconds"),
            created_at=_int(payload["createdAt"], "createdAt"),
            status=NegotiationStatus(payload["status"]),
        )


@dataclass(frozen=True)
class Session:
    """An approved, time- and amount-bounded delegation.

    ``expires_at`` is fixed when the session is created and never recomputed.
    """

    id: str
    agent_id: str
    wallet_pubkey: str
    session_pubkey: str
    limits: dict[str, SpendingLimit]
    duration_seconds: int
    created_at: int
    expires_at: int
    status: SessionStatus = SessionStatus.PENDING
    spent: dict[str, SpendingLimit] = field(default_factory=dict)

    def limit_for(self, mint: str) -> Optional[SpendingLimit]:
        return self.limits.get(mint)

    def spent_for(self, mint: str) -> Optional[SpendingLimit]:
        return self.spent.get(mint)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "walletPubkey": self.wallet_pubkey,
            "sessionPubkey": self.session_pubkey,
            "limits": [limit.to_dict() for limit in self.limits.values()],
            "durationSeconds": self.duration_seconds,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "status": self.status.value,
            "spent": [s.to_dict() for s in self.spent.values()],
        }

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "Session":
        return cls(
            id=_str(payload["id"], "id"),
            agent_id=_str(payload["agentId"], "agentId"),
            wallet_pubkey=_str(payload["walletPubkey"], "walletPubkey"),
            session_pubkey=_str(payload["sessionPubkey"], "sessionPubkey"),
            limits=_limits_from_wire(payload["limits"], "limits"),
            duration_seconds=_int(payload["durationSeconds"], "durationSeconds"),
            created_at=_int(payload["createdAt"], "createdAt"),
            expires_at=_int(payload["expiresAt"], "expiresAt"),
            status=SessionStatus(payload["status"]),
            spent=_limits_from_wire(payload.get("spent") or [], "spent"),
        )


# ---------------------------------------------------------------------------
# Transactions and balances
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Transaction:
    """Append-only log entry. Only ``status`` ever changes, once."""

    signature: str
    type: TransactionType
    from_address: str
    to: str
    amount: Decimal
    timestamp: int
    status: TransactionStatus = TransactionStatus.PENDING
    mint: Optional[str] = None
    symbol: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "signature": self.signature,
            "type": self.type.value,
            "from": self.from_address,
            "to": self.to,
            "amount": str(self.amount),
            "mint": self.mint,
            "symbol": self.symbol,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "sessionId": self.session_id,
        })

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "Transaction":
        return cls(
            signature=_str(payload["signature"], "signature"),
            type=TransactionType(payload["type"]),
            from_address=_str(payload["from"], "from"),
            to=_str(payload["to"], "to"),
            amount=to_decimal(payload["amount"]),
            timestamp=_int(payload["timestamp"], "timestamp"),
            status=TransactionStatus(payload["status"]),
            mint=_opt_str(payload.get("mint"), "mint"),
            symbol=_opt_str(payload.get("symbol"), "symbol"),
            session_id=_opt_str(payload.get("sessionId"), "sessionId"),
        )


@dataclass(frozen=True)
class TokenBalance:
    mint: str
    symbol: str
    name: str
    decimals: int
    balance: int
    ui_balance: str
    logo_uri: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "mint": self.mint,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "balance": self.balance,
            "uiBalance": self.ui_balance,
            "logoUri": self.logo_uri,
        })


# ---------------------------------------------------------------------------
# Backend responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PairingResponse:
    request_id: str
    status: NegotiationStatus
    wallet_pubkey: Optional[str] = None
    auth_secret: Optional[str] = field(default=None, repr=False)

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "PairingResponse":
        return cls(
            request_id=_str(payload["requestId"], "requestId"),
            status=NegotiationStatus(payload["status"]),
            wallet_pubkey=_opt_str(payload.get("walletPubkey"), "walletPubkey"),
            auth_secret=_opt_str(payload.get("authSecret"), "authSecret"),
        )


@dataclass(frozen=True)
class SessionResponse:
    request_id: str
    status: NegotiationStatus
    session: Optional[Session] = None

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "SessionResponse":
        session = payload.get("session")
        return cls(
            request_id=_str(payload["requestId"], "requestId"),
            status=NegotiationStatus(payload["status"]),
            session=None if session is None else Session.from_dict(session),
        )


@dataclass(frozen=True)
class TransferResponse:
    signature: str
    status: TransactionStatus

    @_schema
    def from_dict(cls, payload: Mapping[str, Any]) -> "TransferResponse":
        return cls(
            signature=_str(payload["signature"], "signature"),
            status=TransactionStatus(payload["status"]),
        )
