"""Ledger service boundary: balances, transaction status and session-key revocation."""

from __future__ import annotations

import dataclasses
import logging
import threading
from decimal import Decimal
from typing import Protocol

from .errors import LedgerError
from .keys import is_valid_address
from .models import TokenBalance, Transaction, TransactionStatus, TransactionType, now_ms
from .money import NATIVE_MINT, ZERO, to_decimal

logger = logging.getLogger(__name__)


class LedgerService(Protocol):
    def is_valid_address(self, address: str) -> bool: ...

    def get_balance(self, address: str) -> Decimal: ...

    def get_token_balances(self, address: str) -> list[TokenBalance]: ...

    def get_transaction_status(self, signature: str) -> TransactionStatus: ...

    def list_session_transactions(self, session_pubkey: str) -> list[Transaction]: ...

    def is_session_key_usable(self, session_pubkey: str) -> bool: ...

    def revoke_session_key(self, session_pubkey: str) -> None: ...


class InMemoryLedger:
    """Process-local stand-in for the chain.

    Enforces the same semantics expected from the real service (unknown
    signatures are pending, revocation is idempotent) and is suitable for
    local development and tests.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._native: dict[str, Decimal] = {}
        self._tokens: dict[str, dict[str, TokenBalance]] = {}
        self._transactions: dict[str, Transaction] = {}
        self._session_keys: dict[str, str] = {}  # signature -> session pubkey
        self._revoked: set[str] = set()

    def is_valid_address(self, address: str) -> bool:
        return is_valid_address(address)

    def fund(self, address: str, amount: Decimal | float | str) -> None:
        with self._lock:
            self._native[address] = self._native.get(address, ZERO) + to_decimal(amount)

    def fund_token(self, address: str, balance: TokenBalance) -> None:
        with self._lock:
            self._tokens.setdefault(address, {})[balance.mint] = balance

    def get_balance(self, address: str) -> Decimal:
        with self._lock:
            return self._native.get(address, ZERO)

    def get_token_balances(self, address: str) -> list[TokenBalance]:
        with self._lock:
            return list(self._tokens.get(address, {}).values())

    def submit(
        self,
        signature: str,
        *,
        session_pubkey: str,
        source: str,
        destination: str,
        amount: Decimal | float | str,
        mint: str = NATIVE_MINT,
        status: TransactionStatus = TransactionStatus.PENDING,
    ) -> Transaction:
        if not self.is_valid_address(destination):
            raise LedgerError(f"Invalid destination address: {destination}")
        with self._lock:
            if session_pubkey in self._revoked:
                raise LedgerError(f"Session key revoked: {session_pubkey}")
            tx = Transaction(
                signature=signature,
                type=TransactionType.TRANSFER if mint == NATIVE_MINT else TransactionType.TOKEN_TRANSFER,
                from_address=source,
                to=destination,
                amount=to_decimal(amount),
                timestamp=now_ms(),
                status=status,
                mint=None if mint == NATIVE_MINT else mint,
            )
            self._transactions[signature] = tx
            self._session_keys[signature] = session_pubkey
            return tx

    def settle(self, signature: str, status: TransactionStatus) -> None:
        with self._lock:
            tx = self._transactions.get(signature)
            if tx is None:
                raise LedgerError(f"Unknown transaction: {signature}")
            self._transactions[signature] = dataclasses.replace(tx, status=status)

    def get_transaction_status(self, signature: str) -> TransactionStatus:
        with self._lock:
            tx = self._transactions.get(signature)
            return tx.status if tx else TransactionStatus.PENDING

    def list_session_transactions(self, session_pubkey: str) -> list[Transaction]:
        with self._lock:
            return [
                tx
                for sig, tx in self._transactions.items()
                if self._session_keys.get(sig) == session_pubkey
            ]

    def revoke_session_key(self, session_pubkey: str) -> None:
        with self._lock:
            if session_pubkey in self._revoked:
                logger.info("Session key already revoked: %s", session_pubkey)
                return
            self._revoked.add(session_pubkey)
        logger.info("Session key revoked: %s", session_pubkey)

    def is_session_key_usable(self, session_pubkey: str) -> bool:
        if not self.is_valid_address(session_pubkey):
            return False
        with self._lock:
            return session_pubkey not in self._revoked
