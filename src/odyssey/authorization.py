"""
Authorization facade.

Flow:
1. Pair an agent (owner submits the agent's code, backend relays approval)
2. Agent asks for a session with per-asset limits and a duration
3. Owner approves on their device; we observe it by polling
4. Transfers signed by the session key are checked against the limits
5. Confirmed transfers are applied to ``spent`` exactly once
6. Sessions end by expiry (computed on read) or explicit revocation

Nothing here approves anything: agent-supplied limits and durations are
only forwarded to the owner's device.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import os
import threading
import time
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from . import budget
from . import session as lifecycle
from .api_client import ApprovalApiClient
from .audit import AuditTrail, EventType
from .budget import SpendLedger
from .config import OdysseyConfig
from .errors import (
    AgentNotActiveError,
    InvalidAddressError,
    InvalidTransitionError,
    LedgerError,
    LimitExceededError,
    NegotiationError,
    NotFoundError,
    NotOnboardedError,
    RejectedError,
    RequestExpiredError,
    SchemaError,
    SessionInactiveError,
)
from .keys import RequestSigner, SessionKeypair, canonical_json_bytes
from .ledger import LedgerService
from .models import (
    Agent,
    AgentStatus,
    NegotiationStatus,
    PairingRequest,
    PairingResponse,
    Session,
    SessionRequest,
    SessionResponse,
    SessionStatus,
    SpendingLimit,
    StoredWallet,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
    index_limits,
    now_ms,
)
from .money import NATIVE_MINT, ZERO, to_decimal
from .negotiation import advance
from .poller import poll_until_terminal
from .storage import STATE_STORAGE_KEY, SecureStore, load_json, load_wallet, save_json, save_wallet

logger = logging.getLogger(__name__)


class AuthorizationService:
    """Owns the wallet's agents, negotiations, sessions and transaction log."""

    def __init__(
        self,
        api: ApprovalApiClient,
        ledger: LedgerService,
        store: SecureStore,
        *,
        signer: Optional[RequestSigner] = None,
        config: Optional[OdysseyConfig] = None,
        audit: Optional[AuditTrail] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.api = api
        self.ledger = ledger
        self.store = store
        self.signer = signer
        self.config = config or OdysseyConfig()
        self.audit = audit
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.RLock()
        self._agents: dict[str, Agent] = {}
        self._pairing_requests: dict[str, PairingRequest] = {}
        self._pairing_responses: dict[str, PairingResponse] = {}
        self._session_requests: dict[str, SessionRequest] = {}
        self._approved_sessions: dict[str, Session] = {}
        self._sessions: dict[str, Session] = {}
        self._transactions: dict[str, Transaction] = {}
        self._session_keys: dict[str, str] = {}
        self._spends = SpendLedger()
        self._load_state()

    # ── Wallet ───────────────────────────────────────────────────

    def create_wallet(self, public_key: str, credential_id: str, name: Optional[str] = "My Wallet") -> StoredWallet:
        """Store the owner's wallet identity produced by their authentication factor."""
        if not self.ledger.is_valid_address(public_key):
            raise InvalidAddressError(f"Invalid wallet public key: {public_key}")
        if not credential_id:
            raise ValueError("credential_id is required")
        stored = StoredWallet(
            wallet=Wallet(public_key=public_key, created_at=self._clock(), name=name),
            credential_id=credential_id,
        )
        save_wallet(self.store, stored)
        self._log(EventType.WALLET_CREATED, details={"public_key": public_key})
        return stored

    def is_onboarded(self) -> bool:
        return load_wallet(self.store) is not None

    def load_wallet(self) -> StoredWallet:
        stored = load_wallet(self.store)
        if stored is None:
            raise NotOnboardedError("No wallet on this device; run onboarding first")
        return stored

    # ── Pairing ──────────────────────────────────────────────────

    def initiate_pairing(self, code: str, agent_id: str, agent_name: str) -> PairingRequest:
        code = code.strip()
        if not code:
            raise ValueError("Please enter a pairing code")
        if not agent_id or not agent_name:
            raise ValueError("agent_id and agent_name are required")

        response = self.api.create_pairing(code=code, agent_id=agent_id, agent_name=agent_name)
        request = PairingRequest(
            request_id=response.request_id,
            code=code,
            agent_id=agent_id,
            agent_name=agent_name,
            created_at=self._clock(),
        )
        with self._lock:
            self._pairing_requests[request.request_id] = request
            self._observe_pairing(response)
            request = self._pairing_requests[request.request_id]
            self._save_state()

        self._log(EventType.PAIRING_REQUESTED, agent_id=agent_id, request_id=request.request_id)
        logger.info("Pairing requested: %s (agent %s)", request.request_id, agent_id)
        return request

    def await_pairing(self, request_id: str, cancel: Optional[threading.Event] = None) -> Agent:
        """Poll until the pairing is decided; returns the paired agent."""
        request = self._require_pairing_request(request_id)
        if request.status is NegotiationStatus.APPROVED:
            return self._materialize_agent(request_id)
        self._raise_if_failed(request.status, request_id, request.agent_id, EventType.PAIRING_FAILED)

        def status_of(response: PairingResponse) -> NegotiationStatus:
            with self._lock:
                self._observe_pairing(response)
                self._save_state()
            return response.status

        try:
            outcome = poll_until_terminal(
                lambda: self.api.check_pairing(request_id),
                status_of,
                on_approved=lambda _response: self._materialize_agent(request_id),
                policy=self.config.poll,
                sleep=self._sleep,
                cancel=cancel,
                request_id=request_id,
            )
        except NegotiationError as e:
            self._log(
                EventType.PAIRING_FAILED,
                agent_id=request.agent_id,
                request_id=request_id,
                success=False,
                reason=f"{type(e).__name__}: {e}",
            )
            raise
        return outcome.value

    def pair_agent(
        self,
        code: str,
        agent_id: str,
        agent_name: str,
        cancel: Optional[threading.Event] = None,
    ) -> Agent:
        request = self.initiate_pairing(code, agent_id, agent_name)
        return self.await_pairing(request.request_id, cancel=cancel)

    def _observe_pairing(self, response: PairingResponse) -> None:
        current = self._pairing_requests[response.request_id]
        self._pairing_requests[response.request_id] = advance(current, response.status)
        previous = self._pairing_responses.get(response.request_id)
        if previous is None or response.auth_secret or response.wallet_pubkey:
            self._pairing_responses[response.request_id] = response

    def _materialize_agent(self, request_id: str) -> Agent:
        with self._lock:
            request = self._pairing_requests[request_id]
            response = self._pairing_responses.get(request_id)
            existing = self._agents.get(request.agent_id)
            now = self._clock()
            agent = Agent(
                id=request.agent_id,
                name=request.agent_name,
                paired_at=existing.paired_at if existing and existing.status is AgentStatus.ACTIVE else now,
                status=AgentStatus.ACTIVE,
                last_seen=now,
                wallet_pubkey=(response.wallet_pubkey if response else None) or (existing.wallet_pubkey if existing else None),
                auth_secret=(response.auth_secret if response else None) or (existing.auth_secret if existing else None),
            )
            self._agents[agent.id] = agent
            self._save_state()
        self._log(EventType.PAIRING_APPROVED, agent_id=agent.id, request_id=request_id)
        logger.info("Agent paired: %s (%s)", agent.id, agent.name)
        return agent

    # ── Session negotiation ──────────────────────────────────────

    def request_session(
        self,
        agent_id: str,
        limits: Iterable[SpendingLimit],
        duration_seconds: int,
    ) -> SessionRequest:
        """Ask the owner's device to approve a session for ``agent_id``."""
        stored = self.load_wallet()
        agent = self.get_agent(agent_id)
        if agent.status is not AgentStatus.ACTIVE:
            raise AgentNotActiveError(agent_id, agent.status.value)
        if self.signer is None:
            raise NotOnboardedError("No owner signer configured for session requests")

        limit_list = list(limits)
        _validate_session_terms(limit_list, duration_seconds)

        keypair = SessionKeypair.generate()
        wallet_pubkey = stored.wallet.public_key
        timestamp = self._clock()
        payload = {
            "agentId": agent.id,
            "walletPubkey": wallet_pubkey,
            "sessionPubkey": keypair.public_key,
            "durationSeconds": duration_seconds,
            "limits": [limit.to_wire() for limit in limit_list],
            "timestamp": timestamp,
        }
        signature = self.signer.sign(canonical_json_bytes(payload))

        response = self.api.create_session_request(
            agent_id=agent.id,
            agent_name=agent.name,
            wallet_pubkey=wallet_pubkey,
            session_pubkey=keypair.public_key,
            duration_seconds=duration_seconds,
            signature=signature,
            timestamp=timestamp,
            auth_secret=agent.auth_secret or "",
            limits=limit_list,
        )
        request = SessionRequest(
            request_id=response.request_id,
            agent_id=agent.id,
            agent_name=agent.name,
            wallet_pubkey=wallet_pubkey,
            session_pubkey=keypair.public_key,
            limits=tuple(limit_list),
            duration_seconds=duration_seconds,
            created_at=timestamp,
        )
        with self._lock:
            self._session_requests[request.request_id] = request
            self._session_keys[keypair.public_key] = keypair.secret_key
            self._observe_session(response)
            request = self._session_requests[request.request_id]
            self._save_state()

        self._log(
            EventType.SESSION_REQUESTED,
            agent_id=agent.id,
            request_id=request.request_id,
            details={
                "duration_seconds": duration_seconds,
                "limits": [limit.to_dict() for limit in limit_list],
            },
        )
        logger.info(
            "Session requested: %s (agent %s, %ds, %d limits)",
            request.request_id,
            agent.id,
            duration_seconds,
            len(limit_list),
        )
        return request

    def await_session(self, request_id: str, cancel: Optional[threading.Event] = None) -> Session:
        """Poll until the session request is decided; returns the new session."""
        request = self._require_session_request(request_id)
        if request.status is NegotiationStatus.APPROVED:
            return self._materialize_session(request_id)
        self._raise_if_failed(request.status, request_id, request.agent_id, EventType.SESSION_FAILED)

        def status_of(response: SessionResponse) -> NegotiationStatus:
            with self._lock:
                self._observe_session(response)
                self._save_state()
            return response.status

        try:
            outcome = poll_until_terminal(
                lambda: self.api.check_session_request(request_id),
                status_of,
                on_approved=lambda _response: self._materialize_session(request_id),
                policy=self.config.poll,
                sleep=self._sleep,
                cancel=cancel,
                request_id=request_id,
            )
        except NegotiationError as e:
            self._log(
                EventType.SESSION_FAILED,
                agent_id=request.agent_id,
                request_id=request_id,
                success=False,
                reason=f"{type(e).__name__}: {e}",
            )
            raise
        return outcome.value

    def _observe_session(self, response: SessionResponse) -> None:
        current = self._session_requests[response.request_id]
        self._session_requests[response.request_id] = advance(current, response.status)
        if response.session is not None:
            self._approved_sessions[response.request_id] = response.session

    def _materialize_session(self, request_id: str) -> Session:
        with self._lock:
            request = self._session_requests[request_id]
            existing = next((s for s in self._sessions.values() if _created_from(s, request)), None)
            if existing is not None:
                return existing

            remote = self._approved_sessions.get(request_id)
            status = SessionStatus.PENDING
            session_id = _generate_id("ses")
            if remote is not None:
                _check_remote_session(request, remote)
                session_id = remote.id
                if remote.status is SessionStatus.ACTIVE:
                    status = SessionStatus.ACTIVE
            approved = request if remote is None else _narrowed(request, remote)

            session = lifecycle.create_session(session_id, approved, created_at=self._clock(), status=status)
            self._sessions[session.id] = session
            self._touch_agent(session.agent_id)
            self._save_state()

        self._log(
            EventType.SESSION_APPROVED,
            agent_id=session.agent_id,
            session_id=session.id,
            request_id=request_id,
            details={"expires_at": session.expires_at, "status": session.status.value},
        )
        logger.info("Session approved: %s (expires %d)", session.id, session.expires_at)
        return session

    def activate_session(self, session_id: str) -> Session:
        """pending -> active once the ledger reports the session key usable.

        Returns the session unchanged while the key is not yet usable.
        """
        with self._spends.lock_for(session_id):
            session = self.get_session(session_id)
            if session.status is SessionStatus.ACTIVE:
                return session
            if not self.ledger.is_session_key_usable(session.session_pubkey):
                logger.info("Session key not yet usable for %s", session_id)
                return session
            activated = lifecycle.activate(session, self._clock())
            with self._lock:
                self._sessions[session_id] = activated
                self._save_state()
        self._log(EventType.SESSION_ACTIVATED, agent_id=activated.agent_id, session_id=session_id)
        return activated

    # ── Spending ─────────────────────────────────────────────────

    def can_spend(self, session_id: str, mint: str, amount: Decimal | float | str) -> bool:
        session = self.get_session(session_id)
        if not lifecycle.is_spendable(session, self._clock()):
            return False
        return budget.can_spend(session, mint, amount)

    def record_spend(
        self,
        session_id: str,
        mint: str,
        amount: Decimal | float | str,
        signature: str,
    ) -> Session:
        """Apply a confirmed transaction to the session's ``spent``.

        Idempotent per ``signature``: replays return the session unchanged.
        """
        with self._spends.lock_for(session_id):
            return self._record_spend_locked(session_id, mint, to_decimal(amount), signature)

    def _record_spend_locked(self, session_id: str, mint: str, amount: Decimal, signature: str) -> Session:
        session = self.get_session(session_id)
        if self._spends.is_applied(signature):
            session, _ = self._spends.apply(session, mint, amount, signature)
            with self._lock:
                known = self._transactions.get(signature)
                if known is not None and known.status is TransactionStatus.PENDING:
                    self._set_transaction_status(signature, TransactionStatus.CONFIRMED)
                    self._save_state()
            return session

        # A transfer submitted while the session was live still counts if it
        # confirms after expiry or revocation.
        known = self._transactions.get(signature)
        submitted_here = known is not None and known.session_id == session_id
        if not submitted_here and not lifecycle.is_spendable(session, self._clock()):
            status = lifecycle.effective_status(session, self._clock())
            self._log(
                EventType.SPEND_DENIED,
                agent_id=session.agent_id,
                session_id=session_id,
                mint=mint,
                amount=amount,
                success=False,
                reason=f"session {status.value}",
            )
            raise SessionInactiveError(session_id, status.value)

        try:
            updated, _ = self._spends.apply(session, mint, amount, signature)
        except LimitExceededError as e:
            self._log(
                EventType.SPEND_DENIED,
                agent_id=session.agent_id,
                session_id=session_id,
                mint=mint,
                amount=amount,
                success=False,
                reason=str(e),
            )
            raise

        with self._lock:
            self._sessions[session_id] = updated
            if submitted_here and known.status is TransactionStatus.PENDING:
                self._set_transaction_status(signature, TransactionStatus.CONFIRMED)
            self._touch_agent(updated.agent_id)
            self._save_state()

        self._log(
            EventType.SPEND_RECORDED,
            agent_id=updated.agent_id,
            session_id=session_id,
            mint=mint,
            amount=amount,
            details={"signature": signature, "remaining": str(budget.remaining_for(updated, mint))},
        )
        return updated

    def transfer(
        self,
        session_id: str,
        destination: str,
        amount: Decimal | float | str,
        mint: str = NATIVE_MINT,
    ) -> Transaction:
        """Submit a transfer signed by the session key.

        Pending transfers count against the allowance until they settle, so
        two in-flight transfers cannot overrun it together.
        """
        value = to_decimal(amount)
        with self._spends.lock_for(session_id):
            session = self.get_session(session_id)
            status = lifecycle.effective_status(session, self._clock())
            if status is not SessionStatus.ACTIVE:
                raise SessionInactiveError(session_id, status.value)
            if not self.ledger.is_valid_address(destination):
                raise InvalidAddressError(f"Invalid destination address: {destination}")

            reserved = self._pending_amount(session_id, mint)
            if not budget.can_spend(session, mint, value + reserved):
                available = max(ZERO, budget.remaining_for(session, mint) - reserved)
                error = LimitExceededError(mint, value, available)
                self._log(
                    EventType.SPEND_DENIED,
                    agent_id=session.agent_id,
                    session_id=session_id,
                    mint=mint,
                    amount=value,
                    success=False,
                    reason=str(error),
                )
                raise error

            secret = self._session_keys.get(session.session_pubkey)
            if secret is None:
                raise NotFoundError("session key", session.session_pubkey)
            limit = session.limits[mint]

            try:
                if mint == NATIVE_MINT:
                    response = self.api.transfer_native(
                        wallet_pubkey=session.wallet_pubkey,
                        session_pubkey=session.session_pubkey,
                        session_secret_key=secret,
                        destination=destination,
                        amount=value,
                    )
                else:
                    response = self.api.transfer_token(
                        wallet_pubkey=session.wallet_pubkey,
                        session_pubkey=session.session_pubkey,
                        session_secret_key=secret,
                        destination=destination,
                        mint=mint,
                        amount=value,
                        decimals=limit.decimals,
                    )
            except Exception as e:
                self._log(
                    EventType.TRANSFER_FAILED,
                    agent_id=session.agent_id,
                    session_id=session_id,
                    mint=mint,
                    amount=value,
                    success=False,
                    reason=f"{type(e).__name__}: {e}",
                )
                raise

            tx = Transaction(
                signature=response.signature,
                type=TransactionType.TRANSFER if mint == NATIVE_MINT else TransactionType.TOKEN_TRANSFER,
                from_address=session.wallet_pubkey,
                to=destination,
                amount=value,
                timestamp=self._clock(),
                status=TransactionStatus.PENDING,
                mint=None if mint == NATIVE_MINT else mint,
                symbol=limit.symbol,
                session_id=session_id,
            )
            with self._lock:
                self._transactions[tx.signature] = tx
                self._save_state()
            self._log(
                EventType.TRANSFER_SUBMITTED,
                agent_id=session.agent_id,
                session_id=session_id,
                mint=mint,
                amount=value,
                details={"signature": tx.signature, "destination": destination},
            )

            if response.status is TransactionStatus.CONFIRMED:
                self._record_spend_locked(session_id, mint, value, tx.signature)
            elif response.status is TransactionStatus.FAILED:
                with self._lock:
                    self._set_transaction_status(tx.signature, TransactionStatus.FAILED)
                    self._save_state()
            return self._transactions[tx.signature]

    def confirm_transaction(self, signature: str) -> Transaction:
        """Ask the ledger whether a pending transfer settled and apply it."""
        tx = self._transactions.get(signature)
        if tx is None:
            raise NotFoundError("transaction", signature)
        if tx.status is not TransactionStatus.PENDING:
            return tx

        status = self.ledger.get_transaction_status(signature)
        if status is TransactionStatus.CONFIRMED:
            if tx.session_id is None:
                with self._lock:
                    self._set_transaction_status(signature, TransactionStatus.CONFIRMED)
                    self._save_state()
            else:
                self.record_spend(tx.session_id, tx.mint or NATIVE_MINT, tx.amount, signature)
        elif status is TransactionStatus.FAILED:
            with self._lock:
                self._set_transaction_status(signature, TransactionStatus.FAILED)
                self._save_state()
        return self._transactions[signature]

    def reconcile_spent(self, session_id: str) -> Session:
        """Rebuild ``spent`` from the ledger's confirmed history for the session key."""
        with self._spends.lock_for(session_id):
            session = self.get_session(session_id)
            totals: dict[str, Decimal] = {}
            signatures = []
            for tx in self.ledger.list_session_transactions(session.session_pubkey):
                if tx.status is not TransactionStatus.CONFIRMED:
                    continue
                mint = tx.mint or NATIVE_MINT
                if mint not in session.limits:
                    logger.warning("Session %s: ledger shows spend of unlimited mint %s", session_id, mint)
                    continue
                totals[mint] = totals.get(mint, ZERO) + tx.amount
                signatures.append(tx.signature)

            spent = {mint: session.limits[mint].with_amount(total) for mint, total in totals.items()}
            for mint, entry in spent.items():
                if entry.amount > session.limits[mint].amount:
                    logger.warning(
                        "Session %s: ledger spend %s exceeds limit %s for %s",
                        session_id,
                        entry.amount,
                        session.limits[mint].amount,
                        mint,
                    )
            updated = lifecycle.merge_spent(session, spent)
            for signature in signatures:
                self._spends.mark_applied(signature, session_id)
            with self._lock:
                self._sessions[session_id] = updated
                self._save_state()
            return updated

    # ── Termination ──────────────────────────────────────────────

    def revoke(self, session_id: str) -> Session:
        """Revoke a session locally and invalidate its key at the ledger.

        The local change is applied first and rolled back only if the ledger
        fails in a way that leaves the key usable.
        """
        with self._spends.lock_for(session_id):
            previous = self.get_session(session_id)
            revoked = lifecycle.revoke(previous)
            if revoked is previous:
                return previous

            with self._lock:
                self._sessions[session_id] = revoked
                self._save_state()

            try:
                self.ledger.revoke_session_key(previous.session_pubkey)
            except LedgerError as e:
                if not e.idempotent:
                    with self._lock:
                        self._sessions[session_id] = previous
                        self._save_state()
                    self._log(
                        EventType.SESSION_REVOKED,
                        agent_id=previous.agent_id,
                        session_id=session_id,
                        success=False,
                        reason=str(e),
                    )
                    logger.warning("Revocation of %s rolled back: %s", session_id, e)
                    raise
                logger.info("Ledger revocation for %s already applied: %s", session_id, e)

            with self._lock:
                self._session_keys.pop(previous.session_pubkey, None)
                self._save_state()

        self._log(EventType.SESSION_REVOKED, agent_id=revoked.agent_id, session_id=session_id)
        logger.info("Session revoked: %s", session_id)
        return revoked

    def unpair_agent(self, agent_id: str) -> Agent:
        """Revoke every live session of the agent and mark it inactive."""
        agent = self.get_agent(agent_id)
        for session in self.list_sessions(agent_id=agent_id):
            if not lifecycle.effective_status(session, self._clock()).is_terminal:
                self.revoke(session.id)

        with self._lock:
            agent = self._agents[agent_id]
            inactive = dataclasses.replace(agent, status=AgentStatus.INACTIVE)
            self._agents[agent_id] = inactive
            self._save_state()
        self._log(EventType.AGENT_UNPAIRED, agent_id=agent_id)
        logger.info("Agent unpaired: %s", agent_id)
        return inactive

    # ── Queries ──────────────────────────────────────────────────

    def get_agent(self, agent_id: str) -> Agent:
        with self._lock:
            agent = self._agents.get(agent_id)
        if agent is None:
            raise NotFoundError("agent", agent_id)
        return agent

    def list_agents(self) -> list[Agent]:
        with self._lock:
            return sorted(self._agents.values(), key=lambda a: a.paired_at, reverse=True)

    def get_pairing_request(self, request_id: str) -> PairingRequest:
        return self._require_pairing_request(request_id)

    def get_session_request(self, request_id: str) -> SessionRequest:
        return self._require_session_request(request_id)

    def get_session(self, session_id: str) -> Session:
        """Load a session with lazy expiry folded into its stored status."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError("session", session_id)
            refreshed = lifecycle.refresh(session, self._clock())
            if refreshed is session:
                return session
            self._sessions[session_id] = refreshed
            self._save_state()
        self._log(EventType.SESSION_EXPIRED, agent_id=refreshed.agent_id, session_id=session_id)
        return refreshed

    def list_sessions(self, agent_id: Optional[str] = None) -> list[Session]:
        with self._lock:
            ids = [s.id for s in self._sessions.values() if agent_id is None or s.agent_id == agent_id]
        sessions = [self.get_session(sid) for sid in ids]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def list_transactions(self, session_id: Optional[str] = None) -> list[Transaction]:
        with self._lock:
            txs = [t for t in self._transactions.values() if session_id is None or t.session_id == session_id]
        return sorted(txs, key=lambda t: t.timestamp, reverse=True)

    def session_summary(self, session_id: str) -> dict[str, Any]:
        session = self.get_session(session_id)
        now = self._clock()
        return {
            "session_id": session.id,
            "agent_id": session.agent_id,
            "session_pubkey": session.session_pubkey,
            "status": lifecycle.effective_status(session, now).value,
            "created_at": session.created_at,
            "expires_at": session.expires_at,
            "time_remaining_ms": lifecycle.time_remaining_ms(session, now),
            "time_remaining": lifecycle.format_time_remaining(session, now),
            "limits": budget.summarize(session),
            "transactions": len(self.list_transactions(session_id)),
        }

    # ── Internals ────────────────────────────────────────────────

    def _require_pairing_request(self, request_id: str) -> PairingRequest:
        with self._lock:
            request = self._pairing_requests.get(request_id)
        if request is None:
            raise NotFoundError("pairing request", request_id)
        return request

    def _require_session_request(self, request_id: str) -> SessionRequest:
        with self._lock:
            request = self._session_requests.get(request_id)
        if request is None:
            raise NotFoundError("session request", request_id)
        return request

    def _raise_if_failed(
        self,
        status: NegotiationStatus,
        request_id: str,
        agent_id: str,
        event: EventType,
    ) -> None:
        if status is NegotiationStatus.REJECTED:
            error: NegotiationError = RejectedError("Request was rejected", request_id=request_id)
        elif status is NegotiationStatus.EXPIRED:
            error = RequestExpiredError("Request expired", request_id=request_id)
        else:
            return
        self._log(event, agent_id=agent_id, request_id=request_id, success=False, reason=str(error))
        raise error

    def _pending_amount(self, session_id: str, mint: str) -> Decimal:
        with self._lock:
            return sum(
                (
                    t.amount
                    for t in self._transactions.values()
                    if t.session_id == session_id
                    and t.status is TransactionStatus.PENDING
                    and (t.mint or NATIVE_MINT) == mint
                ),
                ZERO,
            )

    def _set_transaction_status(self, signature: str, status: TransactionStatus) -> None:
        tx = self._transactions[signature]
        if tx.status is not TransactionStatus.PENDING:
            raise InvalidTransitionError("transaction", tx.status.value, status.value)
        self._transactions[signature] = dataclasses.replace(tx, status=status)

    def _touch_agent(self, agent_id: str) -> None:
        agent = self._agents.get(agent_id)
        if agent is not None:
            self._agents[agent_id] = dataclasses.replace(agent, last_seen=self._clock())

    def _log(self, event_type: EventType, **kwargs) -> None:
        if self.audit is not None:
            self.audit.log(event_type, **kwargs)

    def _load_state(self) -> None:
        payload = load_json(self.store, STATE_STORAGE_KEY)
        if payload is None:
            return
        try:
            self._agents = {a["id"]: Agent.from_dict(a) for a in payload.get("agents", [])}
            self._pairing_requests = {
                r["requestId"]: PairingRequest.from_dict(r) for r in payload.get("pairingRequests", [])
            }
            self._session_requests = {
                r["requestId"]: SessionRequest.from_dict(r) for r in payload.get("sessionRequests", [])
            }
            self._approved_sessions = {
                rid: Session.from_dict(s) for rid, s in payload.get("approvedSessions", {}).items()
            }
            self._sessions = {s["id"]: Session.from_dict(s) for s in payload.get("sessions", [])}
            self._transactions = {
                t["signature"]: Transaction.from_dict(t) for t in payload.get("transactions", [])
            }
        except (KeyError, TypeError) as e:
            raise SchemaError(f"Corrupt authorization state: {e}") from e
        self._session_keys = dict(payload.get("sessionKeys", {}))
        self._spends = SpendLedger(payload.get("appliedSignatures", {}))
        logger.info(
            "Loaded state: %d agents, %d sessions, %d transactions",
            len(self._agents),
            len(self._sessions),
            len(self._transactions),
        )

    def _save_state(self) -> None:
        save_json(
            self.store,
            STATE_STORAGE_KEY,
            {
                "agents": [a.to_dict() for a in self._agents.values()],
                "pairingRequests": [r.to_dict() for r in self._pairing_requests.values()],
                "sessionRequests": [r.to_dict() for r in self._session_requests.values()],
                "approvedSessions": {rid: s.to_dict() for rid, s in self._approved_sessions.items()},
                "sessions": [s.to_dict() for s in self._sessions.values()],
                "transactions": [t.to_dict() for t in self._transactions.values()],
                "sessionKeys": dict(self._session_keys),
                "appliedSignatures": self._spends.to_dict(),
            },
        )


def _validate_session_terms(limits: list[SpendingLimit], duration_seconds: int) -> None:
    if not limits:
        raise ValueError("At least one spending limit is required")
    index_limits(limits)
    for limit in limits:
        if limit.amount <= 0:
            raise ValueError(f"Spending limit for {limit.mint} must be positive")
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int) or duration_seconds <= 0:
        raise ValueError(f"duration_seconds must be a positive integer: {duration_seconds!r}")


def _check_remote_session(request: SessionRequest, remote: Session) -> None:
    """The backend's session may narrow what was asked for, never widen it."""
    if remote.session_pubkey != request.session_pubkey:
        raise SchemaError("Approved session key does not match the requested key")
    if remote.duration_seconds > request.duration_seconds:
        raise SchemaError("Approved session outlasts the requested duration")
    requested = index_limits(request.limits)
    for mint, limit in remote.limits.items():
        asked = requested.get(mint)
        if asked is None:
            raise SchemaError(f"Approved session adds an unrequested mint: {mint}")
        if limit.amount > asked.amount:
            raise SchemaError(f"Approved limit for {mint} exceeds the requested amount")


def _narrowed(request: SessionRequest, remote: Session) -> SessionRequest:
    return dataclasses.replace(
        request,
        limits=tuple(remote.limits.values()),
        duration_seconds=remote.duration_seconds,
    )


def _created_from(session: Session, request: SessionRequest) -> bool:
    return session.session_pubkey == request.session_pubkey


def _generate_id(prefix: str) -> str:
    entropy = f"{time.time()}-{os.urandom(16).hex()}"
    return f"{prefix}-{hashlib.sha256(entropy.encode()).hexdigest()[:12]}"
