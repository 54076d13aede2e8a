"""Test doubles shared by the facade and CLI tests."""

import itertools

from odyssey.models import (
    NegotiationStatus,
    PairingResponse,
    Session,
    SessionResponse,
    SessionStatus,
    TransactionStatus,
    TransferResponse,
    index_limits,
)
from odyssey.money import NATIVE_MINT


class FakeApi:
    """Scripted stand-in for the approval backend; transfers land on the ledger."""

    def __init__(self, ledger):
        self.ledger = ledger
        self.pairing_statuses = []
        self.session_statuses = []
        self.remote_session_status = "active"
        self.remote_limits = None
        self.transfer_status = TransactionStatus.CONFIRMED
        self.pairing_calls = []
        self.session_bodies = []
        self.transfers = []
        self._ids = itertools.count(1)

    def create_pairing(self, code, agent_id, agent_name):
        self.pairing_calls.append((code, agent_id, agent_name))
        return PairingResponse(request_id=f"pair-{next(self._ids)}", status=NegotiationStatus.PENDING)

    def check_pairing(self, request_id):
        status = NegotiationStatus(self.pairing_statuses.pop(0) if self.pairing_statuses else "approved")
        if status is NegotiationStatus.APPROVED:
            return PairingResponse(request_id=request_id, status=status, auth_secret="secret-1")
        return PairingResponse(request_id=request_id, status=status)

    def create_session_request(self, **body):
        self.session_bodies.append(body)
        return SessionResponse(request_id=f"sreq-{next(self._ids)}", status=NegotiationStatus.PENDING)

    def check_session_request(self, request_id):
        status = NegotiationStatus(self.session_statuses.pop(0) if self.session_statuses else "approved")
        session = None
        if status is NegotiationStatus.APPROVED and self.remote_session_status:
            body = self.session_bodies[-1]
            session = Session(
                id=f"ses-{next(self._ids)}",
                agent_id=body["agent_id"],
                wallet_pubkey=body["wallet_pubkey"],
                session_pubkey=body["session_pubkey"],
                limits=index_limits(self.remote_limits or body["limits"]),
                duration_seconds=body["duration_seconds"],
                created_at=0,
                expires_at=body["duration_seconds"] * 1000,
                status=SessionStatus(self.remote_session_status),
            )
        return SessionResponse(request_id=request_id, status=status, session=session)

    def transfer_native(self, *, wallet_pubkey, session_pubkey, session_secret_key, destination, amount):
        return self._submit(wallet_pubkey, session_pubkey, destination, amount, NATIVE_MINT)

    def transfer_token(self, *, wallet_pubkey, session_pubkey, session_secret_key, destination, mint, amount, decimals):
        return self._submit(wallet_pubkey, session_pubkey, destination, amount, mint)

    def _submit(self, wallet_pubkey, session_pubkey, destination, amount, mint):
        signature = f"sig-{next(self._ids)}"
        self.ledger.submit(
            signature,
            session_pubkey=session_pubkey,
            source=wallet_pubkey,
            destination=destination,
            amount=amount,
            mint=mint,
            status=self.transfer_status,
        )
        self.transfers.append((signature, mint, amount))
        return TransferResponse(signature=signature, status=self.transfer_status)

