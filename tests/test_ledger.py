"""Tests for the in-memory ledger service."""

from decimal import Decimal

import pytest

from odyssey.errors import LedgerError
from odyssey.keys import SessionKeypair
from odyssey.ledger import InMemoryLedger
from odyssey.models import TokenBalance, TransactionStatus, TransactionType

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def session_key():
    return SessionKeypair.generate().public_key


@pytest.fixture
def dest():
    return SessionKeypair.generate().public_key


def test_balances(ledger, dest):
    ledger.fund(dest, "1.5")
    ledger.fund(dest, 0.5)
    assert ledger.get_balance(dest) == Decimal("2.0")
    assert ledger.get_balance("unknown") == Decimal("0")

    usdc = TokenBalance(mint=USDC, symbol="USDC", name="USD Coin", decimals=6, balance=2_500_000, ui_balance="2.5")
    ledger.fund_token(dest, usdc)
    assert ledger.get_token_balances(dest) == [usdc]


def test_unknown_signature_is_pending(ledger):
    assert ledger.get_transaction_status("never-seen") is TransactionStatus.PENDING


def test_submit_and_settle(ledger, session_key, dest):
    tx = ledger.submit("sig-1", session_pubkey=session_key, source="wallet", destination=dest, amount="0.3")
    assert tx.type is TransactionType.TRANSFER
    assert tx.mint is None
    assert ledger.get_transaction_status("sig-1") is TransactionStatus.PENDING

    ledger.settle("sig-1", TransactionStatus.CONFIRMED)
    assert ledger.get_transaction_status("sig-1") is TransactionStatus.CONFIRMED


def test_token_submit(ledger, session_key, dest):
    tx = ledger.submit("sig-2", session_pubkey=session_key, source="wallet", destination=dest, amount=1, mint=USDC)
    assert tx.type is TransactionType.TOKEN_TRANSFER
    assert tx.mint == USDC


def test_list_session_transactions(ledger, session_key, dest):
    other = SessionKeypair.generate().public_key
    ledger.submit("sig-1", session_pubkey=session_key, source="wallet", destination=dest, amount="0.1")
    ledger.submit("sig-2", session_pubkey=other, source="wallet", destination=dest, amount="0.2")
    assert [tx.signature for tx in ledger.list_session_transactions(session_key)] == ["sig-1"]


def test_invalid_destination(ledger, session_key):
    with pytest.raises(LedgerError):
        ledger.submit("sig-1", session_pubkey=session_key, source="wallet", destination="nope", amount=1)


def test_settle_unknown(ledger):
    with pytest.raises(LedgerError):
        ledger.settle("missing", TransactionStatus.CONFIRMED)


def test_revocation_is_idempotent(ledger, session_key, dest):
    assert ledger.is_session_key_usable(session_key)
    ledger.revoke_session_key(session_key)
    ledger.revoke_session_key(session_key)
    assert not ledger.is_session_key_usable(session_key)
    with pytest.raises(LedgerError, match="revoked"):
        ledger.submit("sig-1", session_pubkey=session_key, source="wallet", destination=dest, amount=1)


def test_malformed_key_not_usable(ledger):
    assert not ledger.is_session_key_usable("not-a-key")
