"""Tests for pairing and session-request state machines."""

import pytest

from odyssey.errors import InvalidTransitionError
from odyssey.models import NegotiationStatus, PairingRequest, SessionRequest, SpendingLimit
from odyssey.negotiation import advance, can_transition


def pairing(status=NegotiationStatus.PENDING):
    return PairingRequest(
        request_id="pair-1",
        code="ABC123",
        agent_id="agent-1",
        agent_name="Shopper",
        created_at=1,
        status=status,
    )


def session_request(status=NegotiationStatus.PENDING):
    return SessionRequest(
        request_id="sreq-1",
        agent_id="agent-1",
        agent_name="Shopper",
        wallet_pubkey="wallet",
        session_pubkey="session",
        limits=(SpendingLimit(mint="native", amount=1, decimals=9),),
        duration_seconds=3600,
        created_at=1,
        status=status,
    )


TERMINAL = [NegotiationStatus.APPROVED, NegotiationStatus.REJECTED, NegotiationStatus.EXPIRED]


class TestTransitions:
    @pytest.mark.parametrize("target", list(NegotiationStatus))
    def test_pending_can_move_anywhere(self, target):
        assert can_transition(NegotiationStatus.PENDING, target)

    @pytest.mark.parametrize("current", TERMINAL)
    def test_terminal_states_are_final(self, current):
        for target in NegotiationStatus:
            assert can_transition(current, target) == (target == current)


class TestAdvance:
    def test_pending_to_approved(self):
        request = pairing()
        approved = advance(request, "approved")
        assert approved.status is NegotiationStatus.APPROVED
        assert request.status is NegotiationStatus.PENDING

    def test_pending_observation_is_noop(self):
        request = session_request()
        assert advance(request, NegotiationStatus.PENDING) is request

    def test_same_terminal_is_noop(self):
        request = pairing(NegotiationStatus.REJECTED)
        assert advance(request, "rejected") is request

    @pytest.mark.parametrize("current", TERMINAL)
    def test_leaving_terminal_raises(self, current):
        with pytest.raises(InvalidTransitionError) as exc:
            advance(session_request(current), NegotiationStatus.PENDING)
        assert exc.value.kind == "session request"
        assert exc.value.current == current.value

    def test_approved_cannot_become_rejected(self):
        with pytest.raises(InvalidTransitionError, match="pairing request"):
            advance(pairing(NegotiationStatus.APPROVED), "rejected")

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            advance(pairing(), "maybe")
