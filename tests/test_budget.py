"""Tests for per-session spending limits."""

import dataclasses
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from odyssey import budget
from odyssey.budget import SpendLedger
from odyssey.errors import LimitExceededError, OdysseyError, SignatureConflictError
from odyssey.models import Session, SessionStatus, SpendingLimit

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def make_session(native="1.0", usdc="25", session_id="ses-1"):
    limits = {"native": SpendingLimit(mint="native", amount=native, decimals=9, symbol="SOL")}
    if usdc is not None:
        limits[USDC] = SpendingLimit(mint=USDC, amount=usdc, decimals=6, symbol="USDC")
    return Session(
        id=session_id,
        agent_id="agent-1",
        wallet_pubkey="wallet",
        session_pubkey="session",
        limits=limits,
        duration_seconds=3600,
        created_at=0,
        expires_at=3_600_000,
        status=SessionStatus.ACTIVE,
    )


class TestCanSpend:
    def test_within_limit(self):
        assert budget.can_spend(make_session(), "native", "0.5")

    def test_exact_remaining_allowed(self):
        assert budget.can_spend(make_session(), "native", "1.0")

    def test_over_limit(self):
        assert not budget.can_spend(make_session(), "native", "1.000000001")

    def test_unknown_mint_has_no_allowance(self):
        assert not budget.can_spend(make_session(), "some-other-mint", "0.0001")

    @pytest.mark.parametrize("amount", ["0", "-1"])
    def test_non_positive_amount(self, amount):
        assert not budget.can_spend(make_session(), "native", amount)

    def test_limits_are_independent_per_mint(self):
        session = budget.apply_spend(make_session(), "native", "1.0")
        assert not budget.can_spend(session, "native", "0.1")
        assert budget.can_spend(session, USDC, "25")

    def test_sub_unit_spend_rounds_up(self):
        # 0.0000001 USDC is below the mint's precision and still costs one unit.
        session = make_session(usdc="0.000001")
        assert budget.can_spend(session, USDC, "0.0000001")
        spent = budget.apply_spend(session, USDC, "0.0000001")
        assert not budget.can_spend(spent, USDC, "0.0000001")


class TestApplySpend:
    def test_spend_sequence(self):
        session = make_session()
        session = budget.apply_spend(session, "native", 0.3)
        session = budget.apply_spend(session, "native", 0.5)
        assert session.spent_for("native").amount == Decimal("0.8")
        assert budget.remaining_for(session, "native") == Decimal("0.2")
        assert not budget.can_spend(session, "native", 0.25)
        with pytest.raises(LimitExceededError) as exc:
            budget.apply_spend(session, "native", 0.25)
        assert exc.value.remaining == Decimal("0.2")
        assert exc.value.mint == "native"

    def test_original_is_untouched(self):
        session = make_session()
        budget.apply_spend(session, "native", "0.3")
        assert session.spent == {}

    def test_spent_keeps_limit_metadata(self):
        session = budget.apply_spend(make_session(), USDC, "1.5")
        spent = session.spent_for(USDC)
        assert spent.decimals == 6
        assert spent.symbol == "USDC"


class TestViews:
    def test_remaining_clamped_at_zero(self):
        limit = SpendingLimit(mint="native", amount="1", decimals=9)
        over = SpendingLimit(mint="native", amount="2", decimals=9)
        assert budget.remaining(limit, over) == Decimal("0")

    def test_percent_spent(self):
        session = budget.apply_spend(make_session(), "native", "0.25")
        assert budget.percent_spent(session, "native") == 25.0
        assert budget.percent_spent(session, USDC) == 0.0

    def test_summarize(self):
        session = budget.apply_spend(make_session(), "native", "0.4")
        rows = {row["mint"]: row for row in budget.summarize(session)}
        assert rows["native"]["remaining"] == Decimal("0.6")
        assert rows["native"]["symbol"] == "SOL"
        assert rows[USDC]["spent"] == Decimal("0")


class TestSpendLedger:
    def test_replay_is_noop(self):
        ledger = SpendLedger()
        session = make_session()
        session, applied = ledger.apply(session, "native", "0.3", "sig-1")
        assert applied
        again, applied = ledger.apply(session, "native", "0.3", "sig-1")
        assert not applied
        assert again is session
        assert session.spent_for("native").amount == Decimal("0.3")

    def test_signature_bound_to_one_session(self):
        ledger = SpendLedger()
        ledger.apply(make_session(), "native", "0.1", "sig-1")
        with pytest.raises(SignatureConflictError) as exc:
            ledger.apply(make_session(session_id="ses-2"), "native", "0.1", "sig-1")
        assert isinstance(exc.value, OdysseyError)
        assert exc.value.owner_session_id == "ses-1"

    def test_signature_required(self):
        with pytest.raises(ValueError):
            SpendLedger().apply(make_session(), "native", "0.1", "")

    def test_rejected_spend_is_not_recorded(self):
        ledger = SpendLedger()
        with pytest.raises(LimitExceededError):
            ledger.apply(make_session(), "native", "5", "sig-big")
        assert not ledger.is_applied("sig-big")

    def test_restored_from_dict(self):
        ledger = SpendLedger()
        ledger.apply(make_session(), "native", "0.1", "sig-1")
        restored = SpendLedger(ledger.to_dict())
        assert restored.is_applied("sig-1")

    def test_concurrent_spends_never_exceed_limit(self):
        ledger = SpendLedger()
        state = {"session": make_session(native="1.0", usdc=None)}

        def spend(i):
            with ledger.lock_for("ses-1"):
                try:
                    state["session"], _ = ledger.apply(state["session"], "native", "0.2", f"sig-{i}")
                except LimitExceededError:
                    return False
                return True

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(spend, range(10)))

        assert results.count(True) == 5
        assert state["session"].spent_for("native").amount == Decimal("1.0")
        assert budget.remaining_for(state["session"], "native") == Decimal("0")

    def test_lock_is_per_session(self):
        ledger = SpendLedger()
        assert ledger.lock_for("a") is ledger.lock_for("a")
        assert ledger.lock_for("a") is not ledger.lock_for("b")


class TestHighPrecisionTokens:
    WEI_TOKEN = "0x-wei-token"

    def make(self, amount):
        session = make_session(usdc=None)
        limit = SpendingLimit(mint=self.WEI_TOKEN, amount=amount, decimals=18)
        return dataclasses.replace(session, limits={**session.limits, self.WEI_TOKEN: limit})

    def test_large_limit_beyond_default_precision(self):
        session = self.make("20000000000")
        assert budget.can_spend(session, self.WEI_TOKEN, "1")
        assert budget.can_spend(session, self.WEI_TOKEN, "20000000000")
        assert not budget.can_spend(session, self.WEI_TOKEN, "20000000000.000000000000000001")

        session = budget.apply_spend(session, self.WEI_TOKEN, "0.000000000000000001")
        assert budget.remaining_for(session, self.WEI_TOKEN) == Decimal("19999999999.999999999999999999")

    def test_absurd_spend_is_refused_not_raised(self):
        session = self.make("1")
        assert not budget.can_spend(session, self.WEI_TOKEN, "1e90")
        with pytest.raises(LimitExceededError):
            budget.apply_spend(session, self.WEI_TOKEN, "1e90")

    def test_sub_unit_spend_rounds_up(self):
        session = self.make("1")
        session = budget.apply_spend(session, self.WEI_TOKEN, "0.0000000000000000001")
        assert session.spent_for(self.WEI_TOKEN).amount == Decimal("0.000000000000000001")
