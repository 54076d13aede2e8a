"""Tests for session keys and address helpers."""

from decimal import Decimal

import base58
import pytest

from odyssey.keys import (
    SessionKeypair,
    canonical_json_bytes,
    is_valid_address,
    shorten_address,
    verify_signature,
)


class TestSessionKeypair:
    def test_generate_encodings(self):
        keypair = SessionKeypair.generate()
        assert len(base58.b58decode(keypair.public_key)) == 32
        secret = base58.b58decode(keypair.secret_key)
        assert len(secret) == 64
        assert base58.b58encode(secret[32:]).decode() == keypair.public_key

    def test_keys_are_unique(self):
        assert SessionKeypair.generate().public_key != SessionKeypair.generate().public_key

    def test_secret_not_in_repr(self):
        keypair = SessionKeypair.generate()
        assert keypair.secret_key not in repr(keypair)

    def test_restore_from_secret(self):
        keypair = SessionKeypair.generate()
        assert SessionKeypair.from_secret_key(keypair.secret_key) == keypair

    def test_mismatched_secret_rejected(self):
        a = base58.b58decode(SessionKeypair.generate().secret_key)
        b = base58.b58decode(SessionKeypair.generate().secret_key)
        forged = base58.b58encode(a[:32] + b[32:]).decode()
        with pytest.raises(ValueError):
            SessionKeypair.from_secret_key(forged)

    def test_sign_and_verify(self):
        keypair = SessionKeypair.generate()
        signature = keypair.sign(b"hello")
        assert verify_signature(keypair.public_key, b"hello", signature)
        assert not verify_signature(keypair.public_key, b"hell0", signature)
        assert not verify_signature(SessionKeypair.generate().public_key, b"hello", signature)


class TestAddresses:
    def test_valid(self):
        assert is_valid_address(SessionKeypair.generate().public_key)
        assert is_valid_address("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")

    @pytest.mark.parametrize("bad", ["", "0OIl", "abc", "native", None])
    def test_invalid(self, bad):
        assert not is_valid_address(bad)

    def test_shorten(self):
        assert shorten_address("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v") == "EPjF...Dt1v"
        assert shorten_address("short") == "short"


def test_canonical_json_is_deterministic():
    a = canonical_json_bytes({"b": 1, "a": [Decimal("1.5")]})
    b = canonical_json_bytes({"a": [Decimal("1.5")], "b": 1})
    assert a == b == b'{"a":[1.5],"b":1}'
