"""
Session key material and request signing helpers.

Each session gets its own Ed25519 keypair. Only this key ever signs session
transfers; the wallet's root key stays with the owner's authentication
factor and is reached through a ``RequestSigner``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519


PUBLIC_KEY_LENGTH = 32


class RequestSigner(Protocol):
    """Owner's authentication factor (passkey, hardware key, ...)."""

    def sign(self, message: bytes) -> str: ...


@dataclass(frozen=True)
class SessionKeypair:
    public_key: str
    secret_key: str = field(repr=False)

    @classmethod
    def generate(cls) -> "SessionKeypair":
        private = ed25519.Ed25519PrivateKey.generate()
        return cls.from_private_key(private)

    @classmethod
    def from_private_key(cls, private: ed25519.Ed25519PrivateKey) -> "SessionKeypair":
        seed = private.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public = private.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        # 64-byte secret: seed followed by public key.
        return cls(
            public_key=base58.b58encode(public).decode(),
            secret_key=base58.b58encode(seed + public).decode(),
        )

    @classmethod
    def from_secret_key(cls, secret_key: str) -> "SessionKeypair":
        raw = base58.b58decode(secret_key)
        if len(raw) != 64:
            raise ValueError("Session secret key must decode to 64 bytes")
        keypair = cls.from_private_key(ed25519.Ed25519PrivateKey.from_private_bytes(raw[:32]))
        if keypair.public_key != base58.b58encode(raw[32:]).decode():
            raise ValueError("Session secret key does not match its public key")
        return keypair

    def sign(self, message: bytes) -> str:
        raw = base58.b58decode(self.secret_key)
        signature = ed25519.Ed25519PrivateKey.from_private_bytes(raw[:32]).sign(message)
        return base58.b58encode(signature).decode()


def verify_signature(public_key: str, message: bytes, signature: str) -> bool:
    try:
        key = ed25519.Ed25519PublicKey.from_public_bytes(base58.b58decode(public_key))
        key.verify(base58.b58decode(signature), message)
    except (InvalidSignature, ValueError):
        return False
    return True


def is_valid_address(address: str) -> bool:
    """Base58 string that decodes to a 32-byte public key."""
    if not address or not isinstance(address, str):
        return False
    try:
        return len(base58.b58decode(address)) == PUBLIC_KEY_LENGTH
    except ValueError:
        return False


def shorten_address(address: str, chars: int = 4) -> str:
    if len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def canonical_json_bytes(value: Any) -> bytes:
    """Serialize JSON using deterministic ordering and no insignificant whitespace."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
