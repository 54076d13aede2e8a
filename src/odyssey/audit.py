"""
Activity trail for pairing, session and spending events.

Every entry is one JSON line sealed with an HMAC over the previous entry's
seal, so an edited, dropped or reordered line breaks the chain on the next
read. The key lives outside the trail's directory (or in the environment).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import threading
from collections import Counter
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .models import now_ms
from .storage import ensure_private_dir, ensure_private_file


DEFAULT_AUDIT_PATH = Path.home() / ".odyssey" / "audit.jsonl"
DEFAULT_AUDIT_KEY_PATH = Path.home() / ".odyssey-secrets" / "audit_hmac.key"
AUDIT_KEY_ENV = "ODYSSEY_AUDIT_HMAC_KEY"

_SEAL_FIELDS = ("prev_hash", "event_hash")


class EventType(str, Enum):
    WALLET_CREATED = "wallet_created"
    PAIRING_REQUESTED = "pairing_requested"
    PAIRING_APPROVED = "pairing_approved"
    PAIRING_FAILED = "pairing_failed"
    AGENT_UNPAIRED = "agent_unpaired"
    SESSION_REQUESTED = "session_requested"
    SESSION_APPROVED = "session_approved"
    SESSION_FAILED = "session_failed"
    SESSION_ACTIVATED = "session_activated"
    SESSION_EXPIRED = "session_expired"
    SESSION_REVOKED = "session_revoked"
    SPEND_RECORDED = "spend_recorded"
    SPEND_DENIED = "spend_denied"
    TRANSFER_SUBMITTED = "transfer_submitted"
    TRANSFER_FAILED = "transfer_failed"


class AuditChainError(RuntimeError):
    """The trail on disk no longer matches its seals."""


@dataclass
class AuditEvent:
    """One entry of the trail. ``timestamp`` is epoch milliseconds."""

    event_type: str
    timestamp: int
    agent_id: Optional[str] = None
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    mint: Optional[str] = None
    amount: Optional[str] = None
    success: bool = True
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    @classmethod
    def from_record(cls, record: dict) -> "AuditEvent":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in record.items() if k in known})

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None}, separators=(",", ":"))


def _resolve_key(key_path: Path) -> bytes:
    from_env = os.getenv(AUDIT_KEY_ENV)
    if from_env:
        return from_env.encode()
    if key_path.exists() and key_path.stat().st_size > 0:
        return key_path.read_bytes().strip()
    key = secrets.token_hex(32).encode()
    key_path.write_bytes(key)
    ensure_private_file(key_path)
    return key


class AuditTrail:
    """Append-only, tamper-evident JSONL log."""

    def __init__(
        self,
        path: Optional[Path] = None,
        key_path: Optional[Path] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.path = Path(path or DEFAULT_AUDIT_PATH)
        self.key_path = Path(key_path or DEFAULT_AUDIT_KEY_PATH)
        self._clock = clock
        self._lock = threading.Lock()

        for directory in (self.path.parent, self.key_path.parent):
            ensure_private_dir(directory)
        ensure_private_file(self.path)
        ensure_private_file(self.key_path)

        self._key = _resolve_key(self.key_path)
        self._tip = self._find_tip()

    def _now(self) -> int:
        return self._clock() if self._clock is not None else now_ms()

    def _seal(self, body: dict, prev_hash: str) -> str:
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256).hexdigest()

    def _lines(self) -> Iterator[dict]:
        if not self.path.exists():
            return
        with open(self.path, "r") as f:
            for line in f:
                if line.strip():
                    yield json.loads(line)

    def _find_tip(self) -> str:
        tip = ""
        for record in self._lines():
            tip = record.get("event_hash", "")
        return tip

    def _verified(self) -> Iterator[dict]:
        """Yield records in order, raising ``AuditChainError`` at the first bad seal."""
        prev = ""
        for record in self._lines():
            body = {k: v for k, v in record.items() if k not in _SEAL_FIELDS}
            if (record.get("prev_hash") or "") != prev:
                raise AuditChainError("Audit chain broken: previous hash mismatch")
            sealed = record.get("event_hash") or ""
            if not hmac.compare_digest(self._seal(body, prev), sealed):
                raise AuditChainError("Audit chain broken: event hash mismatch")
            prev = sealed
            yield record

    def log(
        self,
        event_type: EventType,
        agent_id: Optional[str] = None,
        session_id: Optional[str] = None,
        request_id: Optional[str] = None,
        mint: Optional[str] = None,
        amount: Any = None,
        success: bool = True,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        body = {
            "event_type": event_type.value,
            "timestamp": self._now(),
            "agent_id": agent_id,
            "session_id": session_id,
            "request_id": request_id,
            "mint": mint,
            # str() keeps Decimal amounts exact
            "amount": None if amount is None else str(amount),
            "success": success,
            "reason": reason,
            "details": details,
        }
        body = {k: v for k, v in body.items() if v is not None}

        with self._lock:
            event = AuditEvent(**body, prev_hash=self._tip or None, event_hash=self._seal(body, self._tip))
            with open(self.path, "a") as f:
                f.write(event.to_json() + "\n")
                f.flush()
                os.fsync(f.fileno())
            ensure_private_file(self.path)
            self._tip = event.event_hash
        return event

    def read_events(
        self,
        session_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Verify the whole chain and return the newest matching events."""
        wanted = {"session_id": session_id, "agent_id": agent_id}
        if event_type is not None:
            wanted["event_type"] = event_type.value

        matches = [
            AuditEvent.from_record(record)
            for record in self._verified()
            if all(record.get(k) == v for k, v in wanted.items() if v)
        ]
        return matches[-limit:] if limit > 0 else []

    def summary(self, session_id: Optional[str] = None) -> dict:
        events = self.read_events(session_id=session_id, limit=10_000)
        return {
            "total_events": len(events),
            "by_type": dict(Counter(e.event_type for e in events)),
            "failures": sum(1 for e in events if not e.success),
            "last_event": events[-1].to_json() if events else None,
        }
