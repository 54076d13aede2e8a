"""Process configuration, read from the environment once and passed explicitly."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .poller import DEFAULT_INTERVAL_SECONDS, DEFAULT_MAX_ATTEMPTS, PollPolicy


ODYSSEY_API_URL_ENV = "ODYSSEY_API_URL"
ODYSSEY_HOME_ENV = "ODYSSEY_HOME"
ODYSSEY_NETWORK_ENV = "ODYSSEY_NETWORK"
ODYSSEY_HTTP_TIMEOUT_ENV = "ODYSSEY_HTTP_TIMEOUT"
ODYSSEY_POLL_INTERVAL_ENV = "ODYSSEY_POLL_INTERVAL"
ODYSSEY_POLL_ATTEMPTS_ENV = "ODYSSEY_POLL_ATTEMPTS"

DEFAULT_API_URL = "http://localhost:3001"
DEFAULT_NETWORK = "devnet"
DEFAULT_HOME = Path.home() / ".odyssey"


@dataclass
class OdysseyConfig:
    api_url: str = DEFAULT_API_URL
    home: Path = field(default_factory=lambda: DEFAULT_HOME)
    network: str = DEFAULT_NETWORK
    timeout_seconds: float = 30.0
    poll: PollPolicy = field(default_factory=PollPolicy)

    def __post_init__(self):
        self.api_url = self.api_url.rstrip("/")
        if not self.api_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid API URL: {self.api_url}")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @property
    def store_dir(self) -> Path:
        return self.home / "store"

    @property
    def audit_path(self) -> Path:
        return self.home / "audit.jsonl"

    @property
    def audit_key_path(self) -> Path:
        return self.home.parent / ".odyssey-secrets" / "audit_hmac.key"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OdysseyConfig":
        env = os.environ if environ is None else environ
        home = env.get(ODYSSEY_HOME_ENV)
        return cls(
            api_url=env.get(ODYSSEY_API_URL_ENV, DEFAULT_API_URL),
            home=Path(home).expanduser() if home else DEFAULT_HOME,
            network=env.get(ODYSSEY_NETWORK_ENV, DEFAULT_NETWORK),
            timeout_seconds=float(env.get(ODYSSEY_HTTP_TIMEOUT_ENV, "30")),
            poll=PollPolicy(
                interval_seconds=float(env.get(ODYSSEY_POLL_INTERVAL_ENV, DEFAULT_INTERVAL_SECONDS)),
                max_attempts=int(env.get(ODYSSEY_POLL_ATTEMPTS_ENV, DEFAULT_MAX_ATTEMPTS)),
            ),
        )
