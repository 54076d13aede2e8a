"""
Client for the approval backend.

JSON over HTTP. Every response body is validated into a typed record;
non-2xx answers become ``ApiRequestError`` carrying the backend's message,
and connection-level failures become ``TransportError`` so pollers can tell
"lost connectivity" apart from a real answer.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar
from urllib.parse import quote

import httpx

from .config import OdysseyConfig
from .errors import ApiRequestError, SchemaError, TransportError
from .models import PairingResponse, SessionResponse, SpendingLimit, TransferResponse
from .money import spend_to_base_units, to_decimal

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ApprovalApiClient:
    """Typed wrapper over the backend's pairing, session and transfer endpoints."""

    def __init__(
        self,
        config: Optional[OdysseyConfig] = None,
        http: Optional[httpx.Client] = None,
    ):
        self.config = config or OdysseyConfig()
        self._owns_http = http is None
        self._http = http or httpx.Client(
            base_url=self.config.api_url,
            timeout=self.config.timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "ApprovalApiClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Pairing ──────────────────────────────────────────────────

    def create_pairing(self, code: str, agent_id: str, agent_name: str) -> PairingResponse:
        body = {"code": code, "agentId": agent_id, "agentName": agent_name}
        return self._request("POST", "/api/pairing/request", PairingResponse.from_dict, json=body)

    def check_pairing(self, request_id: str) -> PairingResponse:
        return self._request("GET", f"/api/pairing/{_segment(request_id)}", PairingResponse.from_dict)

    # ── Sessions ─────────────────────────────────────────────────

    def create_session_request(
        self,
        *,
        agent_id: str,
        agent_name: str,
        wallet_pubkey: str,
        session_pubkey: str,
        duration_seconds: int,
        signature: str,
        timestamp: int,
        auth_secret: str,
        limits: list[SpendingLimit],
    ) -> SessionResponse:
        body = {
            "agentId": agent_id,
            "agentName": agent_name,
            "walletPubkey": wallet_pubkey,
            "sessionPubkey": session_pubkey,
            "durationSeconds": duration_seconds,
            "signature": signature,
            "timestamp": timestamp,
            "authSecret": auth_secret,
            "limits": [limit.to_wire() for limit in limits],
        }
        return self._request("POST", "/api/request-session", SessionResponse.from_dict, json=body)

    def check_session_request(self, request_id: str) -> SessionResponse:
        return self._request(
            "GET",
            f"/api/session-details/{_segment(request_id)}",
            SessionResponse.from_dict,
        )

    # ── Transfers ────────────────────────────────────────────────

    def transfer_native(
        self,
        *,
        wallet_pubkey: str,
        session_pubkey: str,
        session_secret_key: str,
        destination: str,
        amount: Decimal | float | str,
    ) -> TransferResponse:
        body = {
            "walletPubkey": wallet_pubkey,
            "sessionPubkey": session_pubkey,
            "sessionSecretKey": session_secret_key,
            "destination": destination,
            "amountSol": float(to_decimal(amount)),
        }
        return self._request("POST", "/api/session/transfer", TransferResponse.from_dict, json=body)

    def transfer_token(
        self,
        *,
        wallet_pubkey: str,
        session_pubkey: str,
        session_secret_key: str,
        destination: str,
        mint: str,
        amount: Decimal | float | str,
        decimals: int,
    ) -> TransferResponse:
        body = {
            "walletPubkey": wallet_pubkey,
            "sessionPubkey": session_pubkey,
            "sessionSecretKey": session_secret_key,
            "destination": destination,
            "mint": mint,
            "amount": spend_to_base_units(amount, decimals),
        }
        return self._request("POST", "/api/session/transfer-token", TransferResponse.from_dict, json=body)

    def sign_and_send(
        self,
        *,
        transaction: str,
        session_secret_key: str,
        session_pubkey: str,
    ) -> TransferResponse:
        body = {
            "transaction": transaction,
            "sessionSecretKey": session_secret_key,
            "sessionPubkey": session_pubkey,
        }
        return self._request("POST", "/api/session/sign-and-send", TransferResponse.from_dict, json=body)

    # ── Plumbing ─────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        parse: Callable[[Any], T],
        json: Optional[dict] = None,
    ) -> T:
        try:
            response = self._http.request(method, path, json=json)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"{method} {path} failed: {type(e).__name__}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            message = f"Request failed: {response.status_code}"
            code = None
            if isinstance(data, dict):
                message = str(data.get("error") or message)
                code = data.get("code")
            logger.warning("%s %s -> %d: %s", method, path, response.status_code, message)
            raise ApiRequestError(message, status_code=response.status_code, code=code)

        if data is None:
            raise SchemaError(f"{method} {path}: response is not JSON")
        return parse(data)


def _segment(value: str) -> str:
    if not value:
        raise ValueError("Request id is required")
    return quote(value, safe="")
