"""Tests for the approval backend client."""

import json
from decimal import Decimal

import httpx
import pytest

from odyssey.api_client import ApprovalApiClient
from odyssey.config import OdysseyConfig
from odyssey.errors import ApiRequestError, SchemaError, TransportError
from odyssey.models import NegotiationStatus, SpendingLimit, TransactionStatus

API_URL = "http://backend.test"


def make_client(handler):
    http = httpx.Client(base_url=API_URL, transport=httpx.MockTransport(handler))
    return ApprovalApiClient(OdysseyConfig(api_url=API_URL), http=http)


class Recorder:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    @property
    def last_body(self):
        return json.loads(self.requests[-1].content)


class TestPairing:
    def test_create_pairing(self):
        recorder = Recorder(httpx.Response(200, json={"requestId": "pair-1", "status": "pending"}))
        response = make_client(recorder).create_pairing("ABC123", "agent-1", "Shopper")

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/pairing/request"
        assert recorder.last_body == {"code": "ABC123", "agentId": "agent-1", "agentName": "Shopper"}
        assert response.request_id == "pair-1"
        assert response.status is NegotiationStatus.PENDING

    def test_check_pairing_quotes_id(self):
        recorder = Recorder(httpx.Response(200, json={"requestId": "a/b", "status": "approved", "authSecret": "s"}))
        response = make_client(recorder).check_pairing("a/b")
        assert b"/api/pairing/a%2Fb" in recorder.requests[0].url.raw_path
        assert response.auth_secret == "s"

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            make_client(Recorder()).check_pairing("")


class TestSessions:
    def test_create_session_request_body(self):
        recorder = Recorder(httpx.Response(200, json={"requestId": "sreq-1", "status": "pending"}))
        make_client(recorder).create_session_request(
            agent_id="agent-1",
            agent_name="Shopper",
            wallet_pubkey="wallet",
            session_pubkey="session",
            duration_seconds=3600,
            signature="sig",
            timestamp=123,
            auth_secret="secret",
            limits=[SpendingLimit(mint="native", amount="1.5", decimals=9, symbol="SOL")],
        )
        assert recorder.requests[0].url.path == "/api/request-session"
        body = recorder.last_body
        assert body["durationSeconds"] == 3600
        assert body["authSecret"] == "secret"
        assert body["limits"] == [{"mint": "native", "amount": 1.5, "decimals": 9, "symbol": "SOL"}]

    def test_check_session_with_session(self):
        session = {
            "id": "ses-1",
            "agentId": "agent-1",
            "walletPubkey": "wallet",
            "sessionPubkey": "session",
            "limits": [{"mint": "native", "amount": 1, "decimals": 9}],
            "durationSeconds": 60,
            "createdAt": 0,
            "expiresAt": 60_000,
            "status": "active",
        }
        recorder = Recorder(httpx.Response(200, json={"requestId": "sreq-1", "status": "approved", "session": session}))
        response = make_client(recorder).check_session_request("sreq-1")
        assert recorder.requests[0].url.path == "/api/session-details/sreq-1"
        assert response.session.limits["native"].amount == Decimal("1")


class TestTransfers:
    def test_native_transfer_sends_decimal_units(self):
        recorder = Recorder(httpx.Response(200, json={"signature": "sig-1", "status": "pending"}))
        response = make_client(recorder).transfer_native(
            wallet_pubkey="wallet",
            session_pubkey="session",
            session_secret_key="secret",
            destination="dest",
            amount=Decimal("0.25"),
        )
        assert recorder.requests[0].url.path == "/api/session/transfer"
        assert recorder.last_body["amountSol"] == 0.25
        assert response.status is TransactionStatus.PENDING

    def test_token_transfer_sends_base_units(self):
        recorder = Recorder(httpx.Response(200, json={"signature": "sig-2", "status": "confirmed"}))
        make_client(recorder).transfer_token(
            wallet_pubkey="wallet",
            session_pubkey="session",
            session_secret_key="secret",
            destination="dest",
            mint="usdc",
            amount="1.5",
            decimals=6,
        )
        assert recorder.requests[0].url.path == "/api/session/transfer-token"
        assert recorder.last_body["amount"] == 1_500_000

    def test_sign_and_send(self):
        recorder = Recorder(httpx.Response(200, json={"signature": "sig-3", "status": "confirmed"}))
        response = make_client(recorder).sign_and_send(
            transaction="base64tx", session_secret_key="secret", session_pubkey="session"
        )
        assert recorder.requests[0].url.path == "/api/session/sign-and-send"
        assert response.signature == "sig-3"


class TestErrors:
    def test_error_body_message(self):
        recorder = Recorder(httpx.Response(400, json={"error": "Invalid pairing code", "code": "BAD_CODE"}))
        with pytest.raises(ApiRequestError) as exc:
            make_client(recorder).create_pairing("nope", "agent-1", "Shopper")
        assert str(exc.value) == "Invalid pairing code"
        assert exc.value.status_code == 400
        assert exc.value.code == "BAD_CODE"

    def test_error_without_body(self):
        recorder = Recorder(httpx.Response(502, text="Bad Gateway"))
        with pytest.raises(ApiRequestError, match="Request failed: 502"):
            make_client(recorder).check_pairing("pair-1")

    def test_non_json_success(self):
        recorder = Recorder(httpx.Response(200, text="<html>"))
        with pytest.raises(SchemaError):
            make_client(recorder).check_pairing("pair-1")

    def test_schema_mismatch(self):
        recorder = Recorder(httpx.Response(200, json={"status": "pending"}))
        with pytest.raises(SchemaError):
            make_client(recorder).check_pairing("pair-1")

    def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError):
            make_client(handler).check_pairing("pair-1")


def test_owned_client_closed_on_exit():
    with ApprovalApiClient(OdysseyConfig(api_url=API_URL)) as client:
        http = client._http
    assert http.is_closed


def test_injected_client_left_open():
    http = httpx.Client(base_url=API_URL, transport=httpx.MockTransport(Recorder()))
    with ApprovalApiClient(OdysseyConfig(api_url=API_URL), http=http):
        pass
    assert not http.is_closed
