"""
Mock approval backend for local development.

Implements the pairing, session-request and transfer endpoints with
in-memory state, plus /dev routes that play the owner's device deciding
on a request.

    uvicorn mock_backend:app --port 3001
"""

import hashlib
import os
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class PairingBody(BaseModel):
    code: str
    agentId: str
    agentName: str


class LimitBody(BaseModel):
    mint: str
    amount: float
    decimals: int
    symbol: Optional[str] = None


class SessionRequestBody(BaseModel):
    agentId: str
    agentName: str
    walletPubkey: str
    sessionPubkey: str
    durationSeconds: int
    signature: str
    timestamp: int
    authSecret: str
    limits: list[LimitBody]


class TransferBody(BaseModel):
    walletPubkey: str
    sessionPubkey: str
    sessionSecretKey: str
    destination: str
    amountSol: Optional[float] = None
    mint: Optional[str] = None
    amount: Optional[int] = None


class DecisionBody(BaseModel):
    approve: bool


def _id(prefix: str) -> str:
    return f"{prefix}-{hashlib.sha256(os.urandom(16)).hexdigest()[:12]}"


def create_app(auto_approve: bool = False, transfer_status: str = "confirmed") -> FastAPI:
    """Fresh app with its own state. ``auto_approve`` approves on first check."""
    app = FastAPI(title="Odyssey mock backend")
    pairings: dict[str, dict] = {}
    requests: dict[str, dict] = {}
    auth_secrets: dict[str, str] = {}

    def _decide_session(record: dict, approve: bool) -> None:
        if not approve:
            record["status"] = "rejected"
            return
        now = int(time.time() * 1000)
        body = record["body"]
        record["status"] = "approved"
        record["session"] = {
            "id": _id("ses"),
            "agentId": body["agentId"],
            "walletPubkey": body["walletPubkey"],
            "sessionPubkey": body["sessionPubkey"],
            "limits": body["limits"],
            "durationSeconds": body["durationSeconds"],
            "createdAt": now,
            "expiresAt": now + body["durationSeconds"] * 1000,
            "status": "active",
            "spent": [],
        }

    @app.post("/api/pairing/request")
    async def create_pairing(body: PairingBody):
        if not body.code.strip():
            raise HTTPException(status_code=400, detail="Pairing code is required")
        request_id = _id("pair")
        pairings[request_id] = {"requestId": request_id, "status": "pending", "agentId": body.agentId}
        return {"requestId": request_id, "status": "pending"}

    @app.get("/api/pairing/{request_id}")
    async def check_pairing(request_id: str):
        record = pairings.get(request_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Pairing request not found")
        if auto_approve and record["status"] == "pending":
            _decide_pairing(record, True)
        return {k: v for k, v in record.items() if k != "agentId"}

    def _decide_pairing(record: dict, approve: bool) -> None:
        if not approve:
            record["status"] = "rejected"
            return
        secret = _id("secret")
        auth_secrets[record["agentId"]] = secret
        record.update({"status": "approved", "authSecret": secret})

    @app.post("/api/request-session")
    async def request_session(body: SessionRequestBody):
        if auth_secrets.get(body.agentId) != body.authSecret:
            raise HTTPException(status_code=401, detail="Agent is not paired")
        request_id = _id("sreq")
        requests[request_id] = {"status": "pending", "body": body.model_dump(exclude_none=True)}
        return {"requestId": request_id, "status": "pending"}

    @app.get("/api/session-details/{request_id}")
    async def session_details(request_id: str):
        record = requests.get(request_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Session request not found")
        if auto_approve and record["status"] == "pending":
            _decide_session(record, True)
        response = {"requestId": request_id, "status": record["status"]}
        if "session" in record:
            response["session"] = record["session"]
        return response

    @app.post("/api/session/transfer")
    async def transfer(body: TransferBody):
        if body.amountSol is None or body.amountSol <= 0:
            raise HTTPException(status_code=400, detail="amountSol must be positive")
        return {"signature": _id("sig"), "status": transfer_status}

    @app.post("/api/session/transfer-token")
    async def transfer_token(body: TransferBody):
        if not body.mint or not body.amount or body.amount <= 0:
            raise HTTPException(status_code=400, detail="mint and a positive amount are required")
        return {"signature": _id("sig"), "status": transfer_status}

    @app.post("/dev/pairing/{request_id}/decide")
    async def decide_pairing(request_id: str, body: DecisionBody):
        record = pairings.get(request_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Pairing request not found")
        _decide_pairing(record, body.approve)
        return {"requestId": request_id, "status": record["status"]}

    @app.post("/dev/session/{request_id}/decide")
    async def decide_session(request_id: str, body: DecisionBody):
        record = requests.get(request_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Session request not found")
        _decide_session(record, body.approve)
        return {"requestId": request_id, "status": record["status"]}

    @app.exception_handler(HTTPException)
    async def error_body(_request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    return app


app = create_app(auto_approve=os.getenv("ODYSSEY_MOCK_AUTO_APPROVE") == "1")


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=3001)
