"""
End-to-end demo: pair an agent, open a session and spend against it,
all through the mock backend.
"""

import threading
import time
import sys

import uvicorn

sys.path.insert(0, "../src")
from mock_backend import create_app
from odyssey import AuthorizationService, OdysseyConfig, SessionKeypair, SpendingLimit
from odyssey.api_client import ApprovalApiClient
from odyssey.errors import LimitExceededError
from odyssey.ledger import InMemoryLedger
from odyssey.money import NATIVE_MINT
from odyssey.storage import MemorySecureStore

PORT = 3011


def run_server():
    uvicorn.run(create_app(auto_approve=True), host="127.0.0.1", port=PORT, log_level="error")


def main():
    print("🚀 Odyssey E2E Demo")
    print("=" * 40)
    print()

    print("1️⃣  Starting mock backend...")
    threading.Thread(target=run_server, daemon=True).start()
    time.sleep(2)
    print(f"   ✅ Backend running on http://127.0.0.1:{PORT}")
    print()

    config = OdysseyConfig(api_url=f"http://127.0.0.1:{PORT}")
    owner = SessionKeypair.generate()
    service = AuthorizationService(
        ApprovalApiClient(config), InMemoryLedger(), MemorySecureStore(), signer=owner, config=config
    )
    service.create_wallet(owner.public_key, "demo-credential")

    print("2️⃣  Pairing agent...")
    agent = service.pair_agent("DEMO42", "demo-agent", "Demo Agent")
    print(f"   ✅ Paired: {agent.name} ({agent.id})")
    print()

    print("3️⃣  Requesting a 1 SOL session for 10 minutes...")
    request = service.request_session(
        agent.id, [SpendingLimit(mint=NATIVE_MINT, amount="1", decimals=9, symbol="SOL")], 600
    )
    session = service.await_session(request.request_id)
    print(f"   ✅ Session {session.id} is {session.status.value}")
    print()

    print("4️⃣  Spending...")
    destination = SessionKeypair.generate().public_key
    for amount in ("0.4", "0.4", "0.4"):
        try:
            tx = service.transfer(session.id, destination, amount)
            print(f"   ✅ Sent {amount} SOL ({tx.signature})")
        except LimitExceededError as e:
            print(f"   ⛔ {e}")
    print()

    for row in service.session_summary(session.id)["limits"]:
        print(f"   {row['symbol']}: spent {row['spent']:.4f} of {row['limit']:.4f}")

    service.revoke(session.id)
    print("   ✅ Session revoked")


if __name__ == "__main__":
    main()
