"""
Pre-Deploy and Smoke Test Script.

Validates the running environment and executes a money-movement smoke test
against the real configured database, in-process via TestClient:
1. Health Check
2. Provision service, admin and two wallet users
3. Top-up -> PIN -> Transfer -> History
4. Scheduler sweep
"""

import sys
import uuid
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient
from splitspace.app.main import app
from splitspace.app.core.jwt import create_access_token

API = "/v1"


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def headers_for(user_id, role):
    token = create_access_token(data={"sub": f"smoke_{user_id}", "role": role, "user_id": user_id})
    return {"Authorization": f"Bearer {token}"}


def expect(response, what):
    if response.status_code != 200:
        fail(f"{what}: {response.status_code} {response.text}")
    return response.json()


def main():
    print("🚀 Starting Deployment Validation...")
    run_id = uuid.uuid4().int % 10_000_000
    service = headers_for(900_000_000 + run_id, "SERVICE")
    admin = headers_for(910_000_000 + run_id, "ADMIN")
    sender_id, recipient_id = 920_000_000 + run_id, 930_000_000 + run_id
    sender, recipient = headers_for(sender_id, "USER"), headers_for(recipient_id, "USER")

    with TestClient(app) as client:
        # 1. Health Check
        print_step("PRE-DEPLOY", "Checking /health...")
        health = expect(client.get("/health"), "Health check")
        if health["redis"] != "up":
            print("⚠️ Redis is down: events will be parked in the DLQ")
        success(f"Health: {health['status']}")

        # 2. Provision
        print_step("AUTH", "Provisioning smoke accounts...")
        for headers in (service, admin, sender, recipient):
            expect(client.post(f"{API}/accounts", headers=headers), "Provisioning")
        expect(client.post(f"{API}/wallet/pin", headers=sender, json={"pin": "2580"}), "PIN setup")
        success("Accounts ready")

        # 3. Money movement
        print_step("SMOKE", "Running Top-up -> Transfer flow...")
        expect(client.post(f"{API}/internal/topups", headers=service, json={
            "user_id": sender_id, "amount": "1000.00", "reference": f"smoke-{run_id}",
        }), "Top-up")
        transfer = expect(client.post(f"{API}/transfers", headers=sender, json={
            "to_user_id": recipient_id, "amount": "250.00", "pin": "2580", "idempotency_key": f"smoke-{run_id}",
        }), "Transfer")
        if transfer["new_balance"] != "750.00":
            fail(f"Unexpected sender balance {transfer['new_balance']}")
        received = expect(client.get(f"{API}/wallet/me", headers=recipient), "Wallet read")
        if received["balance"] != "250.00":
            fail(f"Unexpected recipient balance {received['balance']}")
        success(f"Transfer {transfer['reference']} settled")

        # 4. Scheduler
        print_step("VERIFY", "Running scheduler sweep...")
        sweep = expect(client.post(f"{API}/admin/ops/sweep", headers=admin), "Sweep")
        success(f"Sweep processed {len(sweep['plans'])} plans, unlocked {len(sweep['rooms_unlocked'])} rooms")

    success("Deployment Validation Passed!")


if __name__ == "__main__":
    main()
