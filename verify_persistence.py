import time
import subprocess
import httpx
import sys
import os
import signal
import uuid

from splitspace.app.core.jwt import create_access_token

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"

USER_ID = 424242
SERVICE_ID = 424200


def bearer(user_id, role):
    token = create_access_token(data={"sub": f"persist_{user_id}", "user_id": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


def start_server(echo=False):
    env = {**os.environ, "DB_ECHO": "True"} if echo else None
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "splitspace.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env,
    )


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def run_verification():
    user_headers = bearer(USER_ID, "USER")
    service_headers = bearer(SERVICE_ID, "SERVICE")

    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server(echo=True)

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise RuntimeError("Server start failed")

        # 2. Provision accounts and credit the wallet
        print("\n--- [Step 2] Provisioning Account + Top-up (Persistence Test) ---")
        for headers in (service_headers, user_headers):
            resp = httpx.post(f"{BASE_URL}{API_PREFIX}/accounts", headers=headers)
            if resp.status_code != 200:
                raise RuntimeError(f"Provisioning failed: {resp.status_code} {resp.text}")

        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/internal/topups", headers=service_headers, json={
            "user_id": USER_ID, "amount": "100.00", "reference": f"persist-{uuid.uuid4().hex}",
        })
        if resp.status_code != 200:
            raise RuntimeError(f"Top-up failed: {resp.status_code} {resp.text}")
        balance_before = httpx.get(f"{BASE_URL}{API_PREFIX}/wallet/me", headers=user_headers).json()["balance"]
        print(f"✅ Wallet balance before restart: {balance_before}")

    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)  # Wait for port release

    # 3. Restart Server
    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise RuntimeError("Server restart failed")

        print("\n--- [Step 5] Reading Wallet (Post-Restart) ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/wallet/me", headers=user_headers)
        if resp.status_code != 200:
            raise RuntimeError(f"Wallet read failed after restart: {resp.status_code} {resp.text}")
        if resp.json()["balance"] != balance_before:
            raise RuntimeError(f"Balance changed across restart: {balance_before} -> {resp.json()['balance']}")
        print("✅ Wallet persisted")

        print("\n--- [Step 6] Reading History ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/wallet/me/transactions", headers=user_headers)
        print(f"✅ {len(resp.json()['transactions'])} ledger entries persisted")

    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc2)


if __name__ == "__main__":
    run_verification()
