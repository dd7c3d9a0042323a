import time
import subprocess
import httpx
import sys
import os
import signal

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"
CUSTOMER = {
    "business_name": "Persistencia SRL",
    "tax_id": "30-71234567-1",
    "customer_type": "responsable_inscripto",
}


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


def start_server(env=None):
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env or os.environ.copy(),
    )


def find_customer():
    resp = httpx.get(f"{BASE_URL}{API_PREFIX}/customers", params={"search": CUSTOMER["tax_id"]})
    customers = resp.json()["customers"]
    return customers[0] if customers else None


def run_verification():
    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server({**os.environ, "DB_ECHO": "True"})

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 2. Customer and a movement
        print("\n--- [Step 2] Creating Customer and Posting a Sale (Persistence Test) ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/customers", json=CUSTOMER)
        if resp.status_code == 409:
            print("⚠️ Customer already exists (persistence working from previous run?)")
            customer = find_customer()
        elif resp.status_code == 201:
            customer = resp.json()
            print("✅ Customer Created Successfully")
        else:
            print(f"❌ Customer Creation Failed: {resp.status_code} {resp.text}")
            raise Exception("Customer creation failed")

        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/current-account", json={
            "customer_id": customer["id"],
            "direction": "DEBIT",
            "concept": "Persistence check",
            "amount": "100",
        })
        if resp.status_code != 201:
            print(f"❌ Posting Failed: {resp.status_code} {resp.text}")
            raise Exception("Posting failed")
        expected_balance = resp.json()["new_balance"]
        print(f"✅ Balance is now {expected_balance}")

    finally:
        print("\n--- [Step 3] Stopping Server ---")
        proc.send_signal(signal.SIGTERM)
        proc.wait()

    time.sleep(2)  # Wait for port release

    # 3. Restart Server
    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        print("\n--- [Step 5] Reading Balance (Post-Restart) ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/current-account/customers/{customer['id']}/balance")
        if resp.status_code == 200 and resp.json()["current_balance"] == expected_balance:
            print(f"✅ Balance Persisted: {expected_balance}")
        else:
            print(f"❌ Balance Check Failed (Persistence Issue?): {resp.status_code} {resp.text}")
            raise Exception("Balance lost after restart")

    finally:
        print("\n--- [Step 6] Stopping Server ---")
        proc2.send_signal(signal.SIGTERM)
        proc2.wait()


if __name__ == "__main__":
    run_verification()
