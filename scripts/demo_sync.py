import httpx
import sys

BASE_URL = "http://127.0.0.1:8080"

def run_demo(name: str = None):
    print("--- 1. LIST CONNECTIONS ---")
    try:
        resp = httpx.get(f"{BASE_URL}/connections")
        resp.raise_for_status()
    except httpx.ConnectError:
        print("Error: Could not connect to server. Make sure it's running (uvicorn ledgersync.main:app --port 8080).")
        sys.exit(1)

    connections = resp.json()
    for conn in connections:
        print(f"{conn['name']}: provider={conn['provider']['name']} last_synced={conn['lastSynced']}")

    if not connections:
        print("\nNo connections yet. Start one with:")
        print(f"  curl '{BASE_URL}/auth?name=My%20Bank'")
        return

    print("\n--- 2. QUEUE SYNC ---")
    if name:
        resp = httpx.post(f"{BASE_URL}/connections/sync/{name}")
    else:
        resp = httpx.post(f"{BASE_URL}/connections/sync")
    resp.raise_for_status()
    print("Sync:", resp.json())
    print("Progress is reported in the producer and consumer logs.")

if __name__ == "__main__":
    run_demo(sys.argv[1] if len(sys.argv) > 1 else None)
