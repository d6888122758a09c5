"""Fire sign-ins, barcode scans and sign-outs at a running server.

Several operators hop between the same machines at once, which exercises the
auto sign-out rules and the per-ledger write serialisation.

Usage::

    python scripts/simulate_scans.py <machineId,...> <operatorId,...> [WO-barcode,...]
"""

import random
import sys
import threading
import time
from datetime import datetime, timezone

import requests

BASE = "http://127.0.0.1:5000/api"

MACHINES = sys.argv[1].split(",") if len(sys.argv) > 1 else []
OPERATORS = sys.argv[2].split(",") if len(sys.argv) > 2 else []
BARCODES = sys.argv[3].split(",") if len(sys.argv) > 3 else ["WO-00000000-1"]


def scan(scan_id, machine_id):
    r = requests.post(f"{BASE}/tracking/scan", json={
        "scanId": scan_id,
        "machineId": machine_id,
        "timeStamp": datetime.now(timezone.utc).isoformat(),
    }, timeout=10)
    body = r.json()
    print(scan_id, machine_id, r.status_code, body.get("action"), body.get("message"))


def operator_loop(operator_id):
    for _ in range(3):
        machine = random.choice(MACHINES)
        scan(operator_id, machine)
        for _ in range(random.randint(1, 3)):
            time.sleep(random.uniform(0.1, 0.4))
            scan(random.choice(BARCODES), machine)
        time.sleep(random.uniform(0.3, 1.2))


if __name__ == "__main__":
    if not MACHINES or not OPERATORS:
        sys.exit(__doc__)
    threads = [threading.Thread(target=operator_loop, args=(op,)) for op in OPERATORS]
    [t.start() for t in threads]
    [t.join() for t in threads]
    r = requests.get(f"{BASE}/tracking/status/today", timeout=10)
    print("machines:", r.json().get("totalMachines"), "scans:", r.json().get("totalScans"))
