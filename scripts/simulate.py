"""
Concurrent Terminals Simulation Script

Several terminals settle the same table at once against a running API
(development mode, in-memory store). Afterwards the ledger must still
satisfy:
    - sum of payments <= effective total
    - no order line or cover settled beyond its quantity

Run from project root: python scripts/simulate.py

Author: Khalil_Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_TERMINALS = 8
METHODS = ["cash", "card", "online"]


def generate_amount_payload(remaining_cents: int) -> dict[str, Any]:
    """Random amount-based split, sometimes deliberately too large."""
    cents = random.randint(100, max(100, remaining_cents // 2))
    return {
        "amount": f"{cents / 100:.2f}",
        "method": random.choice(METHODS),
        "fiscal_flag": random.random() < 0.5,
        "idempotency_key": uuid.uuid4().hex,
    }


def generate_item_payload(remaining: dict[str, Any]) -> dict[str, Any]:
    """Random item-based split over the remaining lines."""
    lines = remaining["lines"]
    picked = random.sample(lines, k=min(len(lines), random.randint(1, 2)))
    payload = {
        "items": [
            {"item_id": line["item_id"], "quantity": random.randint(1, line["remaining"])}
            for line in picked
        ],
        "covers": random.randint(0, remaining["covers_remaining"]),
        "method": random.choice(METHODS),
        "fiscal_flag": random.random() < 0.5,
        "idempotency_key": uuid.uuid4().hex,
    }
    return payload


async def run_terminal(
    client: httpx.AsyncClient,
    session_id: int,
    terminal: int,
) -> dict[str, Any]:
    """One terminal: look at the bill, then try to pay part of it."""
    start_time = time.time()
    base = f"{API_BASE_URL}/api/sessions/{session_id}"

    try:
        status = (await client.get(f"{base}/settlement")).json()
        remaining = (await client.get(f"{base}/remaining-items")).json()

        if remaining["lines"] and random.random() < 0.5:
            payload = generate_item_payload(remaining)
            mode = "items"
        else:
            payload = generate_amount_payload(status["display_remaining_cents"])
            mode = "amount"

        response = await client.post(f"{base}/payments", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)
        data = response.json()

        if response.status_code == 201:
            return {
                "terminal": terminal,
                "success": True,
                "mode": mode,
                "amount": data["payment"]["amount_cents"],
                "closed": data["closed"],
                "time": elapsed,
            }
        return {
            "terminal": terminal,
            "success": False,
            "mode": mode,
            "status_code": response.status_code,
            "error": data.get("error", response.text[:100]),
            "time": elapsed,
        }
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "terminal": terminal,
            "success": False,
            "mode": "unknown",
            "error": str(e)[:100],
            "time": elapsed,
        }


async def verify_ledger(client: httpx.AsyncClient, session_id: int, effective_total: int) -> bool:
    """Check conservation of money and of items on the final ledger."""
    base = f"{API_BASE_URL}/api/sessions/{session_id}"
    payments = (await client.get(f"{base}/payments")).json()["payments"]
    status = (await client.get(f"{base}/settlement")).json()

    paid = sum(p["amount_cents"] for p in payments)
    settled = defaultdict(int)
    for payment in payments:
        for item in payment["items"]:
            settled[str(item["order_item_id"])] += item["quantity"]

    ok = True
    print(f"\nPayments: {len(payments)}, paid {paid} of {effective_total} cents")
    if paid > effective_total:
        print(f"   FAIL: overpaid by {paid - effective_total} cents")
        ok = False
    if status["is_overpaid"]:
        print("   FAIL: status reports an overpaid bill")
        ok = False

    # A line still listed as remaining must not be settled past its quantity
    remaining = (await client.get(f"{base}/remaining-items")).json()
    for line in remaining["lines"]:
        if line["settled"] > line["ordered"]:
            print(f"   FAIL: item {line['item_id']} settled {line['settled']} of {line['ordered']}")
            ok = False

    print(f"   Fiscal status: {status['fiscal_status']} ({status['fiscal_cents']} cents)")
    print(f"   Session open: {status['is_open']}")
    return ok


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    num_terminals: int = TOTAL_TERMINALS,
    rounds: int = 3,
    latency: float = 0.05,
) -> bool:
    """
    Run the concurrent-terminals simulation.

    Args:
        num_terminals: Terminals paying at the same time per round
        rounds: Number of rounds
        latency: Store latency injected inside the append (seconds)
    """
    print("=" * 70)
    print("CONCURRENT TERMINALS SIMULATION")
    print("=" * 70)
    print(f"Terminals: {num_terminals} x {rounds} rounds")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        response = await client.post(
            f"{API_BASE_URL}/api/dev/demo-session",
            json={"covers": 4, "cover_unit": "2.00", "cover_included": False, "latency": latency},
        )
        if response.status_code != 201:
            print(f"Could not create demo session: {response.text}")
            return False
        demo = response.json()
        session_id = demo["session_id"]
        print(f"\nDemo session {session_id}: {demo['effective_total_cents']} cents")

        results = []
        start_time = time.time()
        for round_number in range(1, rounds + 1):
            print(f"\nRound {round_number}...")
            tasks = [run_terminal(client, session_id, i + 1) for i in range(num_terminals)]
            results.extend(await asyncio.gather(*tasks))
        total_time = round(time.time() - start_time, 2)

        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]
        rejections = defaultdict(int)
        for r in failed:
            rejections[r.get("error", "unknown")] += 1

        print("\n" + "=" * 70)
        print("SIMULATION RESULTS")
        print("=" * 70)
        print(f"Accepted payments: {len(successful)}/{len(results)}")
        print(f"Rejected payments: {len(failed)}/{len(results)}")
        for error, count in sorted(rejections.items()):
            print(f"   {error}: {count}")
        print(f"Total Time: {total_time}s")

        ok = await verify_ledger(client, session_id, demo["effective_total_cents"])

    print("\n" + "=" * 70)
    print("LEDGER CONSISTENT" if ok else "LEDGER INCONSISTENT")
    print("=" * 70)
    return ok


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrent Terminals Simulation")
    parser.add_argument("--terminals", type=int, default=TOTAL_TERMINALS, help="Terminals per round")
    parser.add_argument("--rounds", type=int, default=3, help="Number of rounds")
    parser.add_argument("--latency", type=float, default=0.05, help="Store latency in seconds")
    args = parser.parse_args()

    success = asyncio.run(run_simulation(args.terminals, args.rounds, args.latency))
    sys.exit(0 if success else 1)
