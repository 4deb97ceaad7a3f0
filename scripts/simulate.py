"""
Table Flow Simulation Script

Runs the full table flow concurrently against a running server:
order -> blocked clear -> add products -> PRONTO -> payment -> clear.
Run from project root: python scripts/simulate.py --email atendente@lanchonete.com --password admin123

Author: Khalil Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

API_BASE_URL = "http://localhost:8001"
PAYMENT_METHODS = ["DINHEIRO", "CARTAO", "PIX"]


def random_items(products: list[dict], max_lines: int = 3) -> list[dict]:
    """Pick a few products with random quantities."""
    chosen = random.sample(products, k=min(len(products), random.randint(1, max_lines)))
    return [{"product_id": p["id"], "quantity": random.randint(1, 3)} for p in chosen]


async def login(client: httpx.AsyncClient, email: str, password: str) -> str:
    response = await client.post(f"{API_BASE_URL}/api/auth/login", json={"email": email, "password": password})
    response.raise_for_status()
    return response.json()["data"]["access_token"]


# =============================================================================
# TABLE FLOW
# =============================================================================

async def run_table_flow(
    client: httpx.AsyncClient,
    table: dict,
    products: list[dict],
) -> dict[str, Any]:
    """Drive one table through its whole lifecycle and check each guard."""
    result = {"table": table["number"], "success": False, "steps": [], "error": None}
    started = time.perf_counter()

    async def step(name: str, method: str, url: str, expected: int, **kwargs) -> dict:
        response = await client.request(method, f"{API_BASE_URL}{url}", timeout=30.0, **kwargs)
        result["steps"].append((name, response.status_code))
        if response.status_code != expected:
            raise RuntimeError(f"{name}: expected {expected}, got {response.status_code} {response.text[:100]}")
        return response.json()

    try:
        order = await step("create", "POST", "/api/orders", 201, json={
            "table_id": table["id"],
            "items": random_items(products),
        })
        order_id = order["data"]["id"]

        # Kitchen still working: clearing must be refused
        await step("clear-blocked", "POST", f"/api/tables/{table['id']}/clear", 400)

        await step("add-products", "POST", f"/api/orders/{order_id}/add-products", 200, json={
            "products": random_items(products, max_lines=2),
        })
        await step("ready", "PUT", f"/api/orders/{order_id}", 200, json={"status": "PRONTO"})

        paid = await step("payment", "POST", f"/api/orders/{order_id}/payment", 200, json={
            "paymentMethod": random.choice(PAYMENT_METHODS),
        })
        result["total"] = paid["data"]["payment_amount"]

        await step("clear", "POST", f"/api/tables/{table['id']}/clear", 200)
        result["success"] = True

    except Exception as e:
        result["error"] = str(e)[:150]

    result["time"] = round(time.perf_counter() - started, 3)
    return result


# =============================================================================
# RUNNER
# =============================================================================

def print_summary(results: list[dict], elapsed: float) -> None:
    ok = [r for r in results if r["success"]]
    bad = [r for r in results if not r["success"]]
    rule = "-" * 70

    print(f"\n{rule}\n📊 {len(ok)}/{len(results)} tables completed in {elapsed}s\n{rule}")
    if ok:
        mean = round(sum(r["time"] for r in ok) / len(ok), 3)
        revenue = sum(r.get("total") or 0 for r in ok)
        print(f"⏱️  Mean flow time: {mean}s")
        print(f"💰 Revenue collected: R$ {revenue:.2f}")
    for r in bad[:5]:
        print(f"❌ Mesa {r['table']}: {r['error']}")
    if len(bad) > 5:
        print(f"   ... and {len(bad) - 5} more")
    print(f"{rule}\n🔍 Next: POST /api/admin/reports/export, then python scripts/verify.py")


async def run_simulation(email: str, password: str, max_tables: int) -> dict[str, Any]:
    print(f"🔥 Table flow simulation against {API_BASE_URL} ({datetime.now():%H:%M:%S})")

    async with httpx.AsyncClient() as client:
        token = await login(client, email, password)
        client.headers["Authorization"] = f"Bearer {token}"

        products = (await client.get(
            f"{API_BASE_URL}/api/products", params={"available": True, "limit": 100}
        )).json()["data"]["items"]
        tables = (await client.get(
            f"{API_BASE_URL}/api/tables", params={"status": "LIVRE"}
        )).json()["data"][:max_tables]

        if not products or not tables:
            print("❌ Need at least one available product and one free table.")
            return {"total": 0, "successful": 0, "failed": 0}

        print(f"🚀 {len(tables)} tables, {len(products)} products")
        started = time.perf_counter()
        results = await asyncio.gather(*(run_table_flow(client, t, products) for t in tables))
        elapsed = round(time.perf_counter() - started, 2)

    print_summary(results, elapsed)
    successful = sum(1 for r in results if r["success"])
    return {
        "total": len(results),
        "successful": successful,
        "failed": len(results) - successful,
        "elapsed": elapsed,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run concurrent table flows against a live server")
    parser.add_argument("--email", default="atendente@lanchonete.com")
    parser.add_argument("--password", default="admin123")
    parser.add_argument("--tables", type=int, default=10, help="Maximum number of tables")
    args = parser.parse_args()

    summary = asyncio.run(run_simulation(args.email, args.password, args.tables))
    sys.exit(0 if summary["failed"] == 0 else 1)
