#!/usr/bin/env python3
"""
Smoke test against a running server: submit -> fetch -> process -> list -> delete.
Run from the project root: python scripts/smoke_test_expenses.py [BASE_URL]
"""

import asyncio
import sys

import httpx

BASE_URL = "http://localhost:10000"


class ExpensesSmokeTester:
    def __init__(self, base_url: str):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=30)

    async def check_health(self) -> bool:
        print("🔍 Health check...")
        response = await self.client.get("/health")
        if response.status_code != 200:
            print(f"❌ Health returned {response.status_code}")
            return False
        data = response.json()
        print(f"✅ Status: {data['status']} - Database: {data['database']}")
        return data["database"] == "connected"

    async def submit_expense(self) -> str:
        print("\n📥 Submitting expense...")
        response = await self.client.post(
            "/expenses/submit",
            json={
                "organization": "Smoke Test Org",
                "event": "Smoke Test",
                "description": "Coffee",
                "amount": "12.50",
                "submittedBy": "smoke-test",
            },
        )
        response.raise_for_status()
        data = response.json()
        print(f"✅ Expense created: {data['expenseId']} ({data['data']['status']})")
        return data["expenseId"]

    async def process_expense(self, expense_id: str) -> None:
        print(f"\n🧾 Processing expense {expense_id}...")
        response = await self.client.post(
            f"/expenses/process/{expense_id}",
            json={"processedBy": "smoke-test", "accountingRef": "SMOKE-1"},
        )
        response.raise_for_status()
        data = response.json()["data"]
        print(f"✅ Status: {data['status']} - Processed by: {data['processedBy']}")

    async def list_expenses(self, expense_id: str) -> None:
        print("\n📋 Listing submitted expenses...")
        response = await self.client.get("/expenses/submitted")
        response.raise_for_status()
        data = response.json()
        found = any(e["id"] == expense_id for e in data["data"])
        print(f"✅ {data['count']} expenses, created one {'present' if found else 'MISSING'}")

    async def delete_expense(self, expense_id: str) -> None:
        print(f"\n🗑️ Deleting expense {expense_id}...")
        response = await self.client.delete(f"/expenses/{expense_id}")
        response.raise_for_status()
        response = await self.client.get(f"/expenses/{expense_id}")
        print(f"✅ Fetch after delete returned {response.status_code}")

    async def cleanup(self):
        await self.client.aclose()


async def main(base_url: str):
    tester = ExpensesSmokeTester(base_url)
    try:
        if not await tester.check_health():
            print("⚠️ Database is not connected; requests will fail")
        expense_id = await tester.submit_expense()
        await tester.process_expense(expense_id)
        await tester.list_expenses(expense_id)
        await tester.delete_expense(expense_id)
        print("\n🎉 Smoke test finished")
    except httpx.HTTPError as e:
        print(f"\n❌ Request failed: {e}")
        sys.exit(1)
    finally:
        await tester.cleanup()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else BASE_URL))
