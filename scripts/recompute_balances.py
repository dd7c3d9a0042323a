"""
Ledger Repair Script.

Rewrites the running balances of one customer (or every customer with
entries) from a zero base, in posting order.

Usage:
    python -m scripts.recompute_balances --customer 12
    python -m scripts.recompute_balances --all
"""

import argparse
import asyncio
import sys

from sqlalchemy import select

from backend.app.core.observability import setup_logging
from backend.app.db.session import session_scope
from backend.app.domain.ledger.current_account import recompute_balances
from backend.app.models.ledger_entry import LedgerEntry
# Registers the remaining mapped classes referenced by foreign keys
import backend.app.main  # noqa: F401


def print_step(step, msg):
    print(f"[{step}] {msg}")


async def customers_with_entries(db) -> list[int]:
    result = await db.execute(select(LedgerEntry.customer_id).distinct().order_by(LedgerEntry.customer_id))
    return list(result.scalars().all())


async def run(customer_id=None) -> int:
    corrected_total = 0
    async with session_scope() as db:
        customer_ids = [customer_id] if customer_id else await customers_with_entries(db)
        for cid in customer_ids:
            result = await recompute_balances(db, cid)
            corrected_total += result.entries_corrected
            print_step(
                "RECOMPUTE",
                f"customer {cid}: {result.entries_checked} entries, "
                f"{result.entries_corrected} corrected, balance {result.final_balance}",
            )
    return corrected_total


def main():
    parser = argparse.ArgumentParser(description="Recompute current account running balances")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--customer", type=int, help="Customer ID")
    group.add_argument("--all", action="store_true", help="Every customer with entries")
    args = parser.parse_args()

    setup_logging()
    corrected = asyncio.run(run(args.customer))
    if corrected:
        print(f"⚠️ {corrected} entries had drifted and were corrected")
    else:
        print("✅ All running balances were consistent")
    sys.exit(0)


if __name__ == "__main__":
    main()
