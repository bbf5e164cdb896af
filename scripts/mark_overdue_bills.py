#!/usr/bin/env python3
"""
Flag pending bills past their due date as overdue.

Usage:
  python scripts/mark_overdue_bills.py
  # Reads DATABASE_URL from .env (or export)

Safe to run repeatedly, e.g. from a daily cron job. Rows locked by a
concurrent payment are skipped and picked up on the next run.
"""
import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.logging import setup_logging
from app.database import AsyncSessionLocal, close_db
from app.services.billing_engine import BillingEngine

logger = logging.getLogger("scripts.mark_overdue_bills")


async def run() -> int:
    try:
        async with AsyncSessionLocal() as db:
            return await BillingEngine.mark_overdue(db)
    finally:
        await close_db()


def main():
    setup_logging()
    try:
        count = asyncio.run(run())
    except Exception:
        logger.exception("Overdue sweep failed")
        sys.exit(1)
    print(f"Marked {count} bill(s) overdue.")


if __name__ == "__main__":
    main()
