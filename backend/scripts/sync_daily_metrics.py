#!/usr/bin/env python3
"""
Backfill or re-run the daily campaign metrics snapshot, or purge expired
cache rows, without going through the cron endpoints.

Run from backend directory:
  python scripts/sync_daily_metrics.py --date 2025-08-01
  python scripts/sync_daily_metrics.py --account-id UUID --days 7
  python scripts/sync_daily_metrics.py --cleanup-cache

Options:
  --account-id ID   Sync only this linked account (UUID)
  --date YYYY-MM-DD Last day to sync (default: yesterday)
  --days N          Number of days ending at --date (default: 1)
  --cleanup-cache   Delete expired metrics cache rows and exit
"""

import asyncio
import argparse
import logging
import sys
from datetime import date, timedelta
from pathlib import Path

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

import httpx

from app.config import get_settings
from app.database import async_session, dispose_engine
from app.services.daily_sync_service import DailySyncService, default_sync_date
from app.services.metrics_cache import MetricsCacheStore
from app.utils import parse_uuid

logging.basicConfig(level=logging.INFO)


async def cleanup_cache() -> None:
    async with async_session() as db:
        deleted = await MetricsCacheStore(db).cleanup_expired()
        await db.commit()
    print(f"Deleted {deleted} expired cache rows")


async def sync_days(account_id: str | None, last_day: date, days: int) -> None:
    settings = get_settings()
    target = parse_uuid(account_id, "account-id") if account_id else None
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
        service = DailySyncService(async_session, http, settings)
        for offset in range(days - 1, -1, -1):
            day = last_day - timedelta(days=offset)
            result = await service.sync(target, day)
            print(f"  {result['synced_date']}: {result['synced']} synced, {result['failed']} failed")
            for r in result["accounts"]:
                if r["status"] == "failed":
                    print(f"    {r['account_id']}: {r['error']}")


async def main(args: argparse.Namespace) -> None:
    try:
        if args.cleanup_cache:
            await cleanup_cache()
        else:
            last_day = date.fromisoformat(args.date) if args.date else default_sync_date()
            await sync_days(args.account_id, last_day, max(args.days, 1))
    finally:
        await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Daily metrics sync / cache maintenance")
    parser.add_argument("--account-id", help="Sync only this account (UUID)")
    parser.add_argument("--date", help="Last day to sync, YYYY-MM-DD (default: yesterday)")
    parser.add_argument("--days", type=int, default=1, help="Days to sync ending at --date")
    parser.add_argument("--cleanup-cache", action="store_true", help="Delete expired cache rows")
    asyncio.run(main(parser.parse_args()))
