"""
Daily Sync Service: Snapshot one day of campaign metrics per account into
the google_ads_metrics_daily history table.

Accounts are synced SYNC_BATCH_SIZE at a time. Each account runs in its own
session so one failure cannot roll back another account's rows.
"""

import asyncio
import logging
import uuid
from datetime import date, timedelta
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.exceptions import AdsInsightsError
from app.models import GoogleAdsAccount
from app.services.gaql import build_daily_campaign_query
from app.services.metrics_cache import MetricsCacheStore
from app.services.metrics_service import MICROS, MetricsService, normalize_metrics
from app.services.token_service import record_account_error
from app.utils import to_number

logger = logging.getLogger(__name__)

SYNC_BATCH_SIZE = 3
ENTITY_CAMPAIGN = "campaign"


def daily_campaign_metrics(raw: Optional[dict]) -> dict:
    metrics = normalize_metrics(raw)
    metrics["average_cpm"] = to_number((raw or {}).get("average_cpm")) / MICROS
    return metrics


def default_sync_date(today: Optional[date] = None) -> date:
    return (today or date.today()) - timedelta(days=1)


class DailySyncService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], http: httpx.AsyncClient, settings: Settings):
        self.session_factory = session_factory
        self.http = http
        self.settings = settings

    async def sync_account(self, account_id: uuid.UUID, day: date) -> dict:
        """Sync a single account. Failures are recorded on the account, not raised."""
        async with self.session_factory() as db:
            metrics = MetricsService(db, self.http, self.settings)
            try:
                account = await metrics.get_account(account_id)
                rows = await metrics.run_query(account, build_daily_campaign_query(day))
                store = MetricsCacheStore(db)
                stored = 0
                for row in rows:
                    campaign = row.get("campaign") or {}
                    if not campaign.get("id") or row.get("metrics") is None:
                        continue
                    await store.store_daily_metrics(
                        account.id,
                        ENTITY_CAMPAIGN,
                        day,
                        str(campaign["id"]),
                        campaign.get("name"),
                        daily_campaign_metrics(row.get("metrics")),
                    )
                    stored += 1
                await db.commit()
            except AdsInsightsError as e:
                logger.error(f"Daily sync failed for account {account_id}: {e.message}")
                await db.rollback()
                await self._record_error(db, account_id, e.message)
                return {"account_id": str(account_id), "status": "failed", "error": e.message}

        logger.info(f"Synced {stored} campaigns for account {account_id} on {day.isoformat()}")
        return {"account_id": str(account_id), "status": "synced", "campaigns": stored}

    async def _record_error(self, db: AsyncSession, account_id: uuid.UUID, message: str) -> None:
        account = await db.get(GoogleAdsAccount, account_id)
        if account is None:
            return
        record_account_error(account, message)
        await db.commit()

    async def active_account_ids(self) -> list[uuid.UUID]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(GoogleAdsAccount.id).where(GoogleAdsAccount.is_active.is_(True))
            )
            return list(result.scalars().all())

    async def sync(self, account_id: Optional[uuid.UUID] = None, day: Optional[date] = None) -> dict:
        """Sync one account, or every active account, for `day` (default yesterday)."""
        day = day or default_sync_date()
        account_ids = [account_id] if account_id else await self.active_account_ids()
        logger.info(f"Syncing {len(account_ids)} account(s) for {day.isoformat()}")

        results = []
        for i in range(0, len(account_ids), SYNC_BATCH_SIZE):
            batch = account_ids[i:i + SYNC_BATCH_SIZE]
            results.extend(await asyncio.gather(*(self.sync_account(a, day) for a in batch)))

        synced = sum(1 for r in results if r["status"] == "synced")
        return {
            "synced_date": day.isoformat(),
            "accounts": results,
            "synced": synced,
            "failed": len(results) - synced,
        }
