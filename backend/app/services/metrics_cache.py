"""
Metrics Cache: TTL cache of Ads API payloads plus the daily history table.

Cache rows are keyed by (account_id, cache_key) and overwritten on every
write. Expired rows are ignored on read and removed by cleanup_expired().
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import DailyMetric, MetricsCache
from app.utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 1


def generate_cache_key(entity_type: str, date_range: str, metrics: list[str]) -> str:
    """entity_dateRange_sortedMetrics; metric order does not change the key."""
    sorted_metrics = ",".join(sorted(m for m in metrics if m))
    return f"{entity_type}_{date_range}_{sorted_metrics}"


def generate_query_hash(query_data: Any) -> str:
    """SHA-256 of the canonical JSON form of the query parameters."""
    canonical = json.dumps(query_data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CachedEntry:
    data: Any
    created_at: datetime
    expires_at: datetime


class MetricsCacheStore:
    """Cache and history persistence over an injected session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_cached(self, account_id: uuid.UUID, cache_key: str, now: Optional[datetime] = None) -> Optional[CachedEntry]:
        now = now or utcnow()
        result = await self.db.execute(
            select(MetricsCache).where(
                MetricsCache.account_id == account_id,
                MetricsCache.cache_key == cache_key,
            )
        )
        row = result.scalar_one_or_none()
        if row is None or row.expires_at <= now:
            return None
        return CachedEntry(data=row.data, created_at=row.created_at, expires_at=row.expires_at)

    async def set_cached(
        self,
        account_id: uuid.UUID,
        cache_key: str,
        data: Any,
        query_hash: str,
        ttl_hours: float = DEFAULT_TTL_HOURS,
    ) -> MetricsCache:
        """Upsert on (account_id, cache_key); last write wins."""
        now = utcnow()
        expires_at = now + timedelta(hours=ttl_hours)
        result = await self.db.execute(
            select(MetricsCache).where(
                MetricsCache.account_id == account_id,
                MetricsCache.cache_key == cache_key,
            )
        )
        row = result.scalar_one_or_none()
        if row:
            row.data = data
            row.query_hash = query_hash
            row.created_at = now
            row.expires_at = expires_at
        else:
            row = MetricsCache(
                account_id=account_id,
                cache_key=cache_key,
                query_hash=query_hash,
                data=data,
                created_at=now,
                expires_at=expires_at,
            )
            self.db.add(row)
        await self.db.flush()
        return row

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every expired row. Returns the number removed."""
        now = now or utcnow()
        result = await self.db.execute(delete(MetricsCache).where(MetricsCache.expires_at <= now))
        await self.db.flush()
        deleted = result.rowcount or 0
        logger.info(f"Removed {deleted} expired metrics cache rows")
        return deleted

    async def store_daily_metrics(
        self,
        account_id: uuid.UUID,
        entity_type: str,
        day: date,
        entity_id: Optional[str],
        entity_name: Optional[str],
        metrics: dict,
    ) -> DailyMetric:
        """Upsert on (account_id, date, entity_type, entity_id)."""
        lookup = [
            DailyMetric.account_id == account_id,
            DailyMetric.date == day,
            DailyMetric.entity_type == entity_type,
        ]
        if entity_id is not None:
            lookup.append(DailyMetric.entity_id == entity_id)
        else:
            lookup.append(DailyMetric.entity_id.is_(None))
        result = await self.db.execute(select(DailyMetric).where(and_(*lookup)))
        existing = result.scalar_one_or_none()
        if existing:
            existing.entity_name = entity_name or existing.entity_name
            existing.metrics = metrics
            row = existing
        else:
            row = DailyMetric(
                account_id=account_id,
                date=day,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_name=entity_name,
                metrics=metrics,
            )
            self.db.add(row)
        await self.db.flush()
        return row

    async def get_historical(
        self,
        account_id: uuid.UUID,
        entity_type: str,
        start_date: date,
        end_date: date,
    ) -> list[dict]:
        """Daily rows in [start_date, end_date], oldest first."""
        result = await self.db.execute(
            select(DailyMetric)
            .where(
                DailyMetric.account_id == account_id,
                DailyMetric.entity_type == entity_type,
                DailyMetric.date >= start_date,
                DailyMetric.date <= end_date,
            )
            .order_by(DailyMetric.date.asc())
        )
        return [
            {
                "date": r.date.isoformat(),
                "entity_id": r.entity_id,
                "entity_name": r.entity_name,
                "metrics": r.metrics,
            }
            for r in result.scalars().all()
        ]


async def cached_fetch(
    store: MetricsCacheStore,
    account_id: uuid.UUID,
    entity_type: str,
    query_params: dict,
    date_range: str,
    metrics: list[str],
    fetch: Callable[[], Awaitable[dict]],
    ttl_hours: float = DEFAULT_TTL_HOURS,
) -> dict:
    """
    Serve `fetch()`'s payload from cache when a live entry exists,
    otherwise call it and store the result.
    """
    cache_key = generate_cache_key(entity_type, date_range, metrics)
    hit = await store.get_cached(account_id, cache_key)
    if hit is not None:
        logger.info(f"Cache hit for {cache_key} (account {account_id})")
        return {**hit.data, "cached": True, "fetched_at": hit.created_at.isoformat()}

    payload = await fetch()
    await store.set_cached(
        account_id,
        cache_key,
        payload,
        generate_query_hash({"entity_type": entity_type, **query_params}),
        ttl_hours=ttl_hours,
    )
    return payload
