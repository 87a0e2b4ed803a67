"""
Tests for the metrics cache store and the daily history table.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from app.models import DailyMetric, MetricsCache
from app.services.metrics_cache import (
    MetricsCacheStore,
    cached_fetch,
    generate_cache_key,
    generate_query_hash,
)
from app.utils import utcnow
from conftest import create_account


def test_cache_key_ignores_metric_order():
    assert generate_cache_key("keyword", "LAST_7_DAYS", ["clicks", "impressions"]) == \
        generate_cache_key("keyword", "LAST_7_DAYS", ["impressions", "clicks"])


def test_cache_key_format():
    assert generate_cache_key("campaign", "LAST_30_DAYS", ["ctr", "clicks"]) == "campaign_LAST_30_DAYS_clicks,ctr"


def test_query_hash_is_stable_across_key_order():
    assert generate_query_hash({"a": 1, "b": [1, 2]}) == generate_query_hash({"b": [1, 2], "a": 1})
    assert len(generate_query_hash({"a": 1})) == 64


@pytest.mark.anyio
async def test_set_then_get(db):
    account = await create_account(db)
    store = MetricsCacheStore(db)
    await store.set_cached(account.id, "k", {"campaigns": [1]}, "h")
    hit = await store.get_cached(account.id, "k")
    assert hit is not None
    assert hit.data == {"campaigns": [1]}


@pytest.mark.anyio
async def test_set_twice_leaves_one_row(db):
    account = await create_account(db)
    store = MetricsCacheStore(db)
    await store.set_cached(account.id, "k", {"v": 1}, "h1")
    await store.set_cached(account.id, "k", {"v": 2}, "h2")
    count = (await db.execute(select(func.count()).select_from(MetricsCache))).scalar()
    assert count == 1
    assert (await store.get_cached(account.id, "k")).data == {"v": 2}


@pytest.mark.anyio
async def test_expired_entry_is_never_returned(db):
    account = await create_account(db)
    store = MetricsCacheStore(db)
    await store.set_cached(account.id, "k", {"v": 1}, "h", ttl_hours=1)
    assert await store.get_cached(account.id, "k", now=utcnow() + timedelta(hours=2)) is None
    # Expired rows stay until cleanup
    count = (await db.execute(select(func.count()).select_from(MetricsCache))).scalar()
    assert count == 1


@pytest.mark.anyio
async def test_cleanup_expired_removes_only_stale_rows(db):
    account = await create_account(db)
    store = MetricsCacheStore(db)
    await store.set_cached(account.id, "fresh", {"v": 1}, "h", ttl_hours=5)
    await store.set_cached(account.id, "stale", {"v": 2}, "h", ttl_hours=1)
    deleted = await store.cleanup_expired(now=utcnow() + timedelta(hours=2))
    assert deleted == 1
    assert await store.get_cached(account.id, "fresh") is not None


@pytest.mark.anyio
async def test_cached_fetch_hits_after_first_call(db):
    account = await create_account(db)
    store = MetricsCacheStore(db)
    calls = []

    async def fetch():
        calls.append(1)
        return {"campaigns": [{"id": "1"}], "cached": False, "fetched_at": "2025-01-01T00:00:00+00:00"}

    first = await cached_fetch(store, account.id, "campaign", {"dateRange": "LAST_7_DAYS"}, "LAST_7_DAYS", ["clicks"], fetch)
    second = await cached_fetch(store, account.id, "campaign", {"dateRange": "LAST_7_DAYS"}, "LAST_7_DAYS", ["clicks"], fetch)
    assert len(calls) == 1
    assert first["cached"] is False
    assert second["cached"] is True
    assert second["campaigns"] == [{"id": "1"}]


@pytest.mark.anyio
async def test_daily_metrics_upsert_and_history(db):
    account = await create_account(db)
    store = MetricsCacheStore(db)
    day = date(2025, 3, 1)
    await store.store_daily_metrics(account.id, "campaign", day, "9", "Spring", {"clicks": 1})
    await store.store_daily_metrics(account.id, "campaign", day, "9", "Spring", {"clicks": 4})
    await store.store_daily_metrics(account.id, "campaign", day + timedelta(days=1), "9", "Spring", {"clicks": 2})
    await store.store_daily_metrics(account.id, "campaign", day + timedelta(days=9), "9", "Spring", {"clicks": 8})

    count = (await db.execute(select(func.count()).select_from(DailyMetric))).scalar()
    assert count == 3

    rows = await store.get_historical(account.id, "campaign", day, day + timedelta(days=1))
    assert [r["date"] for r in rows] == ["2025-03-01", "2025-03-02"]
    assert rows[0]["metrics"] == {"clicks": 4}


@pytest.mark.anyio
async def test_daily_metrics_upsert_with_null_entity(db):
    account = await create_account(db)
    store = MetricsCacheStore(db)
    day = date(2025, 3, 1)
    await store.store_daily_metrics(account.id, "account", day, None, None, {"clicks": 1})
    await store.store_daily_metrics(account.id, "account", day, None, None, {"clicks": 2})
    rows = await store.get_historical(account.id, "account", day, day)
    assert len(rows) == 1
    assert rows[0]["metrics"] == {"clicks": 2}
