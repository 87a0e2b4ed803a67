"""
Cron / Scheduled Jobs: Endpoints for an external scheduler.

Each call must carry the shared secret:
  X-Cron-Secret: <CRON_SECRET>
  OR Authorization: Bearer <CRON_SECRET>

  POST /api/cron/insights            every minute; sends due insights emails
  POST /api/cron/sync-daily-metrics  daily; stores yesterday's campaign metrics
  POST /api/cron/cleanup-cache       hourly; removes expired cache rows
"""

import asyncio
import logging
import secrets
from datetime import date
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.database import get_db
from app.deps import get_http_client, get_metrics_service, get_session_factory
from app.exceptions import AuthenticationError, ConfigurationError, UpstreamTimeoutError
from app.services.daily_sync_service import DailySyncService
from app.services.insights_service import InsightsService
from app.services.metrics_cache import MetricsCacheStore
from app.services.metrics_service import MetricsService
from app.utils import parse_uuid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def _require_cron_secret(
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Verify the request came from the scheduler."""
    if not settings.cron_secret:
        raise ConfigurationError("CRON_SECRET not configured")
    token = x_cron_secret
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
    if not token or not secrets.compare_digest(token, settings.cron_secret):
        raise AuthenticationError("Invalid cron secret")


class DailySyncRequest(BaseModel):
    account_id: Optional[str] = Field(None, alias="accountId")
    sync_date: Optional[date] = Field(None, alias="date")


@router.post("/insights")
async def cron_insights(
    _: None = Depends(_require_cron_secret),
    metrics: MetricsService = Depends(get_metrics_service),
    settings: Settings = Depends(get_settings),
):
    """Send every due insights email. One deadline covers the whole batch."""
    service = InsightsService(metrics.db, metrics)
    try:
        result = await asyncio.wait_for(service.run(), timeout=settings.insights_batch_timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(f"Insights batch exceeded {settings.insights_batch_timeout_seconds}s")
        raise UpstreamTimeoutError("the insights batch")
    logger.info(f"Cron insights completed: {result}")
    return result


@router.post("/sync-daily-metrics")
async def cron_sync_daily_metrics(
    body: Optional[DailySyncRequest] = None,
    _: None = Depends(_require_cron_secret),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    http: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
):
    """Snapshot one day of campaign metrics for one or all active accounts."""
    account_id = parse_uuid(body.account_id, "accountId") if body and body.account_id else None
    service = DailySyncService(session_factory, http, settings)
    result = await service.sync(account_id, body.sync_date if body else None)
    logger.info(f"Cron daily sync for {result['synced_date']}: {result['synced']} synced, {result['failed']} failed")
    return result


@router.post("/cleanup-cache")
async def cron_cleanup_cache(
    _: None = Depends(_require_cron_secret),
    db: AsyncSession = Depends(get_db),
):
    deleted = await MetricsCacheStore(db).cleanup_expired()
    return {"deleted": deleted}
