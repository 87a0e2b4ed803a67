"""
Google Ads Router: Account linking and metrics endpoints.
"""

import logging
from datetime import date
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_user_id
from app.config import Settings, get_settings
from app.database import get_db
from app.deps import get_http_client, get_metrics_service
from app.exceptions import ValidationError
from app.models import GoogleAdsAccount
from app.services.gaql import (
    DEFAULT_AD_GROUP_METRICS,
    DEFAULT_CAMPAIGN_METRICS,
    DateRange,
    MetricsFilters,
    normalize_metric_fields,
)
from app.services.google_oauth_service import GoogleOAuthService, build_authorization_url
from app.services.metrics_cache import MetricsCacheStore, cached_fetch
from app.services.metrics_service import MetricsService
from app.utils import parse_uuid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google-ads", tags=["Google Ads"])


# ── Request Models ────────────────────────────────────────────────────

class ConnectRequest(BaseModel):
    return_url: Optional[str] = Field(None, alias="returnUrl")


class MetricsRequest(BaseModel):
    account_id: Optional[str] = Field(None, alias="accountId")
    filters: MetricsFilters = Field(default_factory=MetricsFilters)


class AccountMetricsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: Optional[str] = Field(None, alias="accountId")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    metrics: Optional[list[str]] = None


def _account_id(raw: Optional[str]):
    if not raw:
        raise ValidationError("accountId is required")
    return parse_uuid(raw, "accountId")


def _cache_range_label(filters: MetricsFilters) -> str:
    if filters.date_range is DateRange.CUSTOM:
        return f"CUSTOM:{filters.start_date}:{filters.end_date}"
    return filters.date_range.value


def _account_dict(a: GoogleAdsAccount) -> dict:
    return {
        "id": str(a.id),
        "customer_id": a.customer_id,
        "account_name": a.account_name,
        "currency_code": a.currency_code,
        "time_zone": a.time_zone,
        "is_manager": a.is_manager,
        "account_type": a.account_type,
        "is_active": a.is_active,
        "connection_status": a.connection_status,
        "needs_reconnection": a.needs_reconnection,
        "last_error_message": a.last_error_message,
        "last_successful_fetch": a.last_successful_fetch.isoformat() if a.last_successful_fetch else None,
    }


# ── OAuth ─────────────────────────────────────────────────────────────

@router.post("/connect")
async def connect(
    body: Optional[ConnectRequest] = None,
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
):
    """Start the OAuth flow. The browser should be sent to authUrl."""
    return_url = body.return_url if body else None
    auth_url = build_authorization_url(settings, user_id, return_url)
    logger.info(f"OAuth flow initiated for user {user_id}")
    return {
        "authUrl": auth_url,
        "redirectUri": settings.oauth_redirect_uri,
        "message": "Redirect user to authUrl to complete OAuth flow",
    }


@router.get("/callback")
async def callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
):
    """Provider redirect target. Always answers with a redirect."""
    service = GoogleOAuthService(db, http, settings)
    target = await service.handle_callback(code, state, error)
    return RedirectResponse(target, status_code=302)


# ── Accounts ──────────────────────────────────────────────────────────

@router.get("/accounts")
async def list_accounts(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(GoogleAdsAccount)
        .where(GoogleAdsAccount.user_id == user_id)
        .order_by(GoogleAdsAccount.created_at.asc())
    )
    return {"accounts": [_account_dict(a) for a in result.scalars().all()]}


# ── Metrics ───────────────────────────────────────────────────────────

@router.post("/keywords")
async def keyword_metrics(
    body: MetricsRequest,
    user_id: str = Depends(get_current_user_id),
    service: MetricsService = Depends(get_metrics_service),
):
    return await service.fetch_keyword_metrics(_account_id(body.account_id), user_id, body.filters)


@router.post("/campaigns")
async def campaign_metrics(
    body: MetricsRequest,
    user_id: str = Depends(get_current_user_id),
    service: MetricsService = Depends(get_metrics_service),
    settings: Settings = Depends(get_settings),
):
    account_id = _account_id(body.account_id)
    # Ownership is checked before the cache is consulted
    await service.get_account(account_id, user_id)
    filters = body.filters
    return await cached_fetch(
        MetricsCacheStore(service.db),
        account_id,
        "campaign",
        filters.model_dump(mode="json"),
        _cache_range_label(filters),
        normalize_metric_fields(filters.metrics, DEFAULT_CAMPAIGN_METRICS),
        lambda: service.fetch_campaign_metrics(account_id, user_id, filters),
        ttl_hours=settings.cache_ttl_hours,
    )


@router.post("/adgroups")
async def ad_group_metrics(
    body: MetricsRequest,
    user_id: str = Depends(get_current_user_id),
    service: MetricsService = Depends(get_metrics_service),
    settings: Settings = Depends(get_settings),
):
    account_id = _account_id(body.account_id)
    await service.get_account(account_id, user_id)
    filters = body.filters
    return await cached_fetch(
        MetricsCacheStore(service.db),
        account_id,
        "adgroup",
        filters.model_dump(mode="json"),
        _cache_range_label(filters),
        normalize_metric_fields(filters.metrics, DEFAULT_AD_GROUP_METRICS),
        lambda: service.fetch_ad_group_metrics(account_id, user_id, filters),
        ttl_hours=settings.cache_ttl_hours,
    )


@router.post("/account-metrics")
async def account_metrics(
    body: AccountMetricsRequest,
    user_id: str = Depends(get_current_user_id),
    service: MetricsService = Depends(get_metrics_service),
):
    """Account totals for an inclusive date window."""
    account_id = _account_id(body.account_id)
    if not body.start_date or not body.end_date:
        raise ValidationError("startDate and endDate are required")
    if body.start_date > body.end_date:
        raise ValidationError("startDate must not be after endDate")
    totals = await service.aggregate_account_metrics(
        account_id, user_id, body.start_date, body.end_date, body.metrics,
    )
    return {"metrics": totals}


@router.get("/historical")
async def historical_metrics(
    account_id: str = Query(..., alias="accountId"),
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    entity_type: str = Query("campaign", alias="entityType"),
    user_id: str = Depends(get_current_user_id),
    service: MetricsService = Depends(get_metrics_service),
):
    """Stored daily rows, oldest first."""
    account = await service.get_account(parse_uuid(account_id, "accountId"), user_id)
    rows = await MetricsCacheStore(service.db).get_historical(account.id, entity_type, start_date, end_date)
    return {"data": rows, "count": len(rows)}
