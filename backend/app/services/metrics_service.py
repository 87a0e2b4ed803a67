"""
Metrics Service: Query the Google Ads API for a linked account and
normalize the rows into the dashboard's metrics shape.

Flow per fetch: ownership + reconnection checks, decrypt the stored refresh
token, refresh an access token, run the GAQL query, and on a 401 refresh once
more and retry the query once. Monetary metrics arrive in micros.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.crypto import decrypt_token
from app.exceptions import AuthorizationError, ReconnectionRequiredError, UpstreamApiError
from app.models import GoogleAdsAccount
from app.services.gaql import (
    DateRange,
    MetricsFilters,
    build_ad_group_query,
    build_campaign_query,
    build_keyword_query,
)
from app.services.google_ads_client import GoogleAdsClient
from app.services.token_service import record_account_error, refresh_for_account
from app.utils import to_number, utcnow

logger = logging.getLogger(__name__)

MICROS = 1_000_000

# Campaign rows pulled when aggregating a whole account
AGGREGATION_LIMIT = 10_000
AGGREGATION_METRICS = ["impressions", "clicks", "conversions", "cost_micros"]


# ── Normalization ─────────────────────────────────────────────────────

def normalize_metrics(raw: Optional[dict]) -> dict:
    """
    Convert micros to currency units and add derived ratios.
    Every ratio is 0 when its inputs are not positive, never NaN or inf.
    """
    m = {k: to_number(v) for k, v in (raw or {}).items()}
    cost_micros = m.get("cost_micros", 0)
    impressions = m.get("impressions", 0)
    clicks = m.get("clicks", 0)
    conversions = m.get("conversions", 0)
    conversion_value = m.get("conversion_value", m.get("conversions_value", 0))
    value_per_conversion = m.get("value_per_conversion", 0)

    out = dict(m)
    out["cost"] = cost_micros / MICROS
    out["average_cpc"] = m.get("average_cpc", 0) / MICROS
    out["cost_per_conversion"] = m.get("cost_per_conversion", 0) / MICROS
    out["conversion_value_dollars"] = conversion_value / MICROS
    out["value_per_conversion_dollars"] = value_per_conversion / MICROS
    out["conversion_rate"] = conversions / clicks if clicks > 0 and conversions > 0 else 0
    out["roas"] = (
        conversion_value / cost_micros
        if conversion_value > 0 and cost_micros > 0 else 0
    )
    out["romi"] = (
        (conversion_value - cost_micros) / cost_micros * 100
        if conversion_value > 0 and cost_micros > 0 else 0
    )
    out["cpm"] = (
        (cost_micros / impressions) * 1000 / 1e6
        if impressions > 0 and cost_micros > 0 else 0
    )
    out["quality_score"] = m.get("quality_score") or m.get("historical_quality_score") or 0
    return out


def keyword_row(row: dict) -> dict:
    criterion = row.get("ad_group_criterion") or {}
    keyword = criterion.get("keyword") or {}
    ad_group = row.get("ad_group") or {}
    campaign = row.get("campaign") or {}
    return {
        "criterion_id": criterion.get("criterion_id"),
        "keyword": {
            "text": keyword.get("text"),
            "match_type": keyword.get("match_type"),
        },
        "status": criterion.get("status"),
        "ad_group": {"id": ad_group.get("id"), "name": ad_group.get("name")},
        "campaign": {"id": campaign.get("id"), "name": campaign.get("name")},
        "metrics": normalize_metrics(row.get("metrics")),
    }


def campaign_row(row: dict) -> dict:
    return {**(row.get("campaign") or {}), "metrics": normalize_metrics(row.get("metrics"))}


def ad_group_row(row: dict) -> dict:
    ad_group = row.get("ad_group") or {}
    return {
        "id": ad_group.get("id"),
        "name": ad_group.get("name"),
        "status": ad_group.get("status"),
        "campaign_name": (row.get("campaign") or {}).get("name"),
        "device": (row.get("segments") or {}).get("device"),
        "metrics": normalize_metrics(row.get("metrics")),
    }


def aggregate_campaigns(campaigns: list[dict]) -> dict:
    """Sum campaign rows into account totals. Spend is already in currency units."""
    impressions = clicks = conversions = 0
    spend = 0.0
    for c in campaigns:
        m = c.get("metrics") or {}
        impressions += to_number(m.get("impressions"))
        clicks += to_number(m.get("clicks"))
        conversions += to_number(m.get("conversions"))
        spend += to_number(m.get("cost"))
    return {
        "impressions": impressions,
        "clicks": clicks,
        "conversions": conversions,
        "spend": spend,
        "ctr": clicks / impressions if impressions > 0 else 0,
        "cpm": (spend / impressions) * 1000 if impressions > 0 else 0,
        "conversion_rate": conversions / clicks if clicks > 0 else 0,
    }


def _envelope(key: str, rows: list[dict]) -> dict:
    return {
        key: rows,
        "cached": False,
        "fetched_at": datetime.now(timezone.utc).isoformat(),
    }


# ── Service ───────────────────────────────────────────────────────────

class MetricsService:
    """Runs metric queries for linked accounts. One instance per request."""

    def __init__(self, db: AsyncSession, http: httpx.AsyncClient, settings: Settings):
        self.db = db
        self.http = http
        self.settings = settings

    async def get_account(self, account_id: uuid.UUID, user_id: Optional[str] = None) -> GoogleAdsAccount:
        """
        Load an account, scoped to user_id when given, and refuse stale grants.
        """
        query = select(GoogleAdsAccount).where(GoogleAdsAccount.id == account_id)
        if user_id is not None:
            query = query.where(GoogleAdsAccount.user_id == user_id)
        result = await self.db.execute(query)
        account = result.scalar_one_or_none()
        if not account:
            raise AuthorizationError("Google Ads account not found or access denied.")
        if account.needs_reconnection:
            raise ReconnectionRequiredError()
        return account

    async def _client(self, account: GoogleAdsAccount, refresh_token: str) -> GoogleAdsClient:
        grant = await refresh_for_account(self.db, self.http, self.settings, account, refresh_token)
        return GoogleAdsClient(self.http, self.settings, grant.access_token, login_customer_id=account.api_customer_id)

    async def run_query(self, account: GoogleAdsAccount, query: str) -> list[dict]:
        """
        Execute a GAQL query for the account.
        A 401 triggers exactly one re-authentication and one retry; any other
        failure status propagates immediately.
        """
        if account.needs_reconnection:
            raise ReconnectionRequiredError()
        refresh_token = decrypt_token(account.refresh_token)
        customer_id = account.api_customer_id

        client = await self._client(account, refresh_token)
        try:
            rows = await client.search_stream(customer_id, query)
        except UpstreamApiError as e:
            if e.status != 401:
                await self._record_failure(account, e)
                raise
            logger.info(f"Access token rejected for account {account.id}, refreshing and retrying once")
            client = await self._client(account, refresh_token)
            try:
                rows = await client.search_stream(customer_id, query)
            except UpstreamApiError as retry_error:
                await self._record_failure(account, retry_error)
                raise

        account.last_successful_fetch = utcnow()
        await self.db.flush()
        return rows

    async def _record_failure(self, account: GoogleAdsAccount, error: UpstreamApiError) -> None:
        logger.error(f"Ads API query failed for account {account.id}: {error.status}")
        record_account_error(account, error.message)
        await self.db.commit()

    async def fetch_keyword_metrics(self, account_id: uuid.UUID, user_id: str, filters: MetricsFilters) -> dict:
        account = await self.get_account(account_id, user_id)
        rows = await self.run_query(account, build_keyword_query(filters))
        keywords = [keyword_row(r) for r in rows]
        logger.info(f"Processed {len(keywords)} keywords for account {account_id}")
        return _envelope("keywords", keywords)

    async def fetch_campaign_metrics(self, account_id: uuid.UUID, user_id: Optional[str], filters: MetricsFilters) -> dict:
        account = await self.get_account(account_id, user_id)
        rows = await self.run_query(account, build_campaign_query(filters))
        campaigns = [campaign_row(r) for r in rows]
        logger.info(f"Processed {len(campaigns)} campaigns for account {account_id}")
        return _envelope("campaigns", campaigns)

    async def fetch_ad_group_metrics(self, account_id: uuid.UUID, user_id: str, filters: MetricsFilters) -> dict:
        account = await self.get_account(account_id, user_id)
        rows = await self.run_query(account, build_ad_group_query(filters))
        ad_groups = [ad_group_row(r) for r in rows]
        logger.info(f"Processed {len(ad_groups)} ad groups for account {account_id}")
        return _envelope("adGroups", ad_groups)

    async def aggregate_account_metrics(
        self,
        account_id: uuid.UUID,
        user_id: Optional[str],
        start_date: date,
        end_date: date,
        metrics: Optional[list[str]] = None,
    ) -> dict:
        """Account totals over an inclusive window, built from campaign rows."""
        fields = list(AGGREGATION_METRICS)
        for name in metrics or []:
            if name and name not in fields:
                fields.append(name)
        filters = MetricsFilters(
            metrics=fields,
            date_range=DateRange.CUSTOM,
            start_date=start_date,
            end_date=end_date,
            limit=AGGREGATION_LIMIT,
        )
        result = await self.fetch_campaign_metrics(account_id, user_id, filters)
        totals = aggregate_campaigns(result["campaigns"])
        totals["startDate"] = start_date.isoformat()
        totals["endDate"] = end_date.isoformat()
        return totals
