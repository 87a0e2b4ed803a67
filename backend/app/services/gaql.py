"""
GAQL query construction for the Google Ads API.

Field-path quoting, date-range presets, status filters and limits for
keyword, campaign and ad-group metric queries.
"""

import enum
import re
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.exceptions import ValidationError


class DateRange(str, enum.Enum):
    LAST_7_DAYS = "LAST_7_DAYS"
    LAST_14_DAYS = "LAST_14_DAYS"
    LAST_30_DAYS = "LAST_30_DAYS"
    LAST_90_DAYS = "LAST_90_DAYS"
    CUSTOM = "CUSTOM"


DEFAULT_LIMIT = 50

DEFAULT_KEYWORD_METRICS = [
    "impressions",
    "clicks",
    "cost_micros",
    "ctr",
    "conversions",
    "conversions_value",
    "value_per_conversion",
    "historical_quality_score",
]
DEFAULT_CAMPAIGN_METRICS = ["impressions", "clicks", "cost_micros", "ctr", "conversions"]
DEFAULT_AD_GROUP_METRICS = ["impressions", "clicks", "cost_micros"]

_STATUS_RE = re.compile(r"^[A-Z_]+$")


class MetricsFilters(BaseModel):
    """Filters accepted by every metrics fetch. Field names follow the frontend (camelCase)."""
    model_config = ConfigDict(populate_by_name=True)

    metrics: Optional[list[Optional[str]]] = None
    date_range: DateRange = Field(DateRange.LAST_30_DAYS, alias="dateRange")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    keyword_status: Optional[list[str]] = Field(None, alias="keywordStatus")
    campaign_status: Optional[list[str]] = Field(None, alias="campaignStatus")
    ad_group_status: Optional[list[str]] = Field(None, alias="adGroupStatus")
    limit: Optional[int] = None


def normalize_metric_fields(metrics: Optional[list], defaults: list[str]) -> list[str]:
    """
    Accept bare names ("clicks") or field paths ("metrics.clicks").
    Bare names get the metrics. prefix; empty entries are dropped.
    """
    incoming = list(metrics) if metrics else list(defaults)
    fields = []
    for name in incoming:
        if not name:
            continue
        t = str(name).strip()
        if not t:
            continue
        field = t if "." in t else f"metrics.{t}"
        if field not in fields:
            fields.append(field)
    if not fields:
        raise ValidationError("At least one metric is required")
    return fields


def _gaql_date(value) -> str:
    if isinstance(value, date):
        return value.strftime("%Y%m%d")
    return str(value).replace("-", "")


def date_condition(
    date_range: DateRange = DateRange.LAST_30_DAYS,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> str:
    """Map a preset (or an explicit window) to a segments.date predicate."""
    date_range = DateRange(date_range or DateRange.LAST_30_DAYS)
    if date_range is DateRange.CUSTOM:
        if not start_date or not end_date:
            raise ValidationError("startDate and endDate are required for a CUSTOM date range")
        return f"segments.date BETWEEN '{_gaql_date(start_date)}' AND '{_gaql_date(end_date)}'"
    return f"segments.date DURING {date_range.value}"


def status_condition(field: str, statuses: Optional[list[str]]) -> str:
    values = statuses or ["ENABLED"]
    for s in values:
        if not _STATUS_RE.match(s or ""):
            raise ValidationError(f"Invalid status filter: {s!r}")
    quoted = ",".join(f"'{s}'" for s in values)
    return f"{field} IN ({quoted})"


def _limit(limit: Optional[int]) -> int:
    value = limit or DEFAULT_LIMIT
    if value < 1:
        raise ValidationError("limit must be a positive integer")
    return value


def build_keyword_query(filters: MetricsFilters) -> str:
    metrics = ", ".join(normalize_metric_fields(filters.metrics, DEFAULT_KEYWORD_METRICS))
    return f"""
      SELECT
        ad_group_criterion.criterion_id,
        ad_group_criterion.keyword.text,
        ad_group_criterion.keyword.match_type,
        ad_group_criterion.status,
        ad_group.id,
        ad_group.name,
        campaign.id,
        campaign.name,
        {metrics}
      FROM keyword_view
      WHERE {date_condition(filters.date_range, filters.start_date, filters.end_date)}
        AND {status_condition("ad_group_criterion.status", filters.keyword_status)}
        AND campaign.status = 'ENABLED'
        AND ad_group.status = 'ENABLED'
      ORDER BY metrics.impressions DESC
      LIMIT {_limit(filters.limit)}"""


def build_campaign_query(filters: MetricsFilters) -> str:
    metrics = ", ".join(normalize_metric_fields(filters.metrics, DEFAULT_CAMPAIGN_METRICS))
    return f"""
      SELECT
        campaign.id,
        campaign.name,
        campaign.status,
        {metrics}
      FROM campaign
      WHERE {date_condition(filters.date_range, filters.start_date, filters.end_date)}
        AND {status_condition("campaign.status", filters.campaign_status)}
      ORDER BY metrics.impressions DESC
      LIMIT {_limit(filters.limit)}"""


def build_ad_group_query(filters: MetricsFilters) -> str:
    fields = normalize_metric_fields(filters.metrics, DEFAULT_AD_GROUP_METRICS)
    # Spend is always reported for ad groups
    if "metrics.cost_micros" not in fields:
        fields.append("metrics.cost_micros")
    return f"""
      SELECT
        ad_group.id,
        ad_group.name,
        ad_group.status,
        campaign.name,
        segments.device,
        {", ".join(fields)}
      FROM ad_group
      WHERE {date_condition(filters.date_range, filters.start_date, filters.end_date)}
        AND {status_condition("ad_group.status", filters.ad_group_status)}
      ORDER BY metrics.impressions DESC
      LIMIT {_limit(filters.limit)}"""


def build_daily_campaign_query(day: date) -> str:
    """Every non-removed campaign's metrics for a single day."""
    return f"""
      SELECT
        campaign.id,
        campaign.name,
        campaign.status,
        metrics.impressions,
        metrics.clicks,
        metrics.cost_micros,
        metrics.conversions,
        metrics.conversions_value,
        metrics.value_per_conversion,
        metrics.ctr,
        metrics.average_cpc,
        metrics.average_cpm,
        metrics.cost_per_conversion,
        metrics.search_impression_share,
        metrics.absolute_top_impression_share,
        metrics.top_impression_share
      FROM campaign
      WHERE segments.date = '{day.isoformat()}'
        AND campaign.status != 'REMOVED'"""


CUSTOMER_DETAILS_QUERY = """SELECT
  customer.id,
  customer.descriptive_name,
  customer.currency_code,
  customer.time_zone,
  customer.manager,
  customer.test_account
FROM customer
LIMIT 1"""
