"""
Insights Router: Manage insights email subscriptions and send test emails.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator

from app.auth import get_current_user_id
from app.deps import get_metrics_service
from app.exceptions import ValidationError
from app.models import EmailFrequency, InsightsSubscription
from app.services.insights_service import InsightsService
from app.services.metrics_service import MetricsService
from app.utils import parse_uuid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/insights", tags=["Insights"])


class SubscriptionUpdate(BaseModel):
    account_id: Optional[str] = Field(None, alias="accountId")
    title: Optional[str] = None
    frequency: Optional[EmailFrequency] = None
    send_time: Optional[str] = Field(None, alias="sendTime", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    time_zone: Optional[str] = Field(None, alias="timeZone")
    selected_metrics: Optional[list[str]] = Field(None, alias="selectedMetrics")
    is_paused: Optional[bool] = Field(None, alias="isPaused")


class TestEmailRequest(BaseModel):
    account_id: Optional[str] = Field(None, alias="accountId")
    metrics: list[str] = Field(default_factory=list)
    frequency: EmailFrequency = EmailFrequency.WEEKLY
    title: Optional[str] = None

    @field_validator("metrics")
    @classmethod
    def _drop_blank(cls, v: list[str]) -> list[str]:
        return [m for m in v if m]


def _subscription_dict(sub: InsightsSubscription) -> dict:
    return {
        "id": str(sub.id),
        "accountId": str(sub.google_ads_account_id),
        "title": sub.title,
        "frequency": sub.frequency,
        "sendTime": sub.send_time,
        "timeZone": sub.time_zone,
        "selectedMetrics": sub.selected_metrics,
        "isPaused": sub.is_paused,
        "lastSentAt": sub.last_sent_at.isoformat() if sub.last_sent_at else None,
    }


@router.get("/subscription")
async def get_subscription(
    account_id: str = Query(..., alias="accountId"),
    user_id: str = Depends(get_current_user_id),
    metrics: MetricsService = Depends(get_metrics_service),
):
    service = InsightsService(metrics.db, metrics)
    sub = await service.get_subscription(user_id, parse_uuid(account_id, "accountId"))
    return {"subscription": _subscription_dict(sub) if sub else None}


@router.put("/subscription")
async def put_subscription(
    body: SubscriptionUpdate,
    user_id: str = Depends(get_current_user_id),
    metrics: MetricsService = Depends(get_metrics_service),
):
    if not body.account_id:
        raise ValidationError("accountId is required")
    values = body.model_dump(exclude={"account_id"}, exclude_none=True, mode="json")
    service = InsightsService(metrics.db, metrics)
    sub = await service.upsert_subscription(user_id, parse_uuid(body.account_id, "accountId"), values)
    logger.info(f"Insights subscription {sub.id} saved for user {user_id}")
    return {"subscription": _subscription_dict(sub)}


@router.post("/test")
async def send_test_email(
    body: TestEmailRequest,
    user_id: str = Depends(get_current_user_id),
    metrics: MetricsService = Depends(get_metrics_service),
):
    """Send a one-off insights email to the caller."""
    if not body.account_id or not body.metrics:
        raise ValidationError("accountId and metrics are required")
    service = InsightsService(metrics.db, metrics)
    return await service.send_test(
        user_id,
        parse_uuid(body.account_id, "accountId"),
        body.metrics,
        frequency=body.frequency.value,
        title=body.title,
    )
