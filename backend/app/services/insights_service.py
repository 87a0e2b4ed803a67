"""
Insights Service: Recurring Google Ads summary emails.

A subscription is due when the subscriber's local clock is within
SEND_WINDOW_MINUTES of its send_time and enough time has passed since the
last send for its frequency. Each due subscription is handled on its own:
a failure writes a FAILED log row and the batch moves on.
"""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AdsInsightsError, ValidationError
from app.models import (
    DEFAULT_INSIGHT_METRICS,
    EmailFrequency,
    EmailStatus,
    GoogleAdsAccount,
    InsightsEmailLog,
    InsightsSubscription,
    Profile,
)
from app.services.email_service import (
    SCHEDULED_FOOTER,
    TEST_FOOTER,
    insights_subject,
    render_insights_html,
    send_insights_email,
)
from app.services.metrics_service import MetricsService
from app.utils import as_naive_utc

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Google Ads Insights"

SEND_WINDOW_MINUTES = 2

# Minimum gap since last_sent_at before the next send
MIN_INTERVAL = {
    EmailFrequency.DAILY.value: timedelta(hours=20),
    EmailFrequency.WEEKLY.value: timedelta(days=6.5),
    EmailFrequency.MONTHLY.value: timedelta(days=27),
}

# Report window length in days, ending yesterday
PERIOD_DAYS = {
    EmailFrequency.DAILY.value: 1,
    EmailFrequency.WEEKLY.value: 7,
    EmailFrequency.MONTHLY.value: 30,
}


# ── Scheduling rules ──────────────────────────────────────────────────

def local_hhmm(tz_name: Optional[str], now: datetime) -> str:
    """HH:MM wall-clock time in tz_name; unknown zones are treated as UTC."""
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown time zone {tz_name!r}, using UTC")
        tz = timezone.utc
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz).strftime("%H:%M")


def minutes_diff(a: str, b: str) -> int:
    ah, am = (int(p) for p in a.split(":")[:2])
    bh, bm = (int(p) for p in b.split(":")[:2])
    return abs((ah * 60 + am) - (bh * 60 + bm))


def is_due(sub: InsightsSubscription, now: datetime) -> bool:
    if sub.is_paused:
        return False
    if minutes_diff(sub.send_time or "09:00", local_hhmm(sub.time_zone, now)) > SEND_WINDOW_MINUTES:
        return False
    if sub.last_sent_at is None:
        return True
    elapsed = as_naive_utc(now) - as_naive_utc(sub.last_sent_at)
    interval = MIN_INTERVAL.get(sub.frequency, MIN_INTERVAL[EmailFrequency.MONTHLY.value])
    return elapsed >= interval


def compute_date_range(frequency: str, today: date) -> tuple[date, date]:
    """Inclusive (start, end) window ending yesterday."""
    end = today - timedelta(days=1)
    days = PERIOD_DAYS.get(frequency, PERIOD_DAYS[EmailFrequency.MONTHLY.value])
    return end - timedelta(days=days - 1), end


# ── Delivery ──────────────────────────────────────────────────────────

EmailSender = Callable[[str, str, str], str]


class InsightsService:
    """
    Runs the scheduled batch and one-off test sends.
    `send_email(to, subject, html)` is injectable for tests.
    """

    def __init__(
        self,
        db: AsyncSession,
        metrics: MetricsService,
        send_email: Optional[EmailSender] = None,
    ):
        self.db = db
        self.metrics = metrics
        self.send_email = send_email or send_insights_email

    async def _profile_email(self, user_id: str) -> Optional[str]:
        result = await self.db.execute(select(Profile).where(Profile.id == user_id))
        profile = result.scalar_one_or_none()
        return profile.email if profile and profile.email else None

    async def _account_name(self, account_id: uuid.UUID) -> Optional[str]:
        result = await self.db.execute(
            select(GoogleAdsAccount.account_name).where(GoogleAdsAccount.id == account_id)
        )
        return result.scalar_one_or_none()

    def _log(self, sub: InsightsSubscription, status: EmailStatus, error: Optional[str] = None, snapshot: Optional[dict] = None) -> None:
        self.db.add(InsightsEmailLog(
            subscription_id=sub.id,
            user_id=sub.user_id,
            google_ads_account_id=sub.google_ads_account_id,
            status=status.value,
            error_message=error,
            metrics_snapshot=snapshot or {},
        ))

    async def run(self, now: Optional[datetime] = None) -> dict:
        """Process every due subscription. Returns {processed, sent, failed}."""
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(InsightsSubscription).where(InsightsSubscription.is_paused.is_(False))
        )
        subscriptions = result.scalars().all()

        due = [sub for sub in subscriptions if is_due(sub, now)]
        processed = sent = failed = 0
        for sub in due:
            processed += 1
            if await self.process_subscription(sub, now):
                sent += 1
            else:
                failed += 1

        logger.info(f"Insights run: {processed} processed, {sent} sent, {failed} failed")
        return {"processed": processed, "sent": sent, "failed": failed}

    async def process_subscription(self, sub: InsightsSubscription, now: datetime) -> bool:
        """Send one subscription's email. Always leaves a log row; True when sent."""
        # An earlier item may have rolled the session back and expired this row
        await self.db.refresh(sub)
        sub_id, user_id, account_id = sub.id, sub.user_id, sub.google_ads_account_id
        try:
            ok = await self._deliver(sub, now)
        except Exception as e:
            logger.exception(f"Insights subscription {sub_id} failed unexpectedly: {e}")
            await self.db.rollback()
            self.db.add(InsightsEmailLog(
                subscription_id=sub_id,
                user_id=user_id,
                google_ads_account_id=account_id,
                status=EmailStatus.FAILED.value,
                error_message=str(e),
                metrics_snapshot={},
            ))
            ok = False
        await self.db.commit()
        return ok

    async def _deliver(self, sub: InsightsSubscription, now: datetime) -> bool:
        email = await self._profile_email(sub.user_id)
        if not email:
            logger.warning(f"Insights subscription {sub.id}: no profile email")
            self._log(sub, EmailStatus.FAILED, "No profile email found")
            return False

        account_name = await self._account_name(sub.google_ads_account_id)
        start, end = compute_date_range(sub.frequency, now.date())
        try:
            totals = await self.metrics.aggregate_account_metrics(sub.google_ads_account_id, None, start, end)
        except AdsInsightsError as e:
            logger.warning(f"Insights subscription {sub.id}: metrics unavailable: {e.message}")
            self._log(sub, EmailStatus.FAILED, e.message)
            return False

        title = sub.title or DEFAULT_TITLE
        body = render_insights_html(
            title,
            account_name,
            start.isoformat(),
            end.isoformat(),
            totals,
            sub.selected_metrics or DEFAULT_INSIGHT_METRICS,
            SCHEDULED_FOOTER.format(frequency=sub.frequency, send_time=sub.send_time, time_zone=sub.time_zone),
        )
        try:
            self.send_email(email, insights_subject(title, account_name), body)
        except AdsInsightsError as e:
            self._log(sub, EmailStatus.FAILED, e.message, totals)
            return False

        self._log(sub, EmailStatus.SENT, snapshot=totals)
        sub.last_sent_at = as_naive_utc(now)
        return True

    async def send_test(
        self,
        user_id: str,
        account_id: uuid.UUID,
        metrics: list[str],
        frequency: str = EmailFrequency.WEEKLY.value,
        title: Optional[str] = None,
        today: Optional[date] = None,
    ) -> dict:
        """Send one email now for the caller's account. Errors propagate."""
        if not metrics:
            raise ValidationError("accountId and metrics are required")
        email = await self._profile_email(user_id)
        if not email:
            raise ValidationError("No profile email found")

        start, end = compute_date_range(frequency, today or date.today())
        totals = await self.metrics.aggregate_account_metrics(account_id, user_id, start, end)
        account_name = await self._account_name(account_id)
        title = title or DEFAULT_TITLE
        body = render_insights_html(title, account_name, start.isoformat(), end.isoformat(), totals, metrics, TEST_FOOTER)
        message_id = self.send_email(email, insights_subject(title, account_name), body)
        return {"success": True, "id": message_id, "metrics": totals}

    async def get_subscription(self, user_id: str, account_id: uuid.UUID) -> Optional[InsightsSubscription]:
        result = await self.db.execute(
            select(InsightsSubscription).where(
                InsightsSubscription.user_id == user_id,
                InsightsSubscription.google_ads_account_id == account_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_subscription(self, user_id: str, account_id: uuid.UUID, values: dict) -> InsightsSubscription:
        """Create or update the caller's subscription. Unknown keys are ignored."""
        await self.metrics.get_account(account_id, user_id)
        sub = await self.get_subscription(user_id, account_id)
        if sub is None:
            sub = InsightsSubscription(user_id=user_id, google_ads_account_id=account_id)
            self.db.add(sub)
        for field in ("title", "frequency", "send_time", "time_zone", "selected_metrics", "is_paused"):
            if values.get(field) is not None:
                setattr(sub, field, values[field])
        await self.db.flush()
        return sub
