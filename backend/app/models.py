"""
Google Ads Insights: Database Models
Linked ad accounts, the metrics cache, daily history and insights email jobs.
"""

import uuid
import enum
from datetime import date, datetime, timezone
from sqlalchemy import (
    String, Text, Boolean, Date, DateTime, JSON, ForeignKey, Index, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


def _utcnow() -> datetime:
    """Naive UTC now, matching DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class ConnectionStatus(str, enum.Enum):
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"
    DISCONNECTED = "DISCONNECTED"


class AccountType(str, enum.Enum):
    PRODUCTION = "PRODUCTION"
    TEST = "TEST"


class EmailFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class EmailStatus(str, enum.Enum):
    SENT = "SENT"
    FAILED = "FAILED"


NO_ACCOUNTS_CUSTOMER_ID = "oauth_connected_no_accounts"

DEFAULT_INSIGHT_METRICS = ["conversions", "spend", "impressions", "clicks", "cpm", "ctr"]


# ══════════════════════════════════════════════════════════════════════
#  ACCOUNTS: Google Ads customers linked through OAuth
# ══════════════════════════════════════════════════════════════════════

class GoogleAdsAccount(Base):
    """One linked Google Ads customer per user. refresh_token holds ciphertext."""
    __tablename__ = "google_ads_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_name: Mapped[str] = mapped_column(String(512), nullable=True)
    currency_code: Mapped[str] = mapped_column(String(8), nullable=True)
    time_zone: Mapped[str] = mapped_column(String(64), nullable=True)
    is_manager: Mapped[bool] = mapped_column(Boolean, default=False)
    account_type: Mapped[str] = mapped_column(String(20), default=AccountType.PRODUCTION.value)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    connection_status: Mapped[str] = mapped_column(String(20), default=ConnectionStatus.CONNECTED.value)
    needs_reconnection: Mapped[bool] = mapped_column(Boolean, default=False)
    last_error_message: Mapped[str] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    token_expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    last_connection_test: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    last_successful_fetch: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    cache_entries: Mapped[list["MetricsCache"]] = relationship("MetricsCache", back_populates="account", cascade="all, delete-orphan")
    daily_metrics: Mapped[list["DailyMetric"]] = relationship("DailyMetric", back_populates="account", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("user_id", "customer_id", name="uq_google_ads_account_per_user"),
        Index("ix_google_ads_accounts_user_id", "user_id"),
        Index("ix_google_ads_accounts_is_active", "is_active"),
    )

    @property
    def api_customer_id(self) -> str:
        """Customer id as the Ads API expects it (no hyphens)."""
        return self.customer_id.replace("-", "")


# ══════════════════════════════════════════════════════════════════════
#  METRICS CACHE: Short-lived memoized API responses
# ══════════════════════════════════════════════════════════════════════

class MetricsCache(Base):
    """Cached Ads API payload. At most one row per (account_id, cache_key)."""
    __tablename__ = "google_ads_metrics_cache"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("google_ads_accounts.id", ondelete="CASCADE"), nullable=False)
    cache_key: Mapped[str] = mapped_column(Text, nullable=False)  # e.g. "campaign_LAST_7_DAYS_clicks,ctr"
    query_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    account: Mapped["GoogleAdsAccount"] = relationship("GoogleAdsAccount", back_populates="cache_entries")

    __table_args__ = (
        UniqueConstraint("account_id", "cache_key", name="uq_metrics_cache_key"),
        Index("ix_metrics_cache_expires_at", "expires_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  DAILY METRICS: Permanent per-day history
# ══════════════════════════════════════════════════════════════════════

class DailyMetric(Base):
    """Per-day metrics for an entity. entity_id is NULL for account-level rows."""
    __tablename__ = "google_ads_metrics_daily"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("google_ads_accounts.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)  # account, campaign, adgroup, keyword
    entity_id: Mapped[str] = mapped_column(String(64), nullable=True)
    entity_name: Mapped[str] = mapped_column(String(512), nullable=True)
    metrics: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    account: Mapped["GoogleAdsAccount"] = relationship("GoogleAdsAccount", back_populates="daily_metrics")

    __table_args__ = (
        UniqueConstraint("account_id", "date", "entity_type", "entity_id", name="uq_metrics_daily_entity"),
        Index("ix_metrics_daily_lookup", "account_id", "date", "entity_type"),
    )


# ══════════════════════════════════════════════════════════════════════
#  PROFILES: Recipient details mirrored from the identity provider
# ══════════════════════════════════════════════════════════════════════

class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # identity provider user id
    email: Mapped[str] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


# ══════════════════════════════════════════════════════════════════════
#  INSIGHTS EMAILS: Recurring summaries and their send log
# ══════════════════════════════════════════════════════════════════════

class InsightsSubscription(Base):
    """Recurring insights email for one account. send_time is local HH:mm in time_zone."""
    __tablename__ = "insights_email_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    google_ads_account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("google_ads_accounts.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), default="Google Ads Insights")
    frequency: Mapped[str] = mapped_column(String(16), default=EmailFrequency.WEEKLY.value)
    send_time: Mapped[str] = mapped_column(String(5), default="09:00")
    time_zone: Mapped[str] = mapped_column(String(64), default="UTC")
    selected_metrics: Mapped[list] = mapped_column(JSON, default=lambda: list(DEFAULT_INSIGHT_METRICS))
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    last_sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "google_ads_account_id", name="uq_insights_subscription_per_account"),
        Index("ix_insights_subscriptions_is_paused", "is_paused"),
    )


class InsightsEmailLog(Base):
    """Append-only audit row per send attempt."""
    __tablename__ = "insights_email_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("insights_email_subscriptions.id", ondelete="CASCADE"), nullable=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    google_ads_account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("google_ads_accounts.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(10), default=EmailStatus.SENT.value)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    metrics_snapshot: Mapped[dict] = mapped_column(JSON, default=dict)
    sent_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_insights_email_logs_subscription_id", "subscription_id"),
        Index("ix_insights_email_logs_sent_at", "sent_at"),
    )
