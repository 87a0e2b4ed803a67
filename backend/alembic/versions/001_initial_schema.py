"""Initial schema: linked accounts, metrics cache, daily history, profiles, insights emails.

Revision ID: 001
Revises:
Create Date: 2025-08-14

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    existing = set(sa.inspect(conn).get_table_names())

    if "google_ads_accounts" not in existing:
        op.create_table(
            "google_ads_accounts",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("user_id", sa.String(64), nullable=False),
            sa.Column("customer_id", sa.String(64), nullable=False),
            sa.Column("account_name", sa.String(512), nullable=True),
            sa.Column("currency_code", sa.String(8), nullable=True),
            sa.Column("time_zone", sa.String(64), nullable=True),
            sa.Column("is_manager", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("account_type", sa.String(20), nullable=True, server_default="PRODUCTION"),
            sa.Column("refresh_token", sa.Text(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("connection_status", sa.String(20), nullable=True, server_default="CONNECTED"),
            sa.Column("needs_reconnection", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("last_error_message", sa.Text(), nullable=True),
            sa.Column("last_error_at", sa.DateTime(), nullable=True),
            sa.Column("token_expires_at", sa.DateTime(), nullable=True),
            sa.Column("last_connection_test", sa.DateTime(), nullable=True),
            sa.Column("last_successful_fetch", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "customer_id", name="uq_google_ads_account_per_user"),
        )
        op.create_index("ix_google_ads_accounts_user_id", "google_ads_accounts", ["user_id"])
        op.create_index("ix_google_ads_accounts_is_active", "google_ads_accounts", ["is_active"])

    if "google_ads_metrics_cache" not in existing:
        op.create_table(
            "google_ads_metrics_cache",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("cache_key", sa.Text(), nullable=False),
            sa.Column("query_hash", sa.String(64), nullable=False),
            sa.Column("data", postgresql.JSON(astext_type=sa.Text()), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.ForeignKeyConstraint(["account_id"], ["google_ads_accounts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("account_id", "cache_key", name="uq_metrics_cache_key"),
        )
        op.create_index("ix_metrics_cache_expires_at", "google_ads_metrics_cache", ["expires_at"])

    if "google_ads_metrics_daily" not in existing:
        op.create_table(
            "google_ads_metrics_daily",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("entity_type", sa.String(32), nullable=False),
            sa.Column("entity_id", sa.String(64), nullable=True),
            sa.Column("entity_name", sa.String(512), nullable=True),
            sa.Column("metrics", postgresql.JSON(astext_type=sa.Text()), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.ForeignKeyConstraint(["account_id"], ["google_ads_accounts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("account_id", "date", "entity_type", "entity_id", name="uq_metrics_daily_entity"),
        )
        op.create_index("ix_metrics_daily_lookup", "google_ads_metrics_daily", ["account_id", "date", "entity_type"])

    if "profiles" not in existing:
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(64), nullable=False),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("full_name", sa.String(255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.PrimaryKeyConstraint("id"),
        )

    if "insights_email_subscriptions" not in existing:
        op.create_table(
            "insights_email_subscriptions",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("user_id", sa.String(64), nullable=False),
            sa.Column("google_ads_account_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("title", sa.String(255), nullable=True, server_default="Google Ads Insights"),
            sa.Column("frequency", sa.String(16), nullable=True, server_default="weekly"),
            sa.Column("send_time", sa.String(5), nullable=True, server_default="09:00"),
            sa.Column("time_zone", sa.String(64), nullable=True, server_default="UTC"),
            sa.Column("selected_metrics", postgresql.JSON(astext_type=sa.Text()), nullable=True),
            sa.Column("is_paused", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("last_sent_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.ForeignKeyConstraint(["google_ads_account_id"], ["google_ads_accounts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "google_ads_account_id", name="uq_insights_subscription_per_account"),
        )
        op.create_index("ix_insights_subscriptions_is_paused", "insights_email_subscriptions", ["is_paused"])

    if "insights_email_logs" not in existing:
        op.create_table(
            "insights_email_logs",
            sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=True),
            sa.Column("user_id", sa.String(64), nullable=False),
            sa.Column("google_ads_account_id", postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column("status", sa.String(10), nullable=True, server_default="SENT"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("metrics_snapshot", postgresql.JSON(astext_type=sa.Text()), nullable=True),
            sa.Column("sent_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            sa.ForeignKeyConstraint(["subscription_id"], ["insights_email_subscriptions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["google_ads_account_id"], ["google_ads_accounts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_insights_email_logs_subscription_id", "insights_email_logs", ["subscription_id"])
        op.create_index("ix_insights_email_logs_sent_at", "insights_email_logs", ["sent_at"])


def downgrade() -> None:
    op.drop_table("insights_email_logs")
    op.drop_table("insights_email_subscriptions")
    op.drop_table("profiles")
    op.drop_table("google_ads_metrics_daily")
    op.drop_table("google_ads_metrics_cache")
    op.drop_table("google_ads_accounts")
