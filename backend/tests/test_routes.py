"""
End-to-end route tests over ASGITransport with the database and Google faked.
"""

from datetime import timedelta
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from app.config import get_settings
from app.database import get_db
from app.deps import get_http_client, get_session_factory
from app.main import app
from app.models import DailyMetric, MetricsCache
from app.services.google_oauth_service import decode_state, StructuredState
from app.utils import utcnow
from conftest import OTHER_USER_ID, TEST_USER_ID, auth_headers, campaign_result, create_account, create_profile, make_jwt

CRON = {"X-Cron-Secret": "test-cron-secret"}


@pytest.fixture
async def client(session_factory, fake_google):
    async def override_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_http():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler)) as http:
            yield http

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_http_client] = override_http
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# ── Auth ──────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_missing_bearer_is_401(client):
    response = await client.post("/api/google-ads/connect", json={})
    assert response.status_code == 401
    assert "error" in response.json()


@pytest.mark.anyio
async def test_wrong_audience_is_401(client):
    headers = {"Authorization": f"Bearer {make_jwt(audience='someone-else')}"}
    response = await client.post("/api/google-ads/connect", json={}, headers=headers)
    assert response.status_code == 401


@pytest.mark.anyio
async def test_expired_token_is_401(client):
    headers = {"Authorization": f"Bearer {make_jwt(expires_in=-60)}"}
    response = await client.get("/api/google-ads/accounts", headers=headers)
    assert response.status_code == 401


# ── OAuth ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_connect_returns_auth_url(client):
    response = await client.post("/api/google-ads/connect", json={"returnUrl": "https://x/app"}, headers=auth_headers())
    assert response.status_code == 200
    data = response.json()
    state = parse_qs(urlparse(data["authUrl"]).query)["state"][0]
    assert decode_state(state) == StructuredState(TEST_USER_ID, "https://x/app")
    assert data["redirectUri"] == "https://api.example.com/api/google-ads/callback"


@pytest.mark.anyio
async def test_callback_redirects_and_persists(client, db, fake_google):
    connect = await client.post("/api/google-ads/connect", json={"returnUrl": "https://x/app"}, headers=auth_headers())
    state = parse_qs(urlparse(connect.json()["authUrl"]).query)["state"][0]

    response = await client.get("/api/google-ads/callback", params={"code": "c", "state": state})

    assert response.status_code == 302
    assert response.headers["location"] == "https://x/app/integrations?success=true&accounts=1"
    accounts = (await client.get("/api/google-ads/accounts", headers=auth_headers())).json()["accounts"]
    assert [a["customer_id"] for a in accounts] == ["1234567890"]


@pytest.mark.anyio
async def test_callback_never_returns_json_on_failure(client, fake_google):
    fake_google.token_responses.append((500, "boom"))
    response = await client.get("/api/google-ads/callback", params={"code": "c", "state": TEST_USER_ID})
    assert response.status_code == 302
    assert "error=" in response.headers["location"]


# ── Metrics ───────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_keywords_requires_account_id(client):
    response = await client.post("/api/google-ads/keywords", json={"filters": {}}, headers=auth_headers())
    assert response.status_code == 400
    assert response.json() == {"error": "accountId is required"}


@pytest.mark.anyio
async def test_keywords_for_foreign_account_is_403(client, db):
    account = await create_account(db, user_id=OTHER_USER_ID)
    response = await client.post("/api/google-ads/keywords", json={"accountId": str(account.id)}, headers=auth_headers())
    assert response.status_code == 403


@pytest.mark.anyio
async def test_keywords_for_stale_account_is_409(client, db):
    account = await create_account(db, needs_reconnection=True)
    response = await client.post("/api/google-ads/keywords", json={"accountId": str(account.id)}, headers=auth_headers())
    assert response.status_code == 409
    assert "reconnect" in response.json()["error"]


@pytest.mark.anyio
async def test_keywords_upstream_error_is_502(client, db, fake_google):
    account = await create_account(db)
    fake_google.stream_responses.append((500, "INTERNAL"))
    response = await client.post("/api/google-ads/keywords", json={"accountId": str(account.id)}, headers=auth_headers())
    assert response.status_code == 502
    assert response.json()["error"] == "Google Ads API error (500): INTERNAL"


@pytest.mark.anyio
async def test_campaigns_are_cached(client, db, fake_google):
    account = await create_account(db)
    fake_google.stream_responses.append((200, [{"results": [campaign_result("9", "Spring")]}]))
    body = {"accountId": str(account.id), "filters": {"dateRange": "LAST_7_DAYS", "metrics": ["clicks", "impressions"]}}

    first = (await client.post("/api/google-ads/campaigns", json=body, headers=auth_headers())).json()
    body["filters"]["metrics"] = ["impressions", "clicks"]
    second = (await client.post("/api/google-ads/campaigns", json=body, headers=auth_headers())).json()

    assert first["cached"] is False
    assert second["cached"] is True
    assert second["campaigns"][0]["name"] == "Spring"
    assert fake_google.stream_calls == 1


@pytest.mark.anyio
async def test_cache_is_not_served_to_other_users(client, db, fake_google):
    account = await create_account(db)
    body = {"accountId": str(account.id), "filters": {}}
    await client.post("/api/google-ads/adgroups", json=body, headers=auth_headers())

    response = await client.post("/api/google-ads/adgroups", json=body, headers=auth_headers(OTHER_USER_ID))

    assert response.status_code == 403


@pytest.mark.anyio
async def test_account_metrics(client, db, fake_google):
    account = await create_account(db)
    fake_google.stream_responses.append((200, [{"results": [campaign_result("9", "Spring")]}]))
    response = await client.post(
        "/api/google-ads/account-metrics",
        json={"accountId": str(account.id), "startDate": "2025-03-01", "endDate": "2025-03-07"},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    metrics = response.json()["metrics"]
    assert metrics["spend"] == 2.5
    assert metrics["startDate"] == "2025-03-01"
    assert set(metrics) >= {"impressions", "clicks", "conversions", "spend", "ctr", "cpm", "conversion_rate", "endDate"}


@pytest.mark.anyio
async def test_account_metrics_requires_dates(client, db):
    account = await create_account(db)
    response = await client.post("/api/google-ads/account-metrics", json={"accountId": str(account.id)}, headers=auth_headers())
    assert response.status_code == 400


@pytest.mark.anyio
async def test_invalid_date_range_is_400(client, db):
    account = await create_account(db)
    body = {"accountId": str(account.id), "filters": {"dateRange": "YESTERDAY"}}
    response = await client.post("/api/google-ads/keywords", json=body, headers=auth_headers())
    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.anyio
async def test_keywords_unreachable_api_is_502_json(client, db, fake_google):
    account = await create_account(db)
    fake_google.errors["googleAds:searchStream"] = httpx.ConnectError("connection refused")
    response = await client.post("/api/google-ads/keywords", json={"accountId": str(account.id)}, headers=auth_headers())
    assert response.status_code == 502
    assert response.json() == {"error": "Could not reach Google Ads API: connection refused"}


@pytest.mark.anyio
async def test_keywords_query_timeout_is_504_json(client, db, fake_google):
    account = await create_account(db)
    fake_google.errors["googleAds:searchStream"] = httpx.ReadTimeout("read timed out")
    response = await client.post("/api/google-ads/keywords", json={"accountId": str(account.id)}, headers=auth_headers())
    assert response.status_code == 504
    assert response.json() == {"error": "Timed out waiting for Google Ads API"}
    assert fake_google.stream_calls == 1


@pytest.mark.anyio
async def test_campaigns_token_timeout_is_504_json(client, db, fake_google):
    account = await create_account(db)
    fake_google.errors["oauth2.googleapis.com"] = httpx.ReadTimeout("read timed out")
    response = await client.post("/api/google-ads/campaigns", json={"accountId": str(account.id)}, headers=auth_headers())
    assert response.status_code == 504
    assert response.json() == {"error": "Timed out waiting for Google OAuth token endpoint"}


@pytest.mark.anyio
async def test_cache_key_ignores_metric_field_prefix(client, db, fake_google):
    account = await create_account(db)
    body = {"accountId": str(account.id), "filters": {"metrics": ["clicks"]}}
    await client.post("/api/google-ads/campaigns", json=body, headers=auth_headers())
    body["filters"]["metrics"] = ["metrics.clicks"]
    second = (await client.post("/api/google-ads/campaigns", json=body, headers=auth_headers())).json()
    assert second["cached"] is True
    assert fake_google.stream_calls == 1


# ── Insights ──────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_subscription_put_then_get(client, db):
    account = await create_account(db)
    body = {"accountId": str(account.id), "frequency": "daily", "sendTime": "07:30", "timeZone": "Europe/Berlin", "selectedMetrics": ["spend"]}

    put = await client.put("/api/insights/subscription", json=body, headers=auth_headers())
    put_again = await client.put("/api/insights/subscription", json={**body, "isPaused": True}, headers=auth_headers())
    got = await client.get("/api/insights/subscription", params={"accountId": str(account.id)}, headers=auth_headers())

    assert put.status_code == 200
    assert put_again.json()["subscription"]["id"] == put.json()["subscription"]["id"]
    sub = got.json()["subscription"]
    assert sub["sendTime"] == "07:30"
    assert sub["isPaused"] is True
    assert sub["selectedMetrics"] == ["spend"]


@pytest.mark.anyio
async def test_subscription_rejects_bad_send_time(client, db):
    account = await create_account(db)
    body = {"accountId": str(account.id), "sendTime": "25:00"}
    response = await client.put("/api/insights/subscription", json=body, headers=auth_headers())
    assert response.status_code == 400


# ── Cron ──────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_cron_requires_secret(client):
    response = await client.post("/api/cron/insights")
    assert response.status_code == 401
    response = await client.post("/api/cron/insights", headers={"X-Cron-Secret": "wrong"})
    assert response.status_code == 401


@pytest.mark.anyio
async def test_cron_insights_accepts_bearer_secret(client):
    response = await client.post("/api/cron/insights", headers={"Authorization": "Bearer test-cron-secret"})
    assert response.status_code == 200
    assert response.json() == {"processed": 0, "sent": 0, "failed": 0}


@pytest.mark.anyio
async def test_cron_sync_daily_metrics(client, db, fake_google):
    account = await create_account(db)
    fake_google.stream_responses.append((200, [{"results": [campaign_result("9", "Spring")]}]))

    response = await client.post("/api/cron/sync-daily-metrics", json={"date": "2025-03-09"}, headers=CRON)

    assert response.status_code == 200
    data = response.json()
    assert data["synced_date"] == "2025-03-09"
    assert data["synced"] == 1
    rows = (await db.execute(select(DailyMetric).where(DailyMetric.account_id == account.id))).scalars().all()
    assert len(rows) == 1

    history = await client.get(
        "/api/google-ads/historical",
        params={"accountId": str(account.id), "startDate": "2025-03-01", "endDate": "2025-03-31"},
        headers=auth_headers(),
    )
    assert history.json()["count"] == 1
    assert history.json()["data"][0]["entity_name"] == "Spring"


@pytest.mark.anyio
async def test_cron_cleanup_cache(client, db):
    account = await create_account(db)
    db.add(MetricsCache(account_id=account.id, cache_key="old", query_hash="h", data={}, expires_at=utcnow() - timedelta(minutes=1)))
    db.add(MetricsCache(account_id=account.id, cache_key="new", query_hash="h", data={}, expires_at=utcnow() + timedelta(hours=1)))
    await db.commit()

    response = await client.post("/api/cron/cleanup-cache", headers=CRON)

    assert response.json() == {"deleted": 1}


@pytest.mark.anyio
async def test_cron_without_configured_secret_is_500(client, settings):
    app.dependency_overrides[get_settings] = lambda: settings.model_copy(update={"cron_secret": ""})
    response = await client.post("/api/cron/cleanup-cache", headers=CRON)
    assert response.status_code == 500
    assert response.json() == {"error": "CRON_SECRET not configured"}


@pytest.mark.anyio
async def test_send_test_email(client, db, fake_google):
    account = await create_account(db)
    await create_profile(db)
    body = {"accountId": str(account.id), "metrics": ["spend", ""], "title": "Pulse"}

    with patch("app.services.insights_service.send_insights_email", return_value="msg_42") as sender:
        response = await client.post("/api/insights/test", json=body, headers=auth_headers())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["id"] == "msg_42"
    assert data["metrics"]["spend"] == 0
    to, subject, _ = sender.call_args.args
    assert to == "owner@example.com"
    assert subject == "Pulse - Acme Store"


@pytest.mark.anyio
async def test_send_test_email_requires_metrics(client, db):
    account = await create_account(db)
    response = await client.post("/api/insights/test", json={"accountId": str(account.id), "metrics": []}, headers=auth_headers())
    assert response.status_code == 400
    assert response.json() == {"error": "accountId and metrics are required"}
