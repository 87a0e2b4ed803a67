"""
Shared fixtures: a throwaway SQLite database per test, a scripted fake of the
Google OAuth + Ads endpoints, and helpers for accounts and bearer tokens.
"""

import os

# Required settings BEFORE importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-for-hs256-signing")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("GOOGLE_ADS_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("GOOGLE_ADS_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_ADS_DEVELOPER_TOKEN", "test-developer-token")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("PUBLIC_API_URL", "https://api.example.com")
os.environ.setdefault("FRONTEND_URL", "https://app.example.com")

import time
import uuid
from typing import Any, Optional

import httpx
import pytest
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import get_settings
from app.crypto import encrypt_token
from app.database import Base
from app.models import ConnectionStatus, GoogleAdsAccount, Profile

TEST_USER_ID = "11111111-2222-3333-4444-555555555555"
OTHER_USER_ID = "99999999-8888-7777-6666-555555555555"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return get_settings()


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine(tmp_path):
    """File-backed so several sessions can work at once (daily sync batches)."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def create_account(
    db: AsyncSession,
    user_id: str = TEST_USER_ID,
    customer_id: str = "123-456-7890",
    refresh_token: str = "stored-refresh-token",
    **overrides: Any,
) -> GoogleAdsAccount:
    account = GoogleAdsAccount(
        user_id=user_id,
        customer_id=customer_id,
        account_name=overrides.pop("account_name", "Acme Store"),
        currency_code="USD",
        time_zone="America/New_York",
        refresh_token=encrypt_token(refresh_token),
        is_active=overrides.pop("is_active", True),
        connection_status=ConnectionStatus.CONNECTED.value,
        needs_reconnection=overrides.pop("needs_reconnection", False),
        **overrides,
    )
    db.add(account)
    await db.commit()
    return account


async def create_profile(db: AsyncSession, user_id: str = TEST_USER_ID, email: Optional[str] = "owner@example.com") -> Profile:
    profile = Profile(id=user_id, email=email, full_name="Test Owner")
    db.add(profile)
    await db.commit()
    return profile


def make_jwt(user_id: str = TEST_USER_ID, audience: str = "authenticated", expires_in: int = 3600) -> str:
    settings = get_settings()
    now = int(time.time())
    return jwt.encode(
        {"sub": user_id, "aud": audience, "iat": now, "exp": now + expires_in},
        settings.jwt_secret,
        algorithm="HS256",
    )


def auth_headers(user_id: str = TEST_USER_ID) -> dict:
    return {"Authorization": f"Bearer {make_jwt(user_id)}"}


# ============================================================================
# Fake Google endpoints
# ============================================================================


def campaign_result(campaign_id: str, name: str, impressions="1000", clicks="50", cost_micros="2500000", conversions=5.0) -> dict:
    """A searchStream row as the REST API returns it (camelCase, int64 as strings)."""
    return {
        "campaign": {"resourceName": f"customers/1234567890/campaigns/{campaign_id}", "id": campaign_id, "name": name, "status": "ENABLED"},
        "metrics": {
            "impressions": impressions,
            "clicks": clicks,
            "costMicros": cost_micros,
            "conversions": conversions,
        },
    }


class FakeGoogle:
    """
    Scripted stand-in for oauth2.googleapis.com and googleads.googleapis.com.
    Queue (status, body) tuples on token_responses / stream_responses; when a
    queue is empty the default answer is used.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_responses: list[tuple[int, Any]] = []
        self.stream_responses: list[tuple[int, Any]] = []
        self.default_token = (200, {
            "access_token": "access-token-1",
            "expires_in": 3599,
            "refresh_token": "new-refresh-token",
            "scope": "https://www.googleapis.com/auth/adwords",
        })
        self.default_stream = (200, [{"results": []}])
        self.customers: list[str] = ["1234567890"]
        self.details: dict[str, tuple[int, Any]] = {}
        # URL fragment -> transport error raised instead of answering
        self.errors: dict[str, Exception] = {}

    @staticmethod
    def _response(status: int, body: Any) -> httpx.Response:
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for fragment, exc in self.errors.items():
            if fragment in str(request.url):
                raise exc
        path = request.url.path
        if request.url.host == "oauth2.googleapis.com":
            status, body = self.token_responses.pop(0) if self.token_responses else self.default_token
            return self._response(status, body)
        if path.endswith("customers:listAccessibleCustomers"):
            return self._response(200, {"resourceNames": [f"customers/{c}" for c in self.customers]})
        if path.endswith("googleAds:searchStream"):
            status, body = self.stream_responses.pop(0) if self.stream_responses else self.default_stream
            return self._response(status, body)
        if path.endswith("googleAds:search"):
            customer_id = path.split("/")[-2]
            default = (200, {"results": [{"customer": {
                "id": customer_id,
                "descriptiveName": f"Customer {customer_id}",
                "currencyCode": "USD",
                "timeZone": "America/New_York",
                "manager": False,
                "testAccount": False,
            }}]})
            status, body = self.details.get(customer_id, default)
            return self._response(status, body)
        return httpx.Response(404, text=f"unexpected request {request.method} {path}")

    def count(self, fragment: str) -> int:
        return sum(1 for r in self.requests if fragment in str(r.url))

    @property
    def token_calls(self) -> int:
        return self.count("oauth2.googleapis.com/token")

    @property
    def stream_calls(self) -> int:
        return self.count("googleAds:searchStream")


@pytest.fixture
def fake_google():
    return FakeGoogle()


@pytest.fixture
async def http(fake_google):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler), timeout=5.0) as client:
        yield client


@pytest.fixture
def new_account_id():
    return uuid.uuid4()
