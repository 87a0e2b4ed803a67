"""
Token Service: Google OAuth token endpoint calls.

Exchanges authorization codes and refresh tokens for access tokens, and keeps
the linked account's connection-health columns in step with the outcome.
No retry happens here; the Ads query layer owns the single retry-on-401.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.exceptions import (
    ConfigurationError,
    RefreshError,
    TokenExchangeError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
)
from app.models import ConnectionStatus, GoogleAdsAccount
from app.utils import utcnow

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"

# Google answers these when the grant itself is revoked or expired
INVALID_GRANT_STATUSES = (400, 401)


@dataclass
class TokenGrant:
    access_token: str
    expires_in: int = 3600
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


def oauth_client_credentials(settings: Settings) -> tuple[str, str]:
    """Return (client_id, client_secret) or raise ConfigurationError."""
    if not settings.google_ads_client_id:
        raise ConfigurationError("GOOGLE_ADS_CLIENT_ID is missing or empty")
    if not settings.google_ads_client_secret:
        raise ConfigurationError("GOOGLE_ADS_CLIENT_SECRET is missing or empty")
    return settings.google_ads_client_id, settings.google_ads_client_secret


async def _post_token_endpoint(http: httpx.AsyncClient, data: dict) -> httpx.Response:
    try:
        return await http.post(
            TOKEN_URL,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.TimeoutException as exc:
        raise UpstreamTimeoutError("Google OAuth token endpoint") from exc
    except httpx.RequestError as exc:
        raise UpstreamConnectionError("Google OAuth token endpoint", str(exc) or type(exc).__name__) from exc


def _grant_from(payload: dict) -> TokenGrant:
    return TokenGrant(
        access_token=payload.get("access_token", ""),
        expires_in=int(payload.get("expires_in") or 3600),
        refresh_token=payload.get("refresh_token"),
        scope=payload.get("scope"),
    )


async def exchange_authorization_code(
    http: httpx.AsyncClient,
    settings: Settings,
    code: str,
) -> TokenGrant:
    """Trade an authorization code for tokens. The refresh token may be absent."""
    client_id, client_secret = oauth_client_credentials(settings)
    response = await _post_token_endpoint(http, {
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": settings.oauth_redirect_uri,
    })
    logger.info(f"Token exchange response status: {response.status_code}")
    if not response.is_success:
        raise TokenExchangeError(response.status_code, response.text)
    grant = _grant_from(response.json())
    logger.info(f"Tokens received, has refresh_token: {bool(grant.refresh_token)}")
    return grant


async def refresh_access_token(
    http: httpx.AsyncClient,
    settings: Settings,
    refresh_token: str,
) -> TokenGrant:
    """Exchange a refresh token for a fresh access token."""
    client_id, client_secret = oauth_client_credentials(settings)
    response = await _post_token_endpoint(http, {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    })
    if not response.is_success:
        raise RefreshError(response.status_code, response.text)
    return _grant_from(response.json())


def record_refresh_success(account: GoogleAdsAccount, grant: TokenGrant) -> None:
    account.token_expires_at = utcnow() + timedelta(seconds=grant.expires_in)
    account.connection_status = ConnectionStatus.CONNECTED.value
    account.needs_reconnection = False
    account.last_error_message = None
    account.last_error_at = None


def record_account_error(account: GoogleAdsAccount, message: str, needs_reconnection: bool = False) -> None:
    account.connection_status = ConnectionStatus.ERROR.value
    account.last_error_message = message
    account.last_error_at = utcnow()
    if needs_reconnection:
        account.needs_reconnection = True


async def refresh_for_account(
    db: AsyncSession,
    http: httpx.AsyncClient,
    settings: Settings,
    account: GoogleAdsAccount,
    refresh_token: str,
) -> TokenGrant:
    """
    Refresh on behalf of a stored account and persist the outcome.
    A revoked grant flags the account as needing reconnection.
    """
    try:
        grant = await refresh_access_token(http, settings, refresh_token)
    except RefreshError as e:
        logger.error(f"Token refresh failed for account {account.id}: {e.status}")
        record_account_error(
            account,
            f"Token refresh failed: {e.body}",
            needs_reconnection=e.status in INVALID_GRANT_STATUSES,
        )
        # Commit now: the request session rolls back once the error propagates
        await db.commit()
        raise
    record_refresh_success(account, grant)
    await db.flush()
    logger.info(f"Token refreshed for account {account.id}, expires in {grant.expires_in}s")
    return grant
