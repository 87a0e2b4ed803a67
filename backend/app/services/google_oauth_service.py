"""
Google OAuth account linking.

connect:  build the consent URL, carrying {user id, return url} in `state`.
callback: exchange the code, seal the refresh token, discover accessible
          customers and upsert one GoogleAdsAccount row per customer.

The callback never raises to the browser; every outcome is a redirect URL.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import quote, urlencode

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.crypto import encrypt_token
from app.exceptions import AdsInsightsError, ConfigurationError, MissingRefreshTokenError, ValidationError
from app.models import AccountType, ConnectionStatus, GoogleAdsAccount, NO_ACCOUNTS_CUSTOMER_ID
from app.services.gaql import CUSTOMER_DETAILS_QUERY
from app.services.google_ads_client import GoogleAdsClient
from app.services.token_service import exchange_authorization_code
from app.utils import utcnow

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"

SCOPES = [
    "https://www.googleapis.com/auth/adwords",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "openid",
]

# Details are looked up for this many customers; the rest are not linked
MAX_DETAIL_LOOKUPS = 5

NO_ACCOUNTS_NAME = "OAuth Connected - No Accessible Accounts"


# ── State ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StructuredState:
    user_id: str
    return_url: str


@dataclass(frozen=True)
class LegacyState:
    """Older clients sent the bare user id as `state`."""
    user_id: str


OAuthState = Union[StructuredState, LegacyState]


def encode_state(user_id: str, return_url: str) -> str:
    payload = json.dumps({"u": user_id, "r": return_url}, separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_state(state: str) -> OAuthState:
    """Parse base64 JSON state, falling back to treating the value as a user id."""
    try:
        decoded = json.loads(base64.b64decode(state, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return LegacyState(user_id=state)
    if isinstance(decoded, dict) and decoded.get("u"):
        return StructuredState(user_id=str(decoded["u"]), return_url=str(decoded.get("r") or ""))
    return LegacyState(user_id=state)


def state_return_url(state: Optional[OAuthState], settings: Settings) -> str:
    if isinstance(state, StructuredState) and state.return_url:
        return state.return_url.rstrip("/")
    return settings.frontend_url.rstrip("/")


# ── Connect ───────────────────────────────────────────────────────────

def build_authorization_url(settings: Settings, user_id: str, return_url: Optional[str] = None) -> str:
    if not settings.google_ads_client_id:
        raise ConfigurationError("Google Ads Client ID not configured")
    params = {
        "client_id": settings.google_ads_client_id,
        "redirect_uri": settings.oauth_redirect_uri,
        "scope": " ".join(SCOPES),
        "response_type": "code",
        "access_type": "offline",
        "prompt": "consent",
        "state": encode_state(user_id, return_url or settings.frontend_url),
    }
    return f"{AUTH_URL}?{urlencode(params, quote_via=quote)}"


# ── Callback ──────────────────────────────────────────────────────────

@dataclass
class CustomerDetails:
    customer_id: str
    account_name: str
    currency_code: Optional[str] = None
    time_zone: Optional[str] = None
    is_manager: bool = False
    is_test: bool = False


def _placeholder_details(customer_id: str) -> CustomerDetails:
    return CustomerDetails(customer_id=customer_id, account_name=f"Google Ads Account {customer_id}")


def success_redirect(return_url: str, account_count: int) -> str:
    return f"{return_url}/integrations?{urlencode({'success': 'true', 'accounts': account_count})}"


def error_redirect(return_url: str, message: str) -> str:
    return f"{return_url}/integrations?{urlencode({'error': message})}"


class GoogleOAuthService:
    def __init__(self, db: AsyncSession, http: httpx.AsyncClient, settings: Settings):
        self.db = db
        self.http = http
        self.settings = settings

    async def handle_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> str:
        """Run the callback and return the URL the browser should be sent to."""
        parsed = decode_state(state) if state else None
        return_url = state_return_url(parsed, self.settings)

        if error:
            logger.warning(f"OAuth provider returned error: {error}")
            return error_redirect(return_url, error)

        try:
            if not code or parsed is None:
                raise ValidationError("Missing authorization code or state")
            linked = await self._link_accounts(parsed.user_id, code)
        except AdsInsightsError as e:
            logger.error(f"Google Ads OAuth callback failed: {e.message}")
            await self.db.rollback()
            return error_redirect(return_url, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error in Google Ads OAuth callback: {e}")
            await self.db.rollback()
            return error_redirect(return_url, "Unexpected error while connecting Google Ads")

        logger.info(f"Linked {linked} Google Ads account(s) for user {parsed.user_id}")
        return success_redirect(return_url, linked)

    async def _link_accounts(self, user_id: str, code: str) -> int:
        grant = await exchange_authorization_code(self.http, self.settings, code)
        if not grant.refresh_token:
            raise MissingRefreshTokenError()
        sealed = encrypt_token(grant.refresh_token)

        client = GoogleAdsClient(self.http, self.settings, grant.access_token)
        customer_ids = await client.list_accessible_customers()
        logger.info(f"Found {len(customer_ids)} accessible customers")

        if not customer_ids:
            await self._store_no_accounts_marker(user_id, sealed)
            return 0

        details, failures = await self.fetch_customer_details(client, customer_ids[:MAX_DETAIL_LOOKUPS])
        for customer_id, reason in failures:
            logger.warning(f"Details lookup failed for customer {customer_id}, using placeholder: {reason}")
        for d in details:
            await self.upsert_account(user_id, d, sealed)
        return len(details)

    async def fetch_customer_details(
        self,
        client: GoogleAdsClient,
        customer_ids: list[str],
    ) -> tuple[list[CustomerDetails], list[tuple[str, str]]]:
        """
        Look up descriptive details per customer. A failed lookup yields a
        placeholder entry and a (customer_id, reason) failure; it never aborts
        the others.
        """
        details: list[CustomerDetails] = []
        failures: list[tuple[str, str]] = []
        for customer_id in customer_ids:
            try:
                rows = await client.search(customer_id, CUSTOMER_DETAILS_QUERY)
            except AdsInsightsError as e:
                failures.append((customer_id, e.message))
                details.append(_placeholder_details(customer_id))
                continue
            customer = (rows[0].get("customer") if rows else None) or {}
            details.append(CustomerDetails(
                customer_id=customer_id,
                account_name=customer.get("descriptive_name") or f"Google Ads Account {customer_id}",
                currency_code=customer.get("currency_code"),
                time_zone=customer.get("time_zone"),
                is_manager=bool(customer.get("manager")),
                is_test=bool(customer.get("test_account")),
            ))
        return details, failures

    async def upsert_account(self, user_id: str, details: CustomerDetails, sealed_refresh_token: str) -> GoogleAdsAccount:
        """Insert or refresh the (user_id, customer_id) row; a reconnect clears error state."""
        now = utcnow()
        result = await self.db.execute(
            select(GoogleAdsAccount).where(
                GoogleAdsAccount.user_id == user_id,
                GoogleAdsAccount.customer_id == details.customer_id,
            )
        )
        account = result.scalar_one_or_none()
        if account is None:
            account = GoogleAdsAccount(user_id=user_id, customer_id=details.customer_id)
            self.db.add(account)

        account.account_name = details.account_name
        account.currency_code = details.currency_code
        account.time_zone = details.time_zone
        account.is_manager = details.is_manager
        account.account_type = AccountType.TEST.value if details.is_test else AccountType.PRODUCTION.value
        account.refresh_token = sealed_refresh_token
        account.is_active = True
        account.connection_status = ConnectionStatus.CONNECTED.value
        account.needs_reconnection = False
        account.last_error_message = None
        account.last_error_at = None
        account.last_connection_test = now
        await self.db.flush()
        return account

    async def _store_no_accounts_marker(self, user_id: str, sealed_refresh_token: str) -> None:
        """Record that the grant worked even though no customer is reachable."""
        marker = CustomerDetails(customer_id=NO_ACCOUNTS_CUSTOMER_ID, account_name=NO_ACCOUNTS_NAME)
        account = await self.upsert_account(user_id, marker, sealed_refresh_token)
        account.is_active = False
        await self.db.flush()
        logger.info(f"No accessible Google Ads accounts for user {user_id}; stored placeholder row")
