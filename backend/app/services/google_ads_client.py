"""
Google Ads REST client.

Thin wrapper over the googleads.googleapis.com endpoints used here:
listAccessibleCustomers, googleAds:search and googleAds:searchStream.
Every call carries the bearer access token and the developer token;
non-success responses raise UpstreamApiError with the upstream status and body,
transport failures raise UpstreamTimeoutError or UpstreamConnectionError.
"""

import logging
from typing import Any, Optional

import httpx

from app.config import Settings
from app.exceptions import ConfigurationError, UpstreamApiError, UpstreamConnectionError, UpstreamTimeoutError
from app.utils import snake_keys

logger = logging.getLogger(__name__)

ADS_API_BASE = "https://googleads.googleapis.com"


class GoogleAdsClient:
    """
    Bound to one access token. Build a new instance after a token refresh.
    login_customer_id is sent as the login-customer-id header when set.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        settings: Settings,
        access_token: str,
        login_customer_id: Optional[str] = None,
    ):
        if not settings.google_ads_developer_token:
            raise ConfigurationError("Developer token not configured")
        self.http = http
        self.access_token = access_token
        self.developer_token = settings.google_ads_developer_token
        self.api_version = settings.google_ads_api_version
        self.login_customer_id = login_customer_id

    @property
    def base_url(self) -> str:
        return f"{ADS_API_BASE}/{self.api_version}"

    @property
    def headers(self) -> dict[str, str]:
        h = {
            "Authorization": f"Bearer {self.access_token}",
            "developer-token": self.developer_token,
            "Content-Type": "application/json",
        }
        if self.login_customer_id:
            h["login-customer-id"] = self.login_customer_id
        return h

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            response = await self.http.request(method, url, headers=self.headers, json=json)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError("Google Ads API") from exc
        except httpx.RequestError as exc:
            raise UpstreamConnectionError("Google Ads API", str(exc) or type(exc).__name__) from exc
        logger.info(f"Ads API {method} {path} -> {response.status_code}")
        if not response.is_success:
            raise UpstreamApiError(response.status_code, response.text)
        return response.json()

    async def list_accessible_customers(self) -> list[str]:
        """Customer ids (digits only) the token's user can access."""
        data = await self._request("GET", "customers:listAccessibleCustomers")
        names = data.get("resourceNames") or []
        return [name.replace("customers/", "") for name in names]

    async def search(self, customer_id: str, query: str) -> list[dict]:
        """Paged search; returns the first page of rows with snake_case keys."""
        data = await self._request("POST", f"customers/{customer_id}/googleAds:search", json={"query": query})
        return snake_keys(data.get("results") or [])

    async def search_stream(self, customer_id: str, query: str) -> list[dict]:
        """Streamed search; rows of every batch flattened, snake_case keys."""
        data = await self._request("POST", f"customers/{customer_id}/googleAds:searchStream", json={"query": query})
        batches = data if isinstance(data, list) else [data]
        rows = []
        for batch in batches:
            rows.extend((batch or {}).get("results") or [])
        return snake_keys(rows)
