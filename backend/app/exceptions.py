"""
Exception hierarchy for the Google Ads integration.

Every error carries the HTTP status it maps to; the API layer converts any
``AdsInsightsError`` into ``{"error": <message>}`` with that status.
"""

from typing import Optional


class AdsInsightsError(Exception):
    """Base exception for all integration errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(AdsInsightsError):
    """A required secret or setting is missing."""

    status_code = 500


class ValidationError(AdsInsightsError):
    """Required request fields are missing or malformed."""

    status_code = 400


class AuthenticationError(AdsInsightsError):
    """Bearer token missing, malformed or expired."""

    status_code = 401


class AuthorizationError(AdsInsightsError):
    """The requested account does not belong to the caller."""

    status_code = 403


class ReconnectionRequiredError(AdsInsightsError):
    """The stored grant is stale; the user has to run the OAuth flow again."""

    status_code = 409

    def __init__(self, message: str = "Account requires reconnection. Please reconnect your Google Ads account in the integrations page.") -> None:
        super().__init__(message)


class DecryptionError(AdsInsightsError):
    """A stored token is corrupted or has been tampered with."""

    status_code = 500


class UpstreamError(AdsInsightsError):
    """Base for failures reported by Google (OAuth or Ads API)."""

    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(message)


class TokenExchangeError(UpstreamError):
    """Authorization code could not be exchanged for tokens."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Token exchange failed: {status} - {body}", status, body)


class MissingRefreshTokenError(UpstreamError):
    """Token endpoint answered without a refresh token."""

    def __init__(self) -> None:
        super().__init__("No refresh token received")


class RefreshError(UpstreamError):
    """Refresh token could not be exchanged for an access token."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Failed to refresh token: {status} - {body}", status, body)


class UpstreamApiError(UpstreamError):
    """Google Ads API returned a non-success response."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Google Ads API error ({status}): {body}", status, body)


class UpstreamTimeoutError(UpstreamError):
    """An upstream call exceeded its timeout."""

    status_code = 504

    def __init__(self, target: str) -> None:
        super().__init__(f"Timed out waiting for {target}")


class UpstreamConnectionError(UpstreamError):
    """An upstream host could not be reached (refused, DNS, reset)."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(f"Could not reach {target}: {reason}", body=reason)


class EmailDeliveryError(AdsInsightsError):
    """The email provider rejected or failed a send."""

    status_code = 502
