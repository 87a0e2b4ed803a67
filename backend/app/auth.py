"""
Authentication: bearer JWTs issued by the identity provider.

Web/frontend: Authorization: Bearer <jwt>, HS256-signed, `sub` = user id,
audience JWT_AUDIENCE. Scheduler endpoints use the cron secret instead
(see routers/cron.py).
"""

import logging
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from app.config import get_settings
from app.exceptions import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

_bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    if not settings.jwt_secret:
        raise ConfigurationError("JWT_SECRET not configured")
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[ALGORITHM],
            audience=settings.jwt_audience,
        )
    except JWTError as e:
        logger.info(f"Rejected bearer token: {e}")
        raise AuthenticationError("Invalid or expired token. Please log in again.")


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Require a valid bearer JWT and return its subject."""
    if not credentials:
        raise AuthenticationError("Missing authorization. Include header: Authorization: Bearer <token>")
    payload = decode_access_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")
    return str(user_id)
