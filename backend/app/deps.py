"""Per-request dependency providers."""

from typing import AsyncIterator

import httpx
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.database import async_session, get_db
from app.services.metrics_service import MetricsService


async def get_http_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[httpx.AsyncClient]:
    """One client per request, closed afterwards; every call gets the configured timeout."""
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """For jobs that open one session per unit of work instead of per request."""
    return async_session


def get_metrics_service(
    db: AsyncSession = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> MetricsService:
    return MetricsService(db, http, settings)
