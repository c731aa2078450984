from __future__ import annotations

import logging
import secrets
from functools import lru_cache
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .. import config
from ..db.session import init_db
from ..exceptions import ConfigurationError
from ..persistence import PersistenceService
from ..simulation.load_profiles import LoadProfileProvider
from ..simulation.weather import OpenMeteoWeatherProvider, WeatherProvider

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache()
def get_persistence_service() -> PersistenceService:
    """
    Provide a cached PersistenceService instance for API routes.
    """
    init_db()
    return PersistenceService()


def get_weather_provider() -> Iterator[WeatherProvider]:
    """
    Provide a fresh weather provider per request, closed afterwards.

    One request is one batch, so cached weather never outlives it.
    """
    provider = OpenMeteoWeatherProvider(config.get_weather_location())
    try:
        yield provider
    finally:
        provider.close()


def get_load_provider() -> LoadProfileProvider:
    return LoadProfileProvider()


def get_local_timezone() -> ZoneInfo:
    return ZoneInfo(config.get_weather_location().timezone)


def get_tick_minutes() -> int:
    try:
        return config.get_tick_minutes()
    except ConfigurationError as exc:
        logger.error("Invalid tick configuration: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        ) from exc


def get_cron_secret_value() -> str:
    """
    Configured scheduler secret; 500 when missing so nothing runs unauthenticated.
    """
    try:
        return config.get_cron_secret()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        ) from exc


def require_cron_auth(
    secret: str = Depends(get_cron_secret_value),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> None:
    """
    Accept only ``Authorization: Bearer <CRON_SECRET>``.

    Raises:
        HTTPException 500: When CRON_SECRET is not configured.
        HTTPException 401: When the header is missing or does not match.
    """
    if credentials is None or not secrets.compare_digest(credentials.credentials, secret):
        logger.warning("Unauthorized cron request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
