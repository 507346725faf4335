"""Helper functions for building and calling the Google Calendar service."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from googleapiclient.discovery import build
from typing_extensions import Any, Optional

from config.settings import settings

from .google_auth import get_valid_credentials

logger = logging.getLogger(__name__)

CALENDAR_SERVICE_NAME = "calendar"
CALENDAR_SERVICE_VERSION = "v3"

# Service instances are reused until the token is close to expiry
_cache_ttl = timedelta(minutes=30)
_cached_client: Optional["CalendarClient"] = None
_cached_at: Optional[datetime] = None


class GoogleServiceError(Exception):
    """Custom exception for Google service errors."""
    pass


@dataclass
class CalendarClient:
    """Authenticated Calendar v3 resource plus the credentials behind it."""

    service: Any
    credentials: Any


def _is_cache_valid() -> bool:
    if _cached_client is None or _cached_at is None:
        return False
    if datetime.now() - _cached_at >= _cache_ttl:
        return False
    return bool(getattr(_cached_client.credentials, "valid", False))


def clear_service_cache() -> None:
    global _cached_client, _cached_at
    _cached_client = None
    _cached_at = None


async def get_calendar_client() -> CalendarClient:
    """
    Return an authenticated Calendar client, building one if needed.

    Raises:
        GoogleAuthError: No usable delegated credentials.
        GoogleServiceError: The discovery-based service could not be built.
    """
    global _cached_client, _cached_at

    if _is_cache_valid():
        logger.debug("Using cached calendar service")
        return _cached_client

    credentials = await asyncio.to_thread(get_valid_credentials)

    try:
        service = await asyncio.to_thread(
            lambda: build(
                CALENDAR_SERVICE_NAME,
                CALENDAR_SERVICE_VERSION,
                credentials=credentials,
                cache_discovery=False,
            )
        )
    except Exception as e:
        logger.error(f"Failed to create calendar service: {e}")
        raise GoogleServiceError(f"Failed to create calendar service: {e}") from e

    logger.info(f"Created {CALENDAR_SERVICE_NAME} service ({CALENDAR_SERVICE_VERSION})")
    _cached_client = CalendarClient(service=service, credentials=credentials)
    _cached_at = datetime.now()
    return _cached_client


async def execute_request(request: Any, timeout: Optional[float] = None) -> Any:
    """
    Run a googleapiclient request off the event loop with a time limit.

    Raises:
        TimeoutError: The call did not finish within the timeout.
        googleapiclient.errors.HttpError: The API rejected the call.
    """
    limit = timeout or settings.request_timeout_seconds
    return await asyncio.wait_for(asyncio.to_thread(request.execute), timeout=limit)
