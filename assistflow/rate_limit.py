"""Shared rate limiter for the manual trigger endpoints.

In-memory storage by default (limits are per worker). Point
RATE_LIMIT_STORAGE_URI at a shared backend to enforce them across workers.
"""

from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings


def _resolve_storage() -> str | None:
    if not settings.rate_limit_storage_uri:
        return None
    logger.info("Rate limiter using shared storage")
    return settings.rate_limit_storage_uri


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
    storage_uri=_resolve_storage(),
)
