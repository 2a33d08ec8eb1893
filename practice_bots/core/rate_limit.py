"""Rate limiting configuration for the bot service API."""

import logging
import os

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address

from practice_bots.core.config import settings

logger = logging.getLogger(__name__)

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)


def _storage_uri() -> str:
    # Redis keeps limits consistent across workers; in-memory otherwise
    if IS_TESTING or not settings.REDIS_URL:
        return "memory://"
    try:
        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
    except redis.RedisError as e:
        logger.warning("Redis unavailable for rate limiting, using in-memory: %s", e)
        return "memory://"
    return settings.REDIS_URL


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri(),
    default_limits=DEFAULT_LIMITS,
    enabled=not IS_TESTING,
)


def registration_limit() -> str:
    return f"{settings.RATE_LIMIT_REGISTRATION}/minute"


def webhook_limit() -> str:
    return f"{settings.RATE_LIMIT_WEBHOOK}/minute"
