"""Cache backend connections: build a pinged Redis client or give up cleanly.

A team memory instance cannot route through the cache until Redis answers a
PING, so startup retries with capped exponential backoff before reporting
the cache as unavailable. The same storage timeout that bounds backend calls
bounds the connect and every command on the socket.
"""

import random
import time
from typing import TYPE_CHECKING, Optional

import redis
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from .constants import BackendTag
from .errors import BackendUnavailable
from .log import get_logger

if TYPE_CHECKING:
    from .config import StorageConfig

logger = get_logger(__name__)

JITTER = 0.25


class RedisStartupError(BackendUnavailable):
    """The cache backend never answered during startup."""

    backend = BackendTag.CACHE


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Seconds to wait after failed ``attempt`` (0-based), capped and jittered by 25%."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + delay * JITTER * (2 * random.random() - 1)


def create_redis_client(
    redis_url: str,
    max_retries: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    socket_timeout: Optional[float] = None,
    connect_timeout: Optional[float] = None
) -> redis.Redis:
    """Connect to the cache backend's Redis, retrying transient failures.

    Args:
        redis_url: Redis connection URL
        max_retries: Connection attempts before giving up
        base_delay: Delay after the first failed attempt, in seconds
        max_delay: Cap on any single delay, in seconds
        socket_timeout: Per-command socket timeout in seconds
        connect_timeout: Socket connect timeout in seconds

    Returns:
        A client that answered PING. Responses are raw bytes; the cache
        backend decodes where it needs text.

    Raises:
        RedisStartupError: If every attempt failed
    """
    last_error = None

    for attempt in range(1, max_retries + 1):
        client = redis.from_url(redis_url, socket_timeout=socket_timeout,
                                socket_connect_timeout=connect_timeout)
        try:
            client.ping()
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            last_error = e
            logger.warning("Cache backend not reachable (attempt %d/%d): %s",
                           attempt, max_retries, str(e), extra={"backend": BackendTag.CACHE})
            if attempt < max_retries:
                delay = backoff_delay(attempt - 1, base_delay, max_delay)
                logger.info("Retrying cache connection in %.1fs", delay)
                time.sleep(delay)
            continue

        if attempt > 1:
            logger.info("Cache backend reachable after %d attempts", attempt)
        return client

    # TeamMemoryError strips credentials from the URL
    raise RedisStartupError(
        f"Failed to connect to Redis at {redis_url} after {max_retries} attempts: {last_error}")


def redis_client_for(storage: 'StorageConfig') -> redis.Redis:
    """Build the cache backend's client from storage settings."""
    return create_redis_client(
        storage.redis_url,
        max_retries=storage.redis_retries,
        socket_timeout=storage.timeout,
        connect_timeout=storage.timeout,
    )
