"""
DESIGN DECISION: Redis Configuration
=====================================

Redis backs the recommendation cache when several API processes (and
the background worker) must see the same entries.

Configuration:
- Eviction: allkeys-lru on the server side
- TTL: 10 minutes per recommendation set (SET ... EX)
- Timeouts: 5s socket/connect, retry on timeout
- Health: ping on startup and on /health
"""

from redis.asyncio import ConnectionPool, Redis
from loguru import logger

SOCKET_TIMEOUT_SECONDS = 5.0
MAX_CONNECTIONS = 20
HEALTH_CHECK_INTERVAL_SECONDS = 30


def create_redis_client(url: str) -> Redis:
    """Build a pooled async client; no connection is opened until first use"""
    pool = ConnectionPool.from_url(
        url,
        max_connections=MAX_CONNECTIONS,
        socket_timeout=SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
        retry_on_timeout=True,
        health_check_interval=HEALTH_CHECK_INTERVAL_SECONDS,
        decode_responses=True,
    )
    logger.info(f"Redis connection pool created for {pool.connection_kwargs.get('host', url)}")
    return Redis(connection_pool=pool)
