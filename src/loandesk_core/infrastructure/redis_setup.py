"""Redis connection factory for the case desk store.

Supports:
- Standalone Redis (development/self-hosted)
- Redis Sentinel (HA deployments, automatic master failover)

RedisStore requires decode_responses=True, so every client built here
returns str values.
"""

import logging
import os
from typing import List, Optional, Tuple

from redis.asyncio import Redis
from redis.asyncio.sentinel import Sentinel

from loandesk_core.utils import service_startup_retry

logger = logging.getLogger(__name__)

DEFAULT_SENTINEL_PORT = 26379


def parse_sentinel_hosts(hosts_str: str) -> List[Tuple[str, int]]:
    """Parse a comma-separated "host:port" list.

    Example:
        >>> parse_sentinel_hosts("sentinel1:26379, sentinel2")
        [('sentinel1', 26379), ('sentinel2', 26379)]
    """
    sentinels = []
    for entry in hosts_str.split(","):
        entry = entry.strip()
        if not entry:
            continue
        host, _, port = entry.rpartition(":") if ":" in entry else (entry, "", "")
        sentinels.append((host, int(port) if port else DEFAULT_SENTINEL_PORT))
    return sentinels


@service_startup_retry
async def _verify_redis_connection(client: Redis) -> None:
    """Ping with the startup retry policy."""
    await client.ping()
    logger.info("Redis connection verified")


def _sentinel_client(
    sentinel_hosts: str,
    master_set: str,
    db: int,
    password: Optional[str],
    health_check_interval: int,
) -> Redis:
    sentinels = parse_sentinel_hosts(sentinel_hosts)
    if not sentinels:
        raise ValueError(f"No valid sentinel hosts found in: {sentinel_hosts!r}")

    logger.info(f"Connecting to Redis Sentinel: master={master_set}, sentinels={sentinels}")
    sentinel = Sentinel(
        sentinels,
        sentinel_kwargs={"password": password} if password else {},
        socket_keepalive=True,
        health_check_interval=health_check_interval,
    )
    return sentinel.master_for(
        master_set,
        db=db,
        password=password,
        decode_responses=True,
        socket_keepalive=True,
        health_check_interval=health_check_interval,
    )


def _standalone_client(
    host: str,
    port: int,
    db: int,
    password: Optional[str],
    health_check_interval: int,
) -> Redis:
    logger.info(f"Connecting to standalone Redis: {host}:{port}/{db}")
    return Redis(
        host=host,
        port=port,
        db=db,
        password=password,
        decode_responses=True,
        socket_keepalive=True,
        health_check_interval=health_check_interval,
        socket_connect_timeout=5,
    )


async def get_redis_client(
    mode: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    db: Optional[int] = None,
    password: Optional[str] = None,
    sentinel_hosts: Optional[str] = None,
    master_set: Optional[str] = None,
    health_check_interval: int = 30,
) -> Redis:
    """Build and verify a Redis client.

    Explicit arguments win over the environment.

    Environment Variables:
        REDIS_MODE: "standalone" (default) or "sentinel"
        REDIS_HOST / REDIS_PORT: standalone address (default localhost:6379)
        REDIS_DB: database index (default 0)
        REDIS_PASSWORD: optional password
        REDIS_SENTINEL_HOSTS: "host:port,host:port" (required in sentinel mode)
        REDIS_MASTER_SET: sentinel master name (default "mymaster")

    Raises:
        ValueError: Sentinel mode without sentinel hosts
        ConnectionError: Redis unreachable after the startup retries
    """
    mode = (mode or os.getenv("REDIS_MODE", "standalone")).lower()
    db_index = db if db is not None else int(os.getenv("REDIS_DB", "0"))
    password = password or os.getenv("REDIS_PASSWORD")

    logger.info(f"Initializing Redis client in {mode} mode")

    if mode == "sentinel":
        hosts = sentinel_hosts or os.getenv("REDIS_SENTINEL_HOSTS", "")
        if not hosts:
            raise ValueError("REDIS_SENTINEL_HOSTS environment variable is required for Sentinel mode")
        client = _sentinel_client(
            hosts,
            master_set or os.getenv("REDIS_MASTER_SET", "mymaster"),
            db_index,
            password,
            health_check_interval,
        )
    else:
        client = _standalone_client(
            host or os.getenv("REDIS_HOST", "localhost"),
            port if port is not None else int(os.getenv("REDIS_PORT", "6379")),
            db_index,
            password,
            health_check_interval,
        )

    await _verify_redis_connection(client)
    return client
