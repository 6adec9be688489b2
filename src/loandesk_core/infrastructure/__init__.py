"""Persistence infrastructure: document store abstraction and backends."""

from loandesk_core.config import CoreSettings
from loandesk_core.infrastructure.store import (
    DocumentStore,
    InMemoryStore,
    Transaction,
)


async def create_store(settings: CoreSettings) -> DocumentStore:
    """Build the backend selected by settings.store_backend."""
    if settings.store_backend == "redis":
        # Imported lazily so the in-memory backend works without a Redis server
        from loandesk_core.infrastructure.redis_store import RedisStore
        return await RedisStore.connect(namespace=settings.namespace)
    return InMemoryStore()


__all__ = [
    "DocumentStore",
    "InMemoryStore",
    "Transaction",
    "create_store",
]
