"""Redis backend for the document store.

Key layout (all under the configured namespace):
    {ns}:{collection}:{id}        JSON record
    {ns}:{collection}:_members    set of record ids
    {ns}:index:{index}:{key}      index entry (string)
    {ns}:counter:{counter}        hash member → int
    {ns}:seq:{name}               INCR sequence

Transactions use WATCH on every key read, then MULTI/EXEC for the buffered
writes. A WatchError on EXEC surfaces as ConflictError.
"""

import json
import logging
from typing import Dict, Iterable, List, Optional

from redis.asyncio import Redis
from redis.exceptions import WatchError

from loandesk_core.errors import ConflictError
from loandesk_core.infrastructure.redis_setup import get_redis_client
from loandesk_core.infrastructure.store import DocumentStore, Record, Transaction

logger = logging.getLogger(__name__)


class RedisTransaction(Transaction):
    def __init__(self, store: "RedisStore"):
        super().__init__()
        self._store = store
        self._pipe = store.client.pipeline(transaction=True)

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        key = self._store.doc_key(collection, record_id)
        await self._pipe.watch(key)
        return _decode(await self._pipe.get(key))

    async def lookup(self, index: str, key: str) -> Optional[str]:
        redis_key = self._store.index_key(index, key)
        await self._pipe.watch(redis_key)
        return await self._pipe.get(redis_key)

    async def scan(self, collection: str) -> List[Record]:
        members_key = self._store.members_key(collection)
        await self._pipe.watch(members_key)
        ids = await self._pipe.smembers(members_key)
        return await self._store._load_many(self._pipe, collection, ids)

    async def get_counters(self, counter: str) -> Dict[str, int]:
        key = self._store.counter_key(counter)
        await self._pipe.watch(key)
        raw = await self._pipe.hgetall(key)
        return {member: int(value) for member, value in raw.items()}

    async def _apply(self) -> None:
        store = self._store
        try:
            # Decrements are floored at zero, which needs the current value
            floored = {}
            for (counter, member), delta in self._counter_deltas.items():
                if delta < 0:
                    key = store.counter_key(counter)
                    await self._pipe.watch(key)
                    current = int(await self._pipe.hget(key, member) or 0)
                    floored[(counter, member)] = max(0, current + delta)

            self._pipe.multi()
            for (collection, record_id), record in self._puts.items():
                self._pipe.set(store.doc_key(collection, record_id), json.dumps(record))
                self._pipe.sadd(store.members_key(collection), record_id)
            for collection, record_id in self._deletes:
                self._pipe.delete(store.doc_key(collection, record_id))
                self._pipe.srem(store.members_key(collection), record_id)
            for (index, key), value in self._index_writes.items():
                if value is None:
                    self._pipe.delete(store.index_key(index, key))
                else:
                    self._pipe.set(store.index_key(index, key), value)
            for (counter, member), value in self._counter_sets.items():
                self._pipe.hset(store.counter_key(counter), member, value)
            for (counter, member), delta in self._counter_deltas.items():
                if (counter, member) in floored:
                    self._pipe.hset(store.counter_key(counter), member, floored[(counter, member)])
                elif delta:
                    self._pipe.hincrby(store.counter_key(counter), member, delta)
            await self._pipe.execute()
        except WatchError as exc:
            logger.warning("Optimistic commit aborted, a watched key changed")
            raise ConflictError("watched records") from exc
        finally:
            await self._pipe.reset()

    async def _release(self) -> None:
        await self._pipe.reset()


class RedisStore(DocumentStore):
    """DocumentStore on a redis.asyncio client created with decode_responses=True."""

    def __init__(self, client: Redis, namespace: str = "loandesk"):
        self.client = client
        self.namespace = namespace

    @classmethod
    async def connect(cls, namespace: str = "loandesk", **redis_kwargs) -> "RedisStore":
        """Connect with get_redis_client (REDIS_* environment by default)."""
        client = await get_redis_client(**redis_kwargs)
        logger.info(f"RedisStore ready: namespace={namespace}")
        return cls(client, namespace=namespace)

    # ------------------------------------------------------------
    # Key layout
    # ------------------------------------------------------------
    def doc_key(self, collection: str, record_id: str) -> str:
        return f"{self.namespace}:{collection}:{record_id}"

    def members_key(self, collection: str) -> str:
        return f"{self.namespace}:{collection}:_members"

    def index_key(self, index: str, key: str) -> str:
        return f"{self.namespace}:index:{index}:{key}"

    def counter_key(self, counter: str) -> str:
        return f"{self.namespace}:counter:{counter}"

    def sequence_key(self, name: str) -> str:
        return f"{self.namespace}:seq:{name}"

    async def _load_many(self, reader, collection: str, ids: Iterable[str]) -> List[Record]:
        ordered = sorted(ids)
        if not ordered:
            return []
        raws = await reader.mget([self.doc_key(collection, record_id) for record_id in ordered])
        return [record for record in map(_decode, raws) if record is not None]

    # ------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------
    def transaction(self) -> Transaction:
        return RedisTransaction(self)

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        return _decode(await self.client.get(self.doc_key(collection, record_id)))

    async def scan(self, collection: str) -> List[Record]:
        ids = await self.client.smembers(self.members_key(collection))
        return await self._load_many(self.client, collection, ids)

    async def lookup(self, index: str, key: str) -> Optional[str]:
        return await self.client.get(self.index_key(index, key))

    async def get_counter(self, counter: str, member: str) -> int:
        return int(await self.client.hget(self.counter_key(counter), member) or 0)

    async def get_counters(self, counter: str) -> Dict[str, int]:
        raw = await self.client.hgetall(self.counter_key(counter))
        return {member: int(value) for member, value in raw.items()}

    async def next_sequence(self, name: str) -> int:
        return int(await self.client.incr(self.sequence_key(name)))

    async def close(self) -> None:
        await self.client.aclose()


def _decode(raw: Optional[str]) -> Optional[Record]:
    return json.loads(raw) if raw else None
