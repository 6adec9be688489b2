"""Repository abstraction with optimistic transactions.

Records are JSON-compatible dicts grouped in named collections. A
transaction watches every key it reads; its buffered writes are applied
all-or-nothing on commit, and a watched key changed by another writer in
the meantime aborts the commit with ConflictError.

Counters are the exception to watching: adjust_counter() deltas are
commutative and applied atomically at commit (decrements floored at zero),
so concurrent increments of the same counter never conflict with each other.

Backends:
- InMemoryStore: process-local, used by tests and local development
- RedisStore (infrastructure.redis_store): WATCH/MULTI/EXEC on redis.asyncio
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from loandesk_core.errors import ConflictError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class Transaction(ABC):
    """Unit of work against a DocumentStore.

    Usage:
        async with store.transaction() as tx:
            case = await tx.get("cases", case_id)
            tx.put("cases", case_id, updated)
        # committed here; ConflictError if a watched key moved
    """

    def __init__(self):
        self._puts: Dict[Tuple[str, str], Record] = {}
        self._deletes: Dict[Tuple[str, str], None] = {}
        self._index_writes: Dict[Tuple[str, str], Optional[str]] = {}
        self._counter_deltas: Dict[Tuple[str, str], int] = {}
        self._counter_sets: Dict[Tuple[str, str], int] = {}
        self._finished = False

    # ------------------------------------------------------------
    # Reads (watched)
    # ------------------------------------------------------------
    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        """Read one record and watch it."""

    @abstractmethod
    async def lookup(self, index: str, key: str) -> Optional[str]:
        """Read one index entry and watch it."""

    @abstractmethod
    async def scan(self, collection: str) -> List[Record]:
        """Read a whole collection and watch its membership."""

    @abstractmethod
    async def get_counters(self, counter: str) -> Dict[str, int]:
        """Read every member of a counter and watch the counter."""

    # ------------------------------------------------------------
    # Buffered writes
    # ------------------------------------------------------------
    def put(self, collection: str, record_id: str, record: Record) -> None:
        key = (collection, record_id)
        self._deletes.pop(key, None)
        self._puts[key] = copy.deepcopy(record)

    def delete(self, collection: str, record_id: str) -> None:
        key = (collection, record_id)
        self._puts.pop(key, None)
        self._deletes[key] = None

    def set_index(self, index: str, key: str, value: str) -> None:
        self._index_writes[(index, key)] = value

    def clear_index(self, index: str, key: str) -> None:
        self._index_writes[(index, key)] = None

    def adjust_counter(self, counter: str, member: str, delta: int) -> None:
        key = (counter, member)
        if key in self._counter_sets:
            self._counter_sets[key] = max(0, self._counter_sets[key] + delta)
            return
        self._counter_deltas[key] = self._counter_deltas.get(key, 0) + delta

    def set_counter(self, counter: str, member: str, value: int) -> None:
        key = (counter, member)
        self._counter_deltas.pop(key, None)
        self._counter_sets[key] = max(0, value)

    @property
    def has_writes(self) -> bool:
        return bool(
            self._puts or self._deletes or self._index_writes
            or self._counter_sets or any(self._counter_deltas.values())
        )

    # ------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------
    async def commit(self) -> None:
        if self._finished:
            raise RuntimeError("Transaction already finished")
        self._finished = True
        if not self.has_writes:
            await self._release()
            return
        await self._apply()

    async def rollback(self) -> None:
        if self._finished:
            return
        self._finished = True
        await self._release()

    @abstractmethod
    async def _apply(self) -> None:
        """Verify watched keys and apply every buffered write atomically."""

    async def _release(self) -> None:
        """Drop watches / connections without writing."""

    async def __aenter__(self) -> "Transaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()
        return False


class DocumentStore(ABC):
    """Shared persistent store consumed by every component."""

    @abstractmethod
    def transaction(self) -> Transaction:
        """Start a new optimistic transaction."""

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        """Unwatched single-record read."""

    @abstractmethod
    async def scan(self, collection: str) -> List[Record]:
        """Unwatched read of a whole collection."""

    @abstractmethod
    async def lookup(self, index: str, key: str) -> Optional[str]:
        """Unwatched index read."""

    @abstractmethod
    async def get_counter(self, counter: str, member: str) -> int:
        """Current counter value (0 when never written)."""

    @abstractmethod
    async def get_counters(self, counter: str) -> Dict[str, int]:
        """Every member of a counter."""

    @abstractmethod
    async def next_sequence(self, name: str) -> int:
        """Atomically allocate the next value of a named sequence (starts at 1)."""

    async def close(self) -> None:
        """Release backend resources."""


# ============================================================
# In-memory backend
# ============================================================

class InMemoryTransaction(Transaction):
    def __init__(self, store: "InMemoryStore"):
        super().__init__()
        self._store = store
        self._watched: Dict[Tuple[str, ...], int] = {}

    def _watch(self, token: Tuple[str, ...]) -> None:
        self._watched.setdefault(token, self._store._versions[token])

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        await asyncio.sleep(0)  # yield like a network round trip would
        self._watch(("doc", collection, record_id))
        return self._store._read(collection, record_id)

    async def lookup(self, index: str, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        self._watch(("index", index, key))
        return self._store._indexes[index].get(key)

    async def scan(self, collection: str) -> List[Record]:
        await asyncio.sleep(0)
        self._watch(("members", collection))
        return self._store._read_all(collection)

    async def get_counters(self, counter: str) -> Dict[str, int]:
        await asyncio.sleep(0)
        self._watch(("counter", counter))
        return dict(self._store._counters[counter])

    async def _apply(self) -> None:
        store = self._store
        async with store._lock:
            for token, version in self._watched.items():
                if store._versions[token] != version:
                    logger.warning(f"Optimistic commit aborted, {':'.join(token)} changed")
                    raise ConflictError(":".join(token[1:]))

            for (collection, record_id), record in self._puts.items():
                docs = store._docs[collection]
                if record_id not in docs:
                    store._bump("members", collection)
                docs[record_id] = record
                store._bump("doc", collection, record_id)

            for collection, record_id in self._deletes:
                if store._docs[collection].pop(record_id, None) is not None:
                    store._bump("members", collection)
                store._bump("doc", collection, record_id)

            for (index, key), value in self._index_writes.items():
                if value is None:
                    store._indexes[index].pop(key, None)
                else:
                    store._indexes[index][key] = value
                store._bump("index", index, key)

            for (counter, member), value in self._counter_sets.items():
                store._counters[counter][member] = value
                store._bump("counter", counter)

            for (counter, member), delta in self._counter_deltas.items():
                if not delta:
                    continue
                current = store._counters[counter].get(member, 0)
                store._counters[counter][member] = max(0, current + delta)
                store._bump("counter", counter)


class InMemoryStore(DocumentStore):
    """Process-local store with the same transactional semantics as Redis."""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Record]] = defaultdict(dict)
        self._indexes: Dict[str, Dict[str, str]] = defaultdict(dict)
        self._counters: Dict[str, Dict[str, int]] = defaultdict(dict)
        self._sequences: Dict[str, int] = defaultdict(int)
        self._versions: Dict[Tuple[str, ...], int] = defaultdict(int)
        self._lock = asyncio.Lock()

    def _bump(self, *token: str) -> None:
        self._versions[token] += 1

    def _read(self, collection: str, record_id: str) -> Optional[Record]:
        record = self._docs[collection].get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def _read_all(self, collection: str) -> List[Record]:
        docs = self._docs[collection]
        return [copy.deepcopy(docs[record_id]) for record_id in sorted(docs)]

    def transaction(self) -> Transaction:
        return InMemoryTransaction(self)

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        return self._read(collection, record_id)

    async def scan(self, collection: str) -> List[Record]:
        return self._read_all(collection)

    async def lookup(self, index: str, key: str) -> Optional[str]:
        return self._indexes[index].get(key)

    async def get_counter(self, counter: str, member: str) -> int:
        return self._counters[counter].get(member, 0)

    async def get_counters(self, counter: str) -> Dict[str, int]:
        return dict(self._counters[counter])

    async def next_sequence(self, name: str) -> int:
        async with self._lock:
            self._sequences[name] += 1
            return self._sequences[name]

    def force_counter(self, counter: str, member: str, value: int) -> None:
        """Overwrite a counter outside any transaction (drift simulation/repair tooling)."""
        self._counters[counter][member] = value
        self._bump("counter", counter)
