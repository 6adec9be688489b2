"""RedisStore against fakeredis: transactional semantics match the in-memory store."""

import fakeredis
import pytest

from loandesk_core.config import CoreSettings
from loandesk_core.core.desk import CaseDesk
from loandesk_core.core.records import REFERRAL_CASES
from loandesk_core.errors import ConflictError, ValidationError
from loandesk_core.infrastructure.redis_setup import parse_sentinel_hosts
from loandesk_core.infrastructure.redis_store import RedisStore
from tests.conftest import make_payload


@pytest.fixture
async def redis_store():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    store = RedisStore(client, namespace="test")
    yield store
    await store.close()


@pytest.fixture
def redis_desk(redis_store):
    return CaseDesk(store=redis_store, settings=CoreSettings(conflict_retry_wait=0.0))


class TestTransactions:
    async def test_commit_and_read_back(self, redis_store):
        async with redis_store.transaction() as tx:
            tx.put("cases", "CASE-0001", {"caseId": "CASE-0001"})
            tx.set_index("document_refs", "uploads/a.pdf", "CASE-0001/panDoc")
            tx.adjust_counter(REFERRAL_CASES, "ref_1", 2)
        assert await redis_store.get("cases", "CASE-0001") == {"caseId": "CASE-0001"}
        assert await redis_store.lookup("document_refs", "uploads/a.pdf") == "CASE-0001/panDoc"
        assert await redis_store.get_counter(REFERRAL_CASES, "ref_1") == 2
        assert [doc["caseId"] for doc in await redis_store.scan("cases")] == ["CASE-0001"]

    async def test_watched_key_conflict(self, redis_store):
        async with redis_store.transaction() as tx:
            tx.put("cases", "CASE-0001", {"v": 1})

        loser = redis_store.transaction()
        await loser.get("cases", "CASE-0001")
        async with redis_store.transaction() as winner:
            await winner.get("cases", "CASE-0001")
            winner.put("cases", "CASE-0001", {"v": 2})

        loser.put("cases", "CASE-0001", {"v": 3})
        with pytest.raises(ConflictError):
            await loser.commit()
        assert await redis_store.get("cases", "CASE-0001") == {"v": 2}

    async def test_failed_block_writes_nothing(self, redis_store):
        with pytest.raises(RuntimeError):
            async with redis_store.transaction() as tx:
                tx.put("cases", "CASE-0001", {"v": 1})
                raise RuntimeError("boom")
        assert await redis_store.get("cases", "CASE-0001") is None

    async def test_decrement_floors_at_zero(self, redis_store):
        async with redis_store.transaction() as tx:
            tx.adjust_counter(REFERRAL_CASES, "ref_1", 1)
        async with redis_store.transaction() as tx:
            tx.adjust_counter(REFERRAL_CASES, "ref_1", -3)
        assert await redis_store.get_counter(REFERRAL_CASES, "ref_1") == 0

    async def test_delete_removes_member(self, redis_store):
        async with redis_store.transaction() as tx:
            tx.put("cases", "CASE-0001", {"v": 1})
        async with redis_store.transaction() as tx:
            tx.delete("cases", "CASE-0001")
        assert await redis_store.scan("cases") == []

    async def test_sequences(self, redis_store):
        assert [await redis_store.next_sequence("cases") for _ in range(3)] == [1, 2, 3]


class TestDeskOnRedis:
    async def test_case_with_referral_round_trip(self, redis_desk, telecaller, admin):
        case = await redis_desk.cases.create_case(
            make_payload(referral={"name": "Vijay Kumar", "phone": "9988776655"}), telecaller
        )
        assert case.case_id == "CASE-0001"
        assert (await redis_desk.referrals.get_referral(case.referral_id)).cases == 1

        await redis_desk.documents.attach(case.case_id, "panDoc", "uploads/pan.pdf", admin)
        with pytest.raises(ValidationError):
            await redis_desk.documents.attach(case.case_id, "panDoc", "uploads/other.pdf", admin)

        await redis_desk.cases.delete_case(case.case_id, admin)
        assert (await redis_desk.referrals.get_referral(case.referral_id)).cases == 0
        assert await redis_desk.cases.list_cases() == []

    async def test_reconcile(self, redis_desk, redis_store, telecaller):
        case = await redis_desk.cases.create_case(make_payload(referral={"name": "Vijay"}), telecaller)
        await redis_store.client.hset(redis_store.counter_key(REFERRAL_CASES), case.referral_id, 5)
        report = await redis_desk.referrals.reconcile()
        assert [(c.recorded, c.actual) for c in report.corrections] == [(5, 1)]


@pytest.mark.parametrize("raw,expected", [
    ("", []),
    ("redis-1:26379", [("redis-1", 26379)]),
    ("a:1, b , c:3", [("a", 1), ("b", 26379), ("c", 3)]),
])
def test_parse_sentinel_hosts(raw, expected):
    assert parse_sentinel_hosts(raw) == expected
