"""Request/Reply Thread Manager."""

import pytest

from loandesk_core.errors import NotFoundError, PermissionDeniedError, ValidationError
from loandesk_core.models import ThreadStatus
from tests.conftest import make_payload


class TestOpen:
    async def test_open_thread(self, desk, case, telecaller):
        thread = await desk.threads.open(case.case_id, telecaller, "Customer wants EMI holiday details")
        assert thread.thread_id == "REQ-000001"
        assert thread.status == ThreadStatus.OPEN
        assert thread.agent_id == telecaller.user_id
        assert thread.admin_response is None

    async def test_requires_message(self, desk, case, telecaller):
        with pytest.raises(ValidationError):
            await desk.threads.open(case.case_id, telecaller, "   ")

    async def test_requires_existing_case(self, desk, telecaller):
        with pytest.raises(NotFoundError):
            await desk.threads.open("CASE-9999", telecaller, "Hello")
        assert await desk.threads.list_open() == []


class TestReply:
    async def test_reply_answers_thread(self, desk, case, telecaller, admin):
        thread = await desk.threads.open(case.case_id, telecaller, "Need approval")
        answered = await desk.threads.reply(thread.thread_id, admin, "Approved")
        assert answered.status == ThreadStatus.ANSWERED
        assert answered.admin_response == "Approved"
        assert answered.responded_by == admin.user_id
        assert answered.responded_at is not None
        assert answered.message == "Need approval"

    async def test_second_reply_overwrites_and_keeps_history(self, desk, case, telecaller, admin):
        thread = await desk.threads.open(case.case_id, telecaller, "Need approval")
        await desk.threads.reply(thread.thread_id, admin, "Approved")
        again = await desk.threads.reply(thread.thread_id, admin, "Approved with conditions")
        assert again.status == ThreadStatus.ANSWERED
        assert again.admin_response == "Approved with conditions"
        assert [r.text for r in again.reply_history] == ["Approved"]

    async def test_reply_requires_admin(self, desk, case, telecaller, officer):
        thread = await desk.threads.open(case.case_id, telecaller, "Need approval")
        with pytest.raises(PermissionDeniedError):
            await desk.threads.reply(thread.thread_id, officer, "ok")

    async def test_reply_validation(self, desk, case, telecaller, admin):
        thread = await desk.threads.open(case.case_id, telecaller, "Need approval")
        with pytest.raises(ValidationError):
            await desk.threads.reply(thread.thread_id, admin, "")
        with pytest.raises(NotFoundError):
            await desk.threads.reply("REQ-999999", admin, "ok")


class TestListing:
    async def test_fifo_order_and_projections(self, desk, telecaller, admin):
        first_case = await desk.cases.create_case(make_payload(), telecaller)
        second_case = await desk.cases.create_case(make_payload(), telecaller)
        t1 = await desk.threads.open(first_case.case_id, telecaller, "one")
        t2 = await desk.threads.open(second_case.case_id, telecaller, "two")
        t3 = await desk.threads.open(first_case.case_id, telecaller, "three")

        by_case = await desk.threads.list_by_case(first_case.case_id)
        assert [t.thread_id for t in by_case] == [t1.thread_id, t3.thread_id]

        await desk.threads.reply(t1.thread_id, admin, "done")
        assert [t.thread_id for t in await desk.threads.list_open()] == [t2.thread_id, t3.thread_id]

    async def test_get_thread(self, desk, case, telecaller):
        thread = await desk.threads.open(case.case_id, telecaller, "one")
        assert await desk.threads.get_thread(thread.thread_id) == thread
        with pytest.raises(NotFoundError):
            await desk.threads.get_thread("REQ-999999")
