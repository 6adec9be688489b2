"""CaseServiceClient against the in-process API."""

import httpx
import pytest

from loandesk_core.api import create_app
from loandesk_core.clients import CaseServiceClient
from loandesk_core.models import CaseFilter, CaseStatus, ThreadStatus
from tests.conftest import make_payload


@pytest.fixture
def service(desk):
    transport = httpx.ASGITransport(app=create_app(desk))
    return CaseServiceClient(base_url="http://testserver", transport=transport)


async def test_case_round_trip(service, telecaller, admin):
    created = await service.create_case(
        make_payload(referral={"name": "Vijay Kumar", "phone": "9988776655"}), actor=telecaller
    )
    assert created.case_id == "CASE-0001"
    assert created.created_by_name == "Priya"

    fetched = await service.get_case(created.case_id, actor=telecaller)
    assert fetched == created

    moved = await service.transition(created.case_id, CaseStatus.IN_PROGRESS, actor=admin)
    assert moved.status == CaseStatus.IN_PROGRESS

    listed = await service.list_cases(CaseFilter(status=[CaseStatus.IN_PROGRESS]), actor=admin)
    assert [c.case_id for c in listed] == [created.case_id]

    [referral] = await service.list_referrals()
    assert referral.cases == 1

    assert await service.delete_case(created.case_id, actor=admin)
    assert (await service.get_referral(referral.referral_id)).cases == 0


async def test_documents_and_threads(service, telecaller, admin):
    case = await service.create_case(make_payload(), actor=telecaller)

    slot = await service.attach_document(case.case_id, "aadhaarDoc", "uploads/a.pdf", actor=telecaller)
    assert slot.document_ref == "uploads/a.pdf"
    detached = await service.detach_document(case.case_id, "aadhaarDoc", actor=telecaller)
    assert detached.previous_ref == "uploads/a.pdf"

    thread = await service.open_thread(case.case_id, "Need approval", actor=telecaller)
    answered = await service.reply_thread(thread.thread_id, "Approved", actor=admin)
    assert answered.status == ThreadStatus.ANSWERED
    assert [t.thread_id for t in await service.list_case_threads(case.case_id)] == [thread.thread_id]


async def test_errors_raise_http_status(service, telecaller):
    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        await service.get_case("CASE-9999", actor=telecaller)
    assert exc_info.value.response.status_code == 404
    assert exc_info.value.response.json()["error"] == "not_found"


def test_headers_carry_actor(service, admin):
    headers = service._headers(actor=admin, correlation_id="corr-1")
    assert headers["X-User-ID"] == "adm-1"
    assert headers["X-User-Roles"] == '["admin"]'
    assert headers["X-User-Name"] == "Meera"
    assert headers["X-Correlation-ID"] == "corr-1"
