"""Document Association Manager: slots, ownership and concurrent attaches."""

import asyncio

import pytest

from loandesk_core.errors import ConflictError, NotFoundError, ValidationError
from loandesk_core.models import TimelineKind
from tests.conftest import make_payload


class TestAttach:
    async def test_attach_to_empty_slot(self, desk, case, officer):
        previous = await desk.documents.attach(case.case_id, "aadhaarDoc", "uploads/aadhaar.pdf", officer)
        assert previous is None
        stored = await desk.cases.get_case(case.case_id)
        assert stored.documents.aadhaar_doc == "uploads/aadhaar.pdf"
        assert stored.timeline[-1].kind == TimelineKind.DOCUMENT

    async def test_occupied_slot_requires_overwrite(self, desk, case, officer):
        await desk.documents.attach(case.case_id, "panDoc", "uploads/pan-1.pdf", officer)
        with pytest.raises(ValidationError):
            await desk.documents.attach(case.case_id, "panDoc", "uploads/pan-2.pdf", officer)
        assert (await desk.cases.get_case(case.case_id)).documents.pan_doc == "uploads/pan-1.pdf"

    async def test_replace_returns_previous(self, desk, case, officer):
        await desk.documents.attach(case.case_id, "panDoc", "uploads/pan-1.pdf", officer)
        previous = await desk.documents.replace(case.case_id, "panDoc", "uploads/pan-2.pdf", officer)
        assert previous == "uploads/pan-1.pdf"
        assert (await desk.cases.get_case(case.case_id)).documents.pan_doc == "uploads/pan-2.pdf"
        # the replaced reference is free again
        other = await desk.cases.create_case(make_payload(), officer)
        await desk.documents.attach(other.case_id, "panDoc", "uploads/pan-1.pdf", officer)

    async def test_unknown_slot(self, desk, case, officer):
        with pytest.raises(ValidationError) as exc_info:
            await desk.documents.attach(case.case_id, "passportDoc", "uploads/p.pdf", officer)
        assert exc_info.value.fields == ["slot"]

    async def test_file_custom_field_is_a_slot(self, desk, telecaller, officer):
        case = await desk.cases.create_case(
            make_payload(customFields=[
                {"type": "file", "label": "Salary slip", "fieldId": "salarySlip"},
                {"type": "text", "label": "Branch", "fieldId": "branch"},
            ]),
            telecaller,
        )
        await desk.documents.attach(case.case_id, "salarySlip", "uploads/slip.pdf", officer)
        assert (await desk.cases.get_case(case.case_id)).get_slot("salarySlip") == "uploads/slip.pdf"
        with pytest.raises(ValidationError):
            await desk.documents.attach(case.case_id, "branch", "uploads/x.pdf", officer)

    async def test_reference_never_aliased_across_cases(self, desk, telecaller, officer):
        first = await desk.cases.create_case(make_payload(), telecaller)
        second = await desk.cases.create_case(make_payload(), telecaller)
        await desk.documents.attach(first.case_id, "panDoc", "uploads/shared.pdf", officer)
        with pytest.raises(ValidationError):
            await desk.documents.attach(second.case_id, "panDoc", "uploads/shared.pdf", officer)
        with pytest.raises(ValidationError):
            await desk.documents.attach(first.case_id, "additionalDoc", "uploads/shared.pdf", officer)

    async def test_missing_case(self, desk, officer):
        with pytest.raises(NotFoundError):
            await desk.documents.attach("CASE-9999", "panDoc", "uploads/p.pdf", officer)

    async def test_concurrent_attach_single_winner(self, desk, case, officer):
        results = await asyncio.gather(
            desk.documents.attach(case.case_id, "aadhaarDoc", "uploads/refA.pdf", officer),
            desk.documents.attach(case.case_id, "aadhaarDoc", "uploads/refB.pdf", officer),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], (ConflictError, ValidationError))

        stored = await desk.cases.get_case(case.case_id)
        winner = "uploads/refA.pdf" if results[0] is None else "uploads/refB.pdf"
        assert stored.documents.aadhaar_doc == winner


class TestDetach:
    async def test_detach_returns_previous(self, desk, case, officer):
        await desk.documents.attach(case.case_id, "accountStatementDoc", "uploads/stmt.pdf", officer)
        previous = await desk.documents.detach(case.case_id, "accountStatementDoc", officer)
        assert previous == "uploads/stmt.pdf"
        assert (await desk.cases.get_case(case.case_id)).documents.account_statement_doc is None

    async def test_detach_empty_slot(self, desk, case, officer):
        assert await desk.documents.detach(case.case_id, "additionalDoc", officer) is None

    async def test_detached_reference_can_be_reused(self, desk, case, officer):
        await desk.documents.attach(case.case_id, "panDoc", "uploads/pan.pdf", officer)
        await desk.documents.detach(case.case_id, "panDoc", officer)
        await desk.documents.attach(case.case_id, "additionalDoc", "uploads/pan.pdf", officer)
