"""Status Lifecycle Controller: allowed moves, resolution dates and reopen."""

import pytest

from loandesk_core.errors import IllegalTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from loandesk_core.models import CaseStatus, TimelineKind


async def _walk(desk, case_id, actor, *statuses):
    record = None
    for status in statuses:
        record = await desk.lifecycle.transition(case_id, status, actor)
    return record


class TestTransition:
    async def test_resolve_sets_resolution_date_and_logs(self, desk, case, officer):
        await desk.lifecycle.transition(case.case_id, "in-progress", officer)
        resolved = await desk.lifecycle.transition(case.case_id, "resolved", officer)
        assert resolved.status == CaseStatus.RESOLVED
        assert resolved.resolution_date is not None
        entry = resolved.timeline[-1]
        assert entry.kind == TimelineKind.TRANSITION
        assert (entry.from_status, entry.to_status) == (CaseStatus.IN_PROGRESS, CaseStatus.RESOLVED)
        assert entry.actor == officer.user_id

        with pytest.raises(IllegalTransitionError) as exc_info:
            await desk.lifecycle.transition(case.case_id, "new", officer)
        assert (exc_info.value.from_status, exc_info.value.to_status) == ("resolved", "new")

    async def test_moving_back_clears_resolution_date(self, desk, case, officer):
        await _walk(desk, case.case_id, officer, "in-progress", "resolved")
        reworked = await desk.lifecycle.transition(case.case_id, "in-progress", officer)
        assert reworked.resolution_date is None

    async def test_close_keeps_existing_resolution_date(self, desk, case, officer):
        resolved = await _walk(desk, case.case_id, officer, "in-progress", "resolved")
        closed = await desk.lifecycle.transition(case.case_id, "closed", officer)
        assert closed.resolution_date == resolved.resolution_date

    async def test_closed_is_terminal(self, desk, case, officer):
        await _walk(desk, case.case_id, officer, "in-progress", "resolved", "closed")
        for target in ("new", "in-progress", "resolved"):
            with pytest.raises(IllegalTransitionError):
                await desk.lifecycle.transition(case.case_id, target, officer)

    async def test_rejected_move_leaves_case_unchanged(self, desk, case, officer):
        with pytest.raises(IllegalTransitionError):
            await desk.lifecycle.transition(case.case_id, "resolved", officer)
        assert await desk.cases.get_case(case.case_id) == case

    async def test_unknown_status(self, desk, case, officer):
        with pytest.raises(ValidationError):
            await desk.lifecycle.transition(case.case_id, "archived", officer)

    async def test_missing_case(self, desk, officer):
        with pytest.raises(NotFoundError):
            await desk.lifecycle.transition("CASE-9999", "in-progress", officer)

    async def test_timeline_is_append_only(self, desk, case, officer):
        before = (await desk.cases.get_case(case.case_id)).timeline
        after = (await _walk(desk, case.case_id, officer, "in-progress", "new", "in-progress")).timeline
        assert after[:len(before)] == before
        assert len(after) == len(before) + 3
        assert all(a.date <= b.date for a, b in zip(after, after[1:]))


class TestReopen:
    async def test_admin_reopen(self, desk, case, officer, admin):
        await _walk(desk, case.case_id, officer, "in-progress", "resolved", "closed")
        reopened = await desk.lifecycle.reopen(case.case_id, admin, "Customer disputes closure")
        assert reopened.status == CaseStatus.IN_PROGRESS
        assert reopened.resolution_date is None
        entry = reopened.timeline[-1]
        assert entry.kind == TimelineKind.REOPEN
        assert "Customer disputes closure" in entry.note

    async def test_reopen_to_new(self, desk, case, officer, admin):
        await _walk(desk, case.case_id, officer, "in-progress", "resolved", "closed")
        reopened = await desk.lifecycle.reopen(case.case_id, admin, "Restart", to_status="new")
        assert reopened.status == CaseStatus.NEW

    async def test_reopen_requires_admin(self, desk, case, officer):
        await _walk(desk, case.case_id, officer, "in-progress", "resolved", "closed")
        with pytest.raises(PermissionDeniedError):
            await desk.lifecycle.reopen(case.case_id, officer, "please")

    async def test_reopen_only_closed_cases(self, desk, case, admin):
        with pytest.raises(IllegalTransitionError):
            await desk.lifecycle.reopen(case.case_id, admin, "not closed")

    async def test_reopen_validates_target_and_reason(self, desk, case, officer, admin):
        await _walk(desk, case.case_id, officer, "in-progress", "resolved", "closed")
        with pytest.raises(ValidationError):
            await desk.lifecycle.reopen(case.case_id, admin, "x", to_status="resolved")
        with pytest.raises(ValidationError):
            await desk.lifecycle.reopen(case.case_id, admin, "  ")
