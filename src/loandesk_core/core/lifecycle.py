"""Status Lifecycle Controller.

Enforces the allowed status moves (see models.case.ALLOWED_TRANSITIONS),
keeps resolutionDate consistent with status, and appends one timeline entry
per move. Leaving CLOSED is only possible through reopen(), an admin
operation recorded with its own timeline kind.
"""

import logging
from datetime import datetime
from typing import Optional, Union

from loandesk_core.errors import IllegalTransitionError, PermissionDeniedError, ValidationError
from loandesk_core.infrastructure.store import DocumentStore
from loandesk_core.models.case import (
    REOPEN_TARGETS,
    CaseRecord,
    CaseStatus,
    TimelineEntry,
    TimelineKind,
    is_valid_transition,
)
from loandesk_core.models.common import Actor, utc_now
from loandesk_core.core.records import CASES, dump, load_case_in, revalidate

logger = logging.getLogger(__name__)


def coerce_status(value: Union[str, CaseStatus], field: str = "status") -> CaseStatus:
    try:
        return CaseStatus(value)
    except ValueError:
        allowed = [s.value for s in CaseStatus]
        raise ValidationError.single(field, f"Unknown status '{value}', expected one of {allowed}")


def check_transition(record: CaseRecord, to_status: CaseStatus) -> None:
    if not is_valid_transition(record.status, to_status):
        raise IllegalTransitionError(record.status, to_status)


def apply_transition(
    record: CaseRecord,
    to_status: CaseStatus,
    actor: Actor,
    note: Optional[str] = None,
    kind: TimelineKind = TimelineKind.TRANSITION,
    now: Optional[datetime] = None,
) -> TimelineEntry:
    """Move record to to_status in place. Callers validate the move first.

    Entering RESOLVED/CLOSED stamps resolutionDate if unset; moving back to
    an earlier state clears it.
    """
    now = now or utc_now()
    from_status = record.status
    record.status = to_status
    if to_status.requires_resolution_date:
        if record.resolution_date is None:
            record.resolution_date = now
    else:
        record.resolution_date = None

    entry = TimelineEntry(
        date=now,
        kind=kind,
        note=note or f"Status changed from {from_status.value} to {to_status.value}",
        actor=actor.user_id,
        actor_name=actor.name,
        from_status=from_status,
        to_status=to_status,
    )
    record.append_timeline(entry)
    record.updated_at = now
    return entry


class StatusLifecycleController:
    """Status moves on stored cases."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def transition(
        self,
        case_id: str,
        new_status: Union[str, CaseStatus],
        actor: Actor,
        note: Optional[str] = None,
    ) -> CaseRecord:
        """Apply a normal transition.

        Raises:
            IllegalTransitionError: (from, to) not in the allowed set
            NotFoundError: case does not exist
            ConflictError: the case changed concurrently
        """
        to_status = coerce_status(new_status)
        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)
            from_status = record.status
            check_transition(record, to_status)
            apply_transition(record, to_status, actor, note=note)
            record = revalidate(record)
            tx.put(CASES, case_id, dump(record))

        logger.info(
            f"Case {case_id} transitioned {from_status.value} -> {to_status.value} by {actor.user_id}"
        )
        return record

    async def reopen(
        self,
        case_id: str,
        actor: Actor,
        reason: str,
        to_status: Union[str, CaseStatus] = CaseStatus.IN_PROGRESS,
    ) -> CaseRecord:
        """Administrative reopen of a closed case."""
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can reopen closed cases")
        target = coerce_status(to_status)
        if target not in REOPEN_TARGETS:
            raise ValidationError.single(
                "status", f"Reopen target must be one of {[s.value for s in REOPEN_TARGETS]}"
            )
        if not reason or not reason.strip():
            raise ValidationError.single("reason", "Reopen reason is required")

        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)
            if record.status != CaseStatus.CLOSED:
                raise IllegalTransitionError(
                    record.status, target, reason="only closed cases can be reopened"
                )
            apply_transition(
                record,
                target,
                actor,
                note=f"Reopened: {reason.strip()}",
                kind=TimelineKind.REOPEN,
            )
            record = revalidate(record)
            tx.put(CASES, case_id, dump(record))

        logger.warning(f"Case {case_id} reopened to {target.value} by admin {actor.user_id}")
        return record
