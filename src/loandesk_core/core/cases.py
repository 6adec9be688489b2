"""Case Record Store.

The canonical per-case write path. Creation and deletion carry the
referral counter adjustment in the same transaction as the case write, so
either both persist or neither does; both retry once on a lost race.
Updates, assignment, notes and call records surface conflicts to the
caller instead of retrying.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from loandesk_core.config import CoreSettings
from loandesk_core.errors import (
    FieldViolation,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from loandesk_core.infrastructure.store import DocumentStore
from loandesk_core.models.api_models import (
    IMMUTABLE_FIELDS,
    NON_NULLABLE_PATCH_FIELDS,
    CallRequest,
    CaseCreateRequest,
    CaseFilter,
    CaseUpdateRequest,
    NoteRequest,
)
from loandesk_core.models.case import (
    FIXED_DOCUMENT_SLOTS,
    CallRecord,
    CaseRecord,
    CaseStatus,
    FileField,
    TimelineEntry,
    TimelineKind,
    bank_detail_violations,
)
from loandesk_core.models.common import (
    Actor,
    id_sequence,
    raise_validation,
    utc_now,
    violations_from_pydantic,
)
from loandesk_core.core.documents import DocumentAssociationManager
from loandesk_core.core.lifecycle import apply_transition, check_transition
from loandesk_core.core.records import CASES, dump, load_case_in, revalidate
from loandesk_core.core.referrals import ReferralLedger
from loandesk_core.utils import run_with_conflict_retry

logger = logging.getLogger(__name__)

CaseInput = Union[CaseCreateRequest, Mapping[str, Any]]

# Writing either score stamps cibil_updated_at
CIBIL_HISTORY_FIELDS = ("cibil_before", "cibil_after")


def _pick(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in raw:
            return raw[name]
    return None


def _cross_field_violations(raw: Mapping[str, Any], max_file_fields: int) -> List[FieldViolation]:
    """Constraints spanning several intake fields, checked on the raw payload
    so they are reported alongside per-field errors."""
    violations = []

    banks = _pick(raw, "banks") or []
    other_banks = _pick(raw, "otherBanks", "other_banks") or []
    details = _pick(raw, "bankDetails", "bank_details") or {}
    if isinstance(banks, list) and isinstance(other_banks, list) and isinstance(details, dict):
        bank_values = [getattr(b, "value", b) for b in banks]
        other_values = [o.strip() for o in other_banks if isinstance(o, str)]
        for bank in bank_detail_violations(bank_values, other_values, details):
            violations.append(FieldViolation(
                f"bankDetails.{bank}", "Bank is not part of the case's bank set"
            ))

    custom_fields = _pick(raw, "customFields", "custom_fields") or []
    if isinstance(custom_fields, list):
        file_fields = [f for f in custom_fields if isinstance(f, Mapping) and f.get("type") == "file"]
        if len(file_fields) > max_file_fields:
            violations.append(FieldViolation(
                "customFields", f"At most {max_file_fields} file fields are allowed per case"
            ))

    documents = _pick(raw, "documents") or {}
    if isinstance(documents, Mapping):
        for slot in documents:
            if slot not in FIXED_DOCUMENT_SLOTS:
                violations.append(FieldViolation(
                    f"documents.{slot}",
                    f"Unknown document slot; expected one of {list(FIXED_DOCUMENT_SLOTS)}",
                ))
    return violations


def parse_case_input(payload: CaseInput, max_file_fields: int = 5) -> CaseCreateRequest:
    """Validate an intake payload, reporting every violated constraint."""
    if isinstance(payload, CaseCreateRequest):
        payload = dump(payload)
    if not isinstance(payload, Mapping):
        raise ValidationError.single("__root__", "Case input must be an object")

    violations: List[FieldViolation] = []
    request = None
    try:
        request = CaseCreateRequest.model_validate(payload)
    except PydanticValidationError as exc:
        violations.extend(violations_from_pydantic(exc))
    violations.extend(_cross_field_violations(payload, max_file_fields))
    if violations:
        raise ValidationError(violations)
    return request


class CaseRecordStore:
    """Create, update, delete and query cases."""

    def __init__(
        self,
        store: DocumentStore,
        referrals: ReferralLedger,
        documents: DocumentAssociationManager,
        settings: Optional[CoreSettings] = None,
    ):
        self._store = store
        self._referrals = referrals
        self._documents = documents
        self._settings = settings or CoreSettings()

    async def _retrying(self, fn, *args):
        return await run_with_conflict_retry(
            fn,
            *args,
            max_attempts=self._settings.conflict_retry_attempts,
            max_wait=self._settings.conflict_retry_wait,
        )

    # ============================================================
    # Create
    # ============================================================
    async def create_case(self, payload: CaseInput, actor: Actor) -> CaseRecord:
        """Validate and persist a new case.

        When a referral is named it is resolved (or auto-created) and its
        counter incremented in the same transaction as the case write.

        Raises:
            ValidationError: listing every violated field constraint
            ConflictError: still losing the race after the internal retry
        """
        request = parse_case_input(payload, self._settings.max_file_custom_fields)
        record = await self._retrying(self._create_once, request, actor)
        logger.info(
            f"Case {record.case_id} created by {actor.user_id}"
            + (f" (referral {record.referral_id})" if record.referral_id else "")
        )
        return record

    async def _create_once(self, request: CaseCreateRequest, actor: Actor) -> CaseRecord:
        seq = await self._store.next_sequence(CASES)
        case_id = f"{self._settings.case_id_prefix}-{seq:04d}"
        now = utc_now()

        fields = request.model_dump(exclude={"referral", "documents", "status"})
        cibil_written = any(fields[k] is not None for k in CIBIL_HISTORY_FIELDS)
        try:
            record = CaseRecord(
                **fields,
                case_id=case_id,
                status=request.status,
                resolution_date=now if request.status.requires_resolution_date else None,
                assigned_at=now if request.assigned_to else None,
                cibil_updated_at=now if cibil_written else None,
                created_by=actor.user_id,
                created_by_name=actor.name,
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as exc:
            raise_validation(exc)
        for slot, ref in request.documents.items():
            record.set_slot(slot, ref)

        async with self._store.transaction() as tx:
            await self._documents.claim_in(tx, record)

            if request.referral is not None:
                referral = await self._referrals.resolve_in(tx, request.referral)
                record.referral_id = referral.referral_id
                record.referrer_name = request.referral.name
                record.referrer_phone = request.referral.phone
                self._referrals.adjust_in(tx, referral.referral_id, 1)

            note = "Case created"
            if request.status != CaseStatus.NEW:
                note = f"Case created with status {request.status.value}"
            record.append_timeline(TimelineEntry(
                date=now,
                kind=TimelineKind.CREATED,
                note=note,
                actor=actor.user_id,
                actor_name=actor.name,
                to_status=request.status,
            ))
            record = revalidate(record)
            tx.put(CASES, case_id, dump(record))
        return record

    # ============================================================
    # Update
    # ============================================================
    async def update_case(self, case_id: str, patch: Mapping[str, Any], actor: Actor) -> CaseRecord:
        """Apply a partial update; only the touched fields are re-validated.

        A status in the patch goes through the lifecycle rules. resolutionDate
        may only be set while the (resulting) status is resolved or closed.

        Raises:
            ValidationError: bad field values, immutable fields, or an
                inconsistent resolutionDate
            IllegalTransitionError: status change not allowed
            NotFoundError: case does not exist
        """
        if not isinstance(patch, Mapping):
            raise ValidationError.single("__root__", "Patch must be an object")

        violations = [
            FieldViolation(key, "Field cannot be changed")
            for key in patch if key in IMMUTABLE_FIELDS
        ]
        changes: Dict[str, Any] = {}
        try:
            request = CaseUpdateRequest.model_validate(
                {k: v for k, v in patch.items() if k not in IMMUTABLE_FIELDS}
            )
            changes = request.model_dump(exclude_unset=True)
        except PydanticValidationError as exc:
            request = None
            violations.extend(violations_from_pydantic(exc))
        for key, value in changes.items():
            if value is None and key in NON_NULLABLE_PATCH_FIELDS:
                violations.append(FieldViolation(key, "Field cannot be cleared"))
        if violations:
            raise ValidationError(violations)

        now = utc_now()
        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)

            new_status = changes.pop("status", None)
            touches_resolution = "resolution_date" in changes
            resolution_date = changes.pop("resolution_date", None)
            if "custom_fields" in changes:
                changes["custom_fields"] = self._merge_custom_fields(record, request)

            data = record.model_dump()
            data.update(changes)
            if any(k in changes for k in CIBIL_HISTORY_FIELDS):
                data["cibil_updated_at"] = now
            try:
                record = CaseRecord.model_validate(data)
            except PydanticValidationError as exc:
                raise_validation(exc)

            if changes:
                record.append_timeline(TimelineEntry(
                    date=now,
                    kind=TimelineKind.UPDATE,
                    note="Updated " + ", ".join(sorted(changes)),
                    actor=actor.user_id,
                    actor_name=actor.name,
                ))
            if new_status is not None and new_status != record.status:
                check_transition(record, new_status)
                apply_transition(record, new_status, actor, now=now)

            if touches_resolution:
                if resolution_date is None and record.status.requires_resolution_date:
                    raise ValidationError.single(
                        "resolutionDate", f"Cannot clear resolutionDate while {record.status.value}"
                    )
                if resolution_date is not None and not record.status.requires_resolution_date:
                    raise ValidationError.single(
                        "resolutionDate",
                        f"resolutionDate can only be set when resolved or closed "
                        f"(current: {record.status.value})",
                    )
                record.resolution_date = resolution_date

            record.updated_at = now
            record = revalidate(record)
            tx.put(CASES, case_id, dump(record))

        logger.info(f"Case {case_id} updated by {actor.user_id}")
        return record

    def _merge_custom_fields(self, record: CaseRecord, request: CaseUpdateRequest) -> List[Dict[str, Any]]:
        """Replace custom fields while keeping document references untouched.

        File values only change through the document manager, so existing
        file fields keep their reference and new ones start empty.
        """
        current = {f.field_id: f for f in record.file_fields}
        incoming = request.custom_fields or []
        violations = []
        merged = []
        for index, field in enumerate(incoming):
            if isinstance(field, FileField):
                existing = current.get(field.field_id)
                held = existing.value if existing else None
                if field.value is not None and field.value != held:
                    violations.append(FieldViolation(
                        f"customFields.{index}.value",
                        "File references are attached through the document slots",
                    ))
                field = field.model_copy(update={"value": held})
            merged.append(field.model_dump())

        kept = {f.field_id for f in incoming if isinstance(f, FileField)}
        for field_id, field in current.items():
            if field.value and field_id not in kept:
                violations.append(FieldViolation(
                    f"customFields.{field_id}", "Detach the document before removing this field"
                ))

        file_count = sum(1 for f in incoming if isinstance(f, FileField))
        if file_count > self._settings.max_file_custom_fields:
            violations.append(FieldViolation(
                "customFields",
                f"At most {self._settings.max_file_custom_fields} file fields are allowed per case",
            ))
        if violations:
            raise ValidationError(violations)
        return merged

    # ============================================================
    # Delete
    # ============================================================
    async def delete_case(self, case_id: str, actor: Actor) -> CaseRecord:
        """Remove a case, releasing its documents and its referral credit."""
        record = await self._retrying(self._delete_once, case_id)
        logger.info(
            f"Case {case_id} deleted by {actor.user_id}"
            + (f" (referral {record.referral_id} decremented)" if record.referral_id else "")
        )
        return record

    async def _delete_once(self, case_id: str) -> CaseRecord:
        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)
            tx.delete(CASES, case_id)
            self._documents.release_all_in(tx, record)
            if record.referral_id:
                self._referrals.adjust_in(tx, record.referral_id, -1)
        return record

    # ============================================================
    # Reads
    # ============================================================
    async def get_case(self, case_id: str) -> CaseRecord:
        doc = await self._store.get(CASES, case_id)
        if doc is None:
            raise NotFoundError("Case", case_id)
        return CaseRecord.model_validate(doc)

    async def list_cases(self, case_filter: Optional[CaseFilter] = None) -> List[CaseRecord]:
        """Cases matching the filter, oldest first."""
        case_filter = case_filter or CaseFilter()
        records = [CaseRecord.model_validate(doc) for doc in await self._store.scan(CASES)]
        matched = [r for r in records if case_filter.matches(r)]
        matched.sort(key=lambda r: (r.created_at, id_sequence(r.case_id)))
        logger.debug(f"list_cases matched {len(matched)} of {len(records)}")
        return matched

    # ============================================================
    # Assignment and activity
    # ============================================================
    async def assign_case(
        self,
        case_id: str,
        assignee_id: str,
        actor: Actor,
        assignee_name: Optional[str] = None,
    ) -> CaseRecord:
        """Assign a case to an officer; a NEW case moves to IN_PROGRESS."""
        if not assignee_id or not assignee_id.strip():
            raise ValidationError.single("assigneeId", "Assignee is required")

        now = utc_now()
        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)
            if record.status.is_terminal:
                raise IllegalTransitionError(
                    record.status, CaseStatus.IN_PROGRESS, reason="closed cases cannot be assigned"
                )
            record.assigned_to = assignee_id.strip()
            record.assigned_to_name = assignee_name
            record.assigned_at = now
            record.append_timeline(TimelineEntry(
                date=now,
                kind=TimelineKind.ASSIGNMENT,
                note=f"Case assigned to {assignee_name or assignee_id}",
                actor=actor.user_id,
                actor_name=actor.name,
            ))
            if record.status == CaseStatus.NEW:
                apply_transition(
                    record, CaseStatus.IN_PROGRESS, actor,
                    note="Moved to in-progress on assignment", now=now,
                )
            record.updated_at = now
            record = revalidate(record)
            tx.put(CASES, case_id, dump(record))

        logger.info(f"Case {case_id} assigned to {assignee_id} by {actor.user_id}")
        return record

    async def add_note(self, case_id: str, actor: Actor, text: str) -> CaseRecord:
        try:
            note = NoteRequest(text=text)
        except PydanticValidationError as exc:
            raise_validation(exc)

        now = utc_now()
        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)
            record.append_timeline(TimelineEntry(
                date=now,
                kind=TimelineKind.NOTE,
                note=note.text,
                actor=actor.user_id,
                actor_name=actor.name,
            ))
            record.updated_at = now
            record = revalidate(record)
            tx.put(CASES, case_id, dump(record))
        return record

    async def record_call(
        self,
        case_id: str,
        actor: Actor,
        response: str,
        next_call_date=None,
    ) -> CaseRecord:
        """Log a call outcome; a next call date becomes the follow-up date."""
        try:
            call = CallRequest(response=response, next_call_date=next_call_date)
        except PydanticValidationError as exc:
            raise_validation(exc)

        now = utc_now()
        if call.next_call_date is not None:
            next_date = call.next_call_date
            if next_date.tzinfo is None:
                next_date = next_date.replace(tzinfo=now.tzinfo)
            if next_date < now:
                raise ValidationError.single("nextCallDate", "Next call date must be in the future")
            call = call.model_copy(update={"next_call_date": next_date})

        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)
            record.call_history.append(CallRecord(
                response=call.response,
                next_call_date=call.next_call_date,
                recorded_at=now,
                actor=actor.user_id,
            ))
            if call.next_call_date is not None:
                record.follow_up_date = call.next_call_date
            record.append_timeline(TimelineEntry(
                date=now,
                kind=TimelineKind.CALL,
                note=f"Call logged: {call.response}"[:2000],
                actor=actor.user_id,
                actor_name=actor.name,
            ))
            record.updated_at = now
            record = revalidate(record)
            tx.put(CASES, case_id, dump(record))
        return record
