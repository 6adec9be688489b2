"""Document Association Manager.

Binds document references (opaque handles issued by the upload service) to
named slots on a case: the four fixed slots plus the case's file-typed
custom fields. A reference belongs to exactly one (case, slot) pair; the
ownership index in the store enforces that across cases.

Replacing a document is an explicit operation. Attaching to an occupied
slot without overwrite is rejected so an earlier upload is never lost
silently. Two concurrent writers on the same case are serialized by the
store: the loser gets ConflictError and must resubmit.
"""

import logging
from typing import List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from loandesk_core.errors import FieldViolation, ValidationError
from loandesk_core.infrastructure.store import DocumentStore, Transaction
from loandesk_core.models.case import CaseRecord, DocumentRef, TimelineEntry, TimelineKind
from loandesk_core.models.common import Actor, raise_validation, utc_now
from loandesk_core.core.records import CASES, DOCUMENT_INDEX, dump, load_case_in, revalidate

logger = logging.getLogger(__name__)

_document_ref = TypeAdapter(DocumentRef)


def _owner(case_id: str, slot: str) -> str:
    return f"{case_id}/{slot}"


def _unknown_slot(record: CaseRecord, slot: str) -> ValidationError:
    return ValidationError.single(
        "slot",
        f"Unknown document slot '{slot}'; expected one of {record.slot_names()}",
    )


class DocumentAssociationManager:
    """Attach, replace and detach document references on case slots."""

    def __init__(self, store: DocumentStore):
        self._store = store

    # ============================================================
    # Transaction-scoped building blocks
    # ============================================================
    async def bind_in(
        self,
        tx: Transaction,
        record: CaseRecord,
        slot: str,
        document_ref: str,
        overwrite: bool = False,
    ) -> Optional[str]:
        """Put document_ref into slot on record; returns the previous reference."""
        try:
            previous = record.get_slot(slot)
        except KeyError:
            raise _unknown_slot(record, slot)
        try:
            document_ref = _document_ref.validate_python(document_ref)
        except PydanticValidationError as exc:
            raise_validation(exc, prefix="documentRef")

        if previous and not overwrite:
            raise ValidationError.single(
                slot, "Slot already holds a document; replace it explicitly to overwrite"
            )
        if previous == document_ref:
            return previous

        owner = await tx.lookup(DOCUMENT_INDEX, document_ref)
        if owner is not None and owner != _owner(record.case_id, slot):
            raise ValidationError.single(slot, f"Document is already attached to {owner}")

        if previous:
            tx.clear_index(DOCUMENT_INDEX, previous)
        tx.set_index(DOCUMENT_INDEX, document_ref, _owner(record.case_id, slot))
        record.set_slot(slot, document_ref)
        return previous

    async def claim_in(self, tx: Transaction, record: CaseRecord) -> None:
        """Register ownership of every reference already on a new record."""
        violations: List[FieldViolation] = []
        seen = {}
        for slot, ref in record.document_refs().items():
            if ref in seen:
                violations.append(FieldViolation(slot, f"Same document also supplied for {seen[ref]}"))
                continue
            seen[ref] = slot
            owner = await tx.lookup(DOCUMENT_INDEX, ref)
            if owner is not None:
                violations.append(FieldViolation(slot, f"Document is already attached to {owner}"))
        if violations:
            raise ValidationError(violations)
        for slot, ref in record.document_refs().items():
            tx.set_index(DOCUMENT_INDEX, ref, _owner(record.case_id, slot))

    def release_all_in(self, tx: Transaction, record: CaseRecord) -> None:
        """Drop ownership of every reference held by record (case deletion)."""
        for ref in record.document_refs().values():
            tx.clear_index(DOCUMENT_INDEX, ref)

    # ============================================================
    # Operations
    # ============================================================
    async def attach(
        self,
        case_id: str,
        slot: str,
        document_ref: str,
        actor: Actor,
        overwrite: bool = False,
    ) -> Optional[str]:
        """Attach a document to a slot.

        Returns:
            The reference previously in the slot (only ever non-None with overwrite)

        Raises:
            ValidationError: unknown slot, occupied slot without overwrite,
                or reference already owned by another slot
            NotFoundError: case does not exist
            ConflictError: a concurrent write to the same case won
        """
        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)
            previous = await self.bind_in(tx, record, slot, document_ref, overwrite=overwrite)
            if previous == document_ref:
                return previous
            now = utc_now()
            verb = "replaced" if previous else "attached"
            record.append_timeline(TimelineEntry(
                date=now,
                kind=TimelineKind.DOCUMENT,
                note=f"Document {verb} in {slot}",
                actor=actor.user_id,
                actor_name=actor.name,
            ))
            record.updated_at = now
            tx.put(CASES, case_id, dump(revalidate(record)))

        logger.info(f"Document {verb} on {case_id}/{slot} by {actor.user_id}")
        return previous

    async def replace(self, case_id: str, slot: str, document_ref: str, actor: Actor) -> Optional[str]:
        """Explicit overwrite; returns the reference that was replaced."""
        return await self.attach(case_id, slot, document_ref, actor, overwrite=True)

    async def detach(self, case_id: str, slot: str, actor: Actor) -> Optional[str]:
        """Clear a slot and return what it held.

        Deleting the underlying file is the caller's job.
        """
        async with self._store.transaction() as tx:
            record = await load_case_in(tx, case_id)
            try:
                previous = record.get_slot(slot)
            except KeyError:
                raise _unknown_slot(record, slot)
            if not previous:
                return None

            now = utc_now()
            record.set_slot(slot, None)
            tx.clear_index(DOCUMENT_INDEX, previous)
            record.append_timeline(TimelineEntry(
                date=now,
                kind=TimelineKind.DOCUMENT,
                note=f"Document detached from {slot}",
                actor=actor.user_id,
                actor_name=actor.name,
            ))
            record.updated_at = now
            tx.put(CASES, case_id, dump(revalidate(record)))

        logger.info(f"Document detached from {case_id}/{slot} by {actor.user_id}")
        return previous
