"""API Request/Response Models for Case Management.

These models provide a clean API layer separate from the domain models.
They handle:
- Request validation (intake form, partial updates, list filters)
- Response envelopes for operations that return more than a record
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator

from loandesk_core.models.case import (
    BankDetail,
    BankName,
    CasePriority,
    CaseRecord,
    CaseStatus,
    CaseType,
    CibilScore,
    CustomField,
    DocumentRef,
    OptionalAadhaar,
    OptionalEmail,
    OptionalPan,
    PhoneNumber,
    RequiredText,
)
from loandesk_core.models.common import WireModel, parse_utc_timestamp
from loandesk_core.models.referral import ReferralRef


# ============================================================
# Case Creation and Updates
# ============================================================

class CaseCreateRequest(WireModel):
    """Intake form for a new case.

    Creator identity comes from the authenticated actor, not the body.
    """

    name: RequiredText = Field(max_length=200)
    phone: PhoneNumber
    email: OptionalEmail = None
    aadhaar: OptionalAadhaar = None
    pan: OptionalPan = None
    cibil_score: Optional[CibilScore] = None
    cibil_before: Optional[CibilScore] = None
    cibil_after: Optional[CibilScore] = None
    address: Optional[str] = Field(default=None, max_length=500)
    page_number: Optional[int] = Field(default=None, ge=1)
    case_type: CaseType = CaseType.NORMAL

    problem: RequiredText = Field(max_length=5000)

    banks: List[BankName] = Field(default_factory=list)
    other_banks: List[str] = Field(default_factory=list)
    bank_details: Dict[str, BankDetail] = Field(default_factory=dict)
    custom_fields: List[CustomField] = Field(default_factory=list)

    referral: Optional[ReferralRef] = None
    documents: Dict[str, DocumentRef] = Field(
        default_factory=dict,
        description="Fixed slot name → document reference from the upload service",
    )

    status: CaseStatus = CaseStatus.NEW
    priority: CasePriority = CasePriority.MEDIUM
    follow_up_date: Optional[datetime] = None
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None


class CaseUpdateRequest(WireModel):
    """Partial update. Only the fields present in the payload are applied.

    Identity, ownership, referral linkage, documents and the timeline are not
    patchable; they have dedicated operations.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[RequiredText] = Field(default=None, max_length=200)
    phone: Optional[PhoneNumber] = None
    email: OptionalEmail = None
    aadhaar: OptionalAadhaar = None
    pan: OptionalPan = None
    cibil_score: Optional[CibilScore] = None
    cibil_before: Optional[CibilScore] = None
    cibil_after: Optional[CibilScore] = None
    address: Optional[str] = Field(default=None, max_length=500)
    page_number: Optional[int] = Field(default=None, ge=1)
    case_type: Optional[CaseType] = None

    problem: Optional[RequiredText] = Field(default=None, max_length=5000)

    banks: Optional[List[BankName]] = None
    other_banks: Optional[List[str]] = None
    bank_details: Optional[Dict[str, BankDetail]] = None
    custom_fields: Optional[List[CustomField]] = None

    status: Optional[CaseStatus] = None
    priority: Optional[CasePriority] = None
    follow_up_date: Optional[datetime] = None
    resolution_date: Optional[datetime] = None


# Fields no update may touch, by wire name and attribute name
IMMUTABLE_FIELDS = {"caseId", "case_id", "createdAt", "created_at"}

# Fields that are required on the record and so cannot be cleared by a patch
NON_NULLABLE_PATCH_FIELDS = {
    "name", "phone", "problem", "case_type", "banks", "other_banks",
    "bank_details", "custom_fields", "status", "priority",
}


class CaseFilter(WireModel):
    """Read-only list filter. All criteria are ANDed; unset criteria match all."""

    status: Optional[List[CaseStatus]] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    priority: Optional[CasePriority] = None
    referral_id: Optional[str] = None
    created_from: Optional[datetime] = Field(default=None, description="Inclusive lower bound")
    created_to: Optional[datetime] = Field(default=None, description="Inclusive upper bound")

    @field_validator("created_from", "created_to", mode="before")
    @classmethod
    def bounds_in_utc(cls, v):
        """Bounds without a timezone are read as UTC, like every stored timestamp."""
        if isinstance(v, str):
            return parse_utc_timestamp(v)
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def matches(self, record: CaseRecord) -> bool:
        if self.status and record.status not in self.status:
            return False
        if self.assigned_to is not None and record.assigned_to != self.assigned_to:
            return False
        if self.created_by is not None and record.created_by != self.created_by:
            return False
        if self.priority is not None and record.priority != self.priority:
            return False
        if self.referral_id is not None and record.referral_id != self.referral_id:
            return False
        if self.created_from is not None and record.created_at < self.created_from:
            return False
        if self.created_to is not None and record.created_at > self.created_to:
            return False
        return True


# ============================================================
# Lifecycle / activity bodies
# ============================================================

class TransitionRequest(WireModel):
    status: CaseStatus
    note: Optional[str] = Field(default=None, max_length=2000)


class ReopenRequest(WireModel):
    status: CaseStatus = CaseStatus.IN_PROGRESS
    reason: RequiredText = Field(max_length=2000)


class AssignRequest(WireModel):
    assignee_id: str = Field(min_length=1)
    assignee_name: Optional[str] = None


class NoteRequest(WireModel):
    text: RequiredText = Field(max_length=2000)


class CallRequest(WireModel):
    response: RequiredText = Field(max_length=2000)
    next_call_date: Optional[datetime] = None


class AttachRequest(WireModel):
    document_ref: DocumentRef
    overwrite: bool = False


class DocumentSlotResponse(WireModel):
    case_id: str
    slot: str
    document_ref: Optional[str] = None
    previous_ref: Optional[str] = None


# ============================================================
# Threads
# ============================================================

class ThreadOpenRequest(WireModel):
    message: RequiredText = Field(max_length=4000)


class ThreadReplyRequest(WireModel):
    response: RequiredText = Field(max_length=4000)


# ============================================================
# Referrals
# ============================================================

class ReferralCreateRequest(ReferralRef):
    success_rate: str = Field(default="0%", max_length=20)
    commission: str = Field(default="₹0", max_length=50)


class CounterCorrection(WireModel):
    referral_id: str
    recorded: int
    actual: int


class ReconcileReport(WireModel):
    """Outcome of recomputing referral counters from live cases."""

    checked: int = 0
    corrections: List[CounterCorrection] = Field(default_factory=list)

    @property
    def drifted(self) -> bool:
        return bool(self.corrections)
