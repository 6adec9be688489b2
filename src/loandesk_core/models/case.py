"""Case data models.

Key Models:
- CaseRecord: Root case entity (one customer loan dispute)
- CaseStatus: Lifecycle status (NEW → IN_PROGRESS → RESOLVED → CLOSED)
- BankDetail: Structured per-bank sub-record keyed by bank name
- CustomField: Tagged union over the supported custom field types
- CaseDocuments: The four fixed document slots
- TimelineEntry: Append-only audit record of lifecycle events

Architecture:
- Wire names are camelCase (see WireModel), Python attributes snake_case
- Invariants are checked by model validators; services re-validate the
  whole record before every write
- Repository abstraction (no direct database imports)
"""

import re
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import AfterValidator, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel, to_snake

from loandesk_core.models.common import WireModel, utc_now


# ============================================================
# Status & Lifecycle
# ============================================================

class CaseStatus(str, Enum):
    """
    Case lifecycle status.

    Lifecycle Flow:
      NEW → IN_PROGRESS → RESOLVED → CLOSED
      IN_PROGRESS → NEW          (rework)
      RESOLVED → IN_PROGRESS     (rework)
      CLOSED → NEW | IN_PROGRESS (administrative reopen only)

    Terminal State: CLOSED
    """

    NEW = "new"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal"""
        return self == CaseStatus.CLOSED

    @property
    def requires_resolution_date(self) -> bool:
        """RESOLVED and CLOSED carry a resolution date, earlier states never do"""
        return self in (CaseStatus.RESOLVED, CaseStatus.CLOSED)


ALLOWED_TRANSITIONS: Dict[CaseStatus, List[CaseStatus]] = {
    CaseStatus.NEW: [CaseStatus.IN_PROGRESS],
    CaseStatus.IN_PROGRESS: [CaseStatus.RESOLVED, CaseStatus.NEW],
    CaseStatus.RESOLVED: [CaseStatus.CLOSED, CaseStatus.IN_PROGRESS],
    CaseStatus.CLOSED: [],  # Terminal, reopen is a separate admin operation
}

REOPEN_TARGETS = (CaseStatus.NEW, CaseStatus.IN_PROGRESS)


def is_valid_transition(from_status: CaseStatus, to_status: CaseStatus) -> bool:
    """
    Validate a normal (non-reopen) status transition.

    Valid Transitions:
    - NEW → IN_PROGRESS
    - IN_PROGRESS → RESOLVED | NEW
    - RESOLVED → CLOSED | IN_PROGRESS

    Invalid:
    - CLOSED → * (terminal)
    - RESOLVED → NEW (must step back through IN_PROGRESS)
    - any status → itself
    """
    return to_status in ALLOWED_TRANSITIONS.get(from_status, [])


class CasePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class CaseType(str, Enum):
    NORMAL = "normal"
    CIBIL = "cibil"


class TimelineKind(str, Enum):
    """What kind of event a timeline entry records"""

    CREATED = "created"
    TRANSITION = "transition"
    REOPEN = "reopen"
    ASSIGNMENT = "assignment"
    NOTE = "note"
    DOCUMENT = "document"
    CALL = "call"
    UPDATE = "update"


# ============================================================
# Field types
# ============================================================

_PHONE_RE = re.compile(r"^\d{10}$")
_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
_AADHAAR_RE = re.compile(r"^\d{12}$")
_PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _required_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _check_phone(value: str) -> str:
    value = value.strip()
    if not _PHONE_RE.match(value):
        raise ValueError("Phone number must be 10 digits")
    return value


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Please enter a valid email")
    return value


def _check_aadhaar(value: str) -> str:
    value = value.replace(" ", "")
    if not _AADHAAR_RE.match(value):
        raise ValueError("Aadhaar number must be 12 digits")
    return value


def _check_pan(value: str) -> str:
    value = value.strip().upper()
    if not _PAN_RE.match(value):
        raise ValueError("PAN must look like ABCDE1234F")
    return value


RequiredText = Annotated[str, AfterValidator(_required_text)]
PhoneNumber = Annotated[str, AfterValidator(_check_phone)]
EmailAddress = Annotated[str, AfterValidator(_check_email)]
OptionalEmail = Annotated[Optional[EmailAddress], BeforeValidator(_blank_to_none)]
OptionalAadhaar = Annotated[Optional[Annotated[str, AfterValidator(_check_aadhaar)]], BeforeValidator(_blank_to_none)]
OptionalPan = Annotated[Optional[Annotated[str, AfterValidator(_check_pan)]], BeforeValidator(_blank_to_none)]
CibilScore = Annotated[int, Field(ge=300, le=900)]
AccountNumber = Annotated[str, Field(pattern=r"^\d{9,18}$")]
DocumentRef = Annotated[str, AfterValidator(_required_text), Field(max_length=1000)]


# ============================================================
# Banks
# ============================================================

class BankName(str, Enum):
    SBI = "State Bank of India (SBI)"
    HDFC = "HDFC Bank"
    ICICI = "ICICI Bank"
    AXIS = "Axis Bank"
    KOTAK = "Kotak Mahindra Bank"
    BANK_OF_BARODA = "Bank of Baroda"
    CANARA = "Canara Bank"
    OTHER = "Other"


class LoanType(str, Enum):
    HOME = "Home Loan"
    PERSONAL = "Personal Loan"
    BUSINESS = "Business Loan"
    EDUCATION = "Education Loan"
    VEHICLE = "Vehicle Loan"
    GOLD = "Gold Loan"
    LAP = "Loan Against Property (LAP)"
    CREDIT_CARD = "Credit Card"


class BankIssue(str, Enum):
    EMI_NOT_REFLECTED = "EMI not reflected"
    FAILED_TRANSACTION = "Failed transaction"
    KYC_PENDING = "KYC pending"
    INCORRECT_CHARGES = "Incorrect charges"
    DISBURSEMENT_DELAY = "Disbursement delay"
    NACH_ECS = "NACH / ECS issue"
    FORECLOSURE_STATEMENT = "Foreclosure statement"
    PREPAYMENT_REQUEST = "Prepayment request"
    PORTAL_ACCESS = "Portal / login access"
    OTHER = "Other"


class BankDetailStatus(str, Enum):
    """Progress of the dispute with one bank, tracked separately from the case status."""

    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"


class BankDetail(WireModel):
    """Structured detail for one bank the customer has a dispute with."""

    account_number: AccountNumber = Field(description="Loan/account number, 9-18 digits")
    loan_type: LoanType
    issues: List[BankIssue] = Field(default_factory=list, description="Set of reported issues")
    status: BankDetailStatus = BankDetailStatus.PENDING

    @field_validator("issues")
    @classmethod
    def issues_unique(cls, v):
        """Issues behave as a set, first occurrence order kept"""
        seen: List[BankIssue] = []
        for issue in v:
            if issue not in seen:
                seen.append(issue)
        return seen


def all_banks(banks: List[BankName], other_banks: List[str]) -> List[str]:
    """Structured banks (minus the 'Other' marker) followed by free-text banks."""
    names = [b.value for b in banks if b != BankName.OTHER]
    names.extend(other_banks)
    return names


def bank_detail_violations(banks: List[str], other_banks: List[str], bank_details: Dict[str, Any]) -> List[str]:
    """Bank detail keys that are not part of the case's bank set."""
    allowed = {b for b in banks if b != BankName.OTHER.value} | set(other_banks)
    return [key for key in bank_details if key not in allowed]


# ============================================================
# Custom fields (tagged union)
# ============================================================

class _CustomFieldBase(WireModel):
    field_id: str = Field(
        default_factory=lambda: f"cf_{uuid4().hex[:8]}",
        pattern=r"^[A-Za-z0-9_\-]{1,40}$",
        description="Stable identifier; file-typed fields use it as their document slot name",
    )
    label: RequiredText = Field(max_length=100)


class TextField(_CustomFieldBase):
    type: Literal["text"] = "text"
    value: str = Field(default="", max_length=500)


class MultilineTextField(_CustomFieldBase):
    type: Literal["multiline-text"] = "multiline-text"
    value: str = Field(default="", max_length=5000)


class NumberField(_CustomFieldBase):
    type: Literal["number"] = "number"
    value: Optional[float] = None


class DateField(_CustomFieldBase):
    type: Literal["date"] = "date"
    value: Optional[date] = None


class EmailField(_CustomFieldBase):
    type: Literal["email"] = "email"
    value: OptionalEmail = None


class FileField(_CustomFieldBase):
    """File-typed custom field. The value is a document reference, never inline data."""

    type: Literal["file"] = "file"
    value: Optional[DocumentRef] = None

    @field_validator("value", mode="before")
    @classmethod
    def value_is_reference(cls, v):
        if v is not None and not isinstance(v, str):
            raise ValueError("file fields hold a document reference, not inline data")
        return _blank_to_none(v)


CustomField = Annotated[
    Union[TextField, MultilineTextField, NumberField, DateField, EmailField, FileField],
    Field(discriminator="type"),
]


# ============================================================
# Documents
# ============================================================

class CaseDocuments(WireModel):
    """The four fixed document slots of a case."""

    aadhaar_doc: Optional[DocumentRef] = Field(default=None, description="Identity proof")
    pan_doc: Optional[DocumentRef] = Field(default=None, description="PAN proof")
    account_statement_doc: Optional[DocumentRef] = Field(default=None, description="Account statement")
    additional_doc: Optional[DocumentRef] = Field(default=None, description="Supplementary document")


FIXED_DOCUMENT_SLOTS = tuple(to_camel(name) for name in CaseDocuments.model_fields)


# ============================================================
# Audit trail
# ============================================================

class TimelineEntry(WireModel):
    """Record of one lifecycle event. Immutable once created."""

    date: datetime = Field(default_factory=utc_now)
    note: str = Field(max_length=2000)
    actor: str = Field(description="User id of whoever triggered the event")
    actor_name: Optional[str] = None
    kind: TimelineKind = TimelineKind.NOTE
    from_status: Optional[CaseStatus] = None
    to_status: Optional[CaseStatus] = None

    model_config = ConfigDict(frozen=True)


class CallRecord(WireModel):
    """One telecaller call outcome."""

    response: RequiredText = Field(max_length=2000)
    next_call_date: Optional[datetime] = None
    recorded_at: datetime = Field(default_factory=utc_now)
    actor: str


# ============================================================
# Case
# ============================================================

class CaseRecord(WireModel):
    """
    Root case entity.
    Represents one customer loan dispute tracked through resolution.
    """

    # Identity
    case_id: str = Field(min_length=1, max_length=40)

    # Contact / identity
    name: RequiredText = Field(max_length=200)
    phone: PhoneNumber
    email: OptionalEmail = None
    aadhaar: OptionalAadhaar = None
    pan: OptionalPan = None
    cibil_score: Optional[CibilScore] = None
    cibil_before: Optional[CibilScore] = None
    cibil_after: Optional[CibilScore] = None
    cibil_updated_at: Optional[datetime] = Field(
        default=None, description="When cibilBefore/cibilAfter was last written"
    )
    address: Optional[str] = Field(default=None, max_length=500)
    page_number: Optional[int] = Field(default=None, ge=1)
    case_type: CaseType = CaseType.NORMAL

    problem: RequiredText = Field(max_length=5000, description="Dispute description")

    # Banks
    banks: List[BankName] = Field(default_factory=list)
    other_banks: List[str] = Field(default_factory=list)
    bank_details: Dict[str, BankDetail] = Field(
        default_factory=dict,
        description="Bank name → detail; keys must be members of the case's bank set",
    )

    custom_fields: List[CustomField] = Field(default_factory=list)

    # Referral (name/phone denormalized at creation for audit)
    referral_id: Optional[str] = None
    referrer_name: Optional[str] = None
    referrer_phone: Optional[str] = None

    # Ownership
    created_by: str = Field(min_length=1)
    created_by_name: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    assigned_at: Optional[datetime] = None

    documents: CaseDocuments = Field(default_factory=CaseDocuments)

    # Lifecycle
    status: CaseStatus = CaseStatus.NEW
    priority: CasePriority = CasePriority.MEDIUM
    follow_up_date: Optional[datetime] = None
    resolution_date: Optional[datetime] = None

    timeline: List[TimelineEntry] = Field(default_factory=list)
    call_history: List[CallRecord] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # ============================================================
    # Computed Properties
    # ============================================================
    @property
    def all_banks(self) -> List[str]:
        """Every bank on the case, structured first then free-text. Never stored."""
        return all_banks(self.banks, self.other_banks)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def file_fields(self) -> List[FileField]:
        return [f for f in self.custom_fields if isinstance(f, FileField)]

    # ============================================================
    # Document slots
    # ============================================================
    def slot_names(self) -> List[str]:
        return list(FIXED_DOCUMENT_SLOTS) + [f.field_id for f in self.file_fields]

    def get_slot(self, slot: str) -> Optional[str]:
        """Current reference in a slot. Raises KeyError for unknown slots."""
        if slot in FIXED_DOCUMENT_SLOTS:
            return getattr(self.documents, to_snake(slot))
        for field in self.file_fields:
            if field.field_id == slot:
                return field.value
        raise KeyError(slot)

    def set_slot(self, slot: str, ref: Optional[str]) -> None:
        if slot in FIXED_DOCUMENT_SLOTS:
            setattr(self.documents, to_snake(slot), ref)
            return
        for field in self.file_fields:
            if field.field_id == slot:
                field.value = ref
                return
        raise KeyError(slot)

    def document_refs(self) -> Dict[str, str]:
        """Occupied slots only: slot name → reference."""
        refs = {}
        for slot in self.slot_names():
            ref = self.get_slot(slot)
            if ref:
                refs[slot] = ref
        return refs

    # ============================================================
    # Bank details
    # ============================================================
    def set_bank_detail(self, bank: str, detail: BankDetail) -> None:
        """Invariant-checked write path for bank details."""
        if bank not in self.all_banks:
            raise ValueError(f"bank '{bank}' is not part of this case")
        self.bank_details[bank] = detail

    def append_timeline(self, entry: TimelineEntry) -> None:
        """Append-only; an entry never sorts before the one already last."""
        if self.timeline and entry.date < self.timeline[-1].date:
            entry = entry.model_copy(update={"date": self.timeline[-1].date})
        self.timeline.append(entry)

    # ============================================================
    # Validation
    # ============================================================
    @field_validator("other_banks")
    @classmethod
    def other_banks_clean(cls, v):
        """Drop blank free-text bank names"""
        return [name.strip() for name in v if name and name.strip()]

    @field_validator("banks")
    @classmethod
    def banks_unique(cls, v):
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def bank_details_within_bank_set(self) -> "CaseRecord":
        orphans = bank_detail_violations(
            [b.value for b in self.banks], self.other_banks, self.bank_details
        )
        if orphans:
            raise ValueError(f"bankDetails has entries for banks not on the case: {orphans}")
        return self

    @model_validator(mode="after")
    def custom_field_ids_unique(self) -> "CaseRecord":
        ids = [f.field_id for f in self.custom_fields]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"customFields ids must be unique: {duplicates}")
        collisions = set(ids) & set(FIXED_DOCUMENT_SLOTS)
        if collisions:
            raise ValueError(f"customFields ids clash with document slots: {sorted(collisions)}")
        return self

    @model_validator(mode="after")
    def resolution_date_matches_status(self) -> "CaseRecord":
        """resolutionDate is set if and only if status is RESOLVED or CLOSED"""
        if self.status.requires_resolution_date and self.resolution_date is None:
            raise ValueError(f"status '{self.status.value}' requires resolutionDate")
        if not self.status.requires_resolution_date and self.resolution_date is not None:
            raise ValueError(
                f"resolutionDate can only be set when status is resolved or closed "
                f"(current: {self.status.value})"
            )
        return self

    @model_validator(mode="after")
    def timeline_ordered(self) -> "CaseRecord":
        """Timeline entries are chronologically ordered"""
        for earlier, later in zip(self.timeline, self.timeline[1:]):
            if earlier.date > later.date:
                raise ValueError("timeline must be chronologically ordered")
        return self

    @model_validator(mode="after")
    def timestamps_ordered(self) -> "CaseRecord":
        if self.created_at > self.updated_at:
            raise ValueError(
                f"createdAt ({self.created_at}) cannot be after updatedAt ({self.updated_at})"
            )
        return self
