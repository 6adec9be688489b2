"""
Shared data models for the case desk.

This package provides Pydantic models shared by every component and by the
services that consume the case desk API, so the wire contract lives in one place.
"""

from loandesk_core.models.common import (
    Actor,
    ActorRole,
    WireModel,
    id_sequence,
    parse_utc_timestamp,
    utc_now,
)
from loandesk_core.models.case import (
    # Core case model
    CaseRecord,
    CaseStatus,
    CasePriority,
    CaseType,
    ALLOWED_TRANSITIONS,
    REOPEN_TARGETS,
    is_valid_transition,

    # Banks
    BankDetail,
    BankDetailStatus,
    BankName,
    BankIssue,
    LoanType,

    # Custom fields
    CustomField,
    TextField,
    MultilineTextField,
    NumberField,
    DateField,
    EmailField,
    FileField,

    # Documents and audit
    CaseDocuments,
    FIXED_DOCUMENT_SLOTS,
    TimelineEntry,
    TimelineKind,
    CallRecord,
)
from loandesk_core.models.referral import (
    Referral,
    ReferralRef,
    UNKNOWN_PHONE,
    normalize_referral_phone,
)
from loandesk_core.models.thread import (
    RequestThread,
    ThreadStatus,
    ReplyRecord,
)
from loandesk_core.models.api_models import (
    CaseCreateRequest,
    CaseUpdateRequest,
    CaseFilter,
    TransitionRequest,
    ReopenRequest,
    AssignRequest,
    NoteRequest,
    CallRequest,
    AttachRequest,
    DocumentSlotResponse,
    ThreadOpenRequest,
    ThreadReplyRequest,
    ReferralCreateRequest,
    ReconcileReport,
    CounterCorrection,
)

__all__ = [
    # Common
    "Actor", "ActorRole", "WireModel", "id_sequence", "parse_utc_timestamp", "utc_now",
    # Case
    "CaseRecord", "CaseStatus", "CasePriority", "CaseType",
    "ALLOWED_TRANSITIONS", "REOPEN_TARGETS", "is_valid_transition",
    # Banks
    "BankDetail", "BankDetailStatus", "BankName", "BankIssue", "LoanType",
    # Custom fields
    "CustomField", "TextField", "MultilineTextField", "NumberField",
    "DateField", "EmailField", "FileField",
    # Documents and audit
    "CaseDocuments", "FIXED_DOCUMENT_SLOTS", "TimelineEntry", "TimelineKind", "CallRecord",
    # Referrals
    "Referral", "ReferralRef", "UNKNOWN_PHONE", "normalize_referral_phone",
    # Threads
    "RequestThread", "ThreadStatus", "ReplyRecord",
    # API
    "CaseCreateRequest", "CaseUpdateRequest", "CaseFilter",
    "TransitionRequest", "ReopenRequest", "AssignRequest", "NoteRequest", "CallRequest",
    "AttachRequest", "DocumentSlotResponse", "ThreadOpenRequest", "ThreadReplyRequest",
    "ReferralCreateRequest",
    "ReconcileReport", "CounterCorrection",
]
