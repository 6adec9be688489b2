"""Collection names and record (de)serialization shared by the components."""

from typing import Any, Dict

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from loandesk_core.errors import NotFoundError
from loandesk_core.infrastructure.store import Transaction
from loandesk_core.models.case import CaseRecord
from loandesk_core.models.common import raise_validation

CASES = "cases"
REFERRALS = "referrals"
THREADS = "threads"

# Counter: referral id → number of live cases attributed to it
REFERRAL_CASES = "referral_cases"

# Indexes
REFERRAL_PAIR_INDEX = "referral_pair"          # "name|phone" → referral id (real phones)
REFERRAL_SENTINEL_INDEX = "referral_unknown"   # "name" → oldest referral id without phone
DOCUMENT_INDEX = "document_refs"               # document ref → "caseId/slot"


def dump(model: BaseModel, **kwargs: Any) -> Dict[str, Any]:
    """Storage form of a model: JSON-compatible, wire names."""
    return model.model_dump(mode="json", by_alias=True, **kwargs)


def revalidate(record: CaseRecord) -> CaseRecord:
    """Re-run every CaseRecord invariant on a mutated record."""
    try:
        return CaseRecord.model_validate(dump(record))
    except PydanticValidationError as exc:
        raise_validation(exc)


async def load_case_in(tx: Transaction, case_id: str) -> CaseRecord:
    doc = await tx.get(CASES, case_id)
    if doc is None:
        raise NotFoundError("Case", case_id)
    return CaseRecord.model_validate(doc)
