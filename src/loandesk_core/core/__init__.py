"""Case core components."""

from loandesk_core.core.cases import CaseRecordStore, parse_case_input
from loandesk_core.core.desk import CaseDesk
from loandesk_core.core.documents import DocumentAssociationManager
from loandesk_core.core.lifecycle import StatusLifecycleController, apply_transition
from loandesk_core.core.referrals import ReferralLedger
from loandesk_core.core.threads import RequestThreadManager

__all__ = [
    "CaseDesk",
    "CaseRecordStore",
    "DocumentAssociationManager",
    "ReferralLedger",
    "RequestThreadManager",
    "StatusLifecycleController",
    "apply_transition",
    "parse_case_input",
]
