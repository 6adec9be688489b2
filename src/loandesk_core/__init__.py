"""Loan Desk Core Library

Case intake, status lifecycle, referral attribution, document slots and
request threads for loan-dispute case management services.
"""

__version__ = "0.1.0"

# Export shared models first (no dependencies)
from loandesk_core.models import (
    Actor, ActorRole, CaseRecord, CaseStatus, CasePriority,
    Referral, RequestThread, ThreadStatus,
)
from loandesk_core.errors import (
    LoanDeskError,
    ValidationError,
    NotFoundError,
    IllegalTransitionError,
    ConflictError,
    PermissionDeniedError,
)
from loandesk_core.config import CoreSettings
from loandesk_core.core import CaseDesk


# Lazy import for the HTTP client so embedding the core does not pull in httpx
def __getattr__(name):
    """Lazy import for CaseServiceClient."""
    if name == "CaseServiceClient":
        from loandesk_core.clients import CaseServiceClient
        return CaseServiceClient
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    # Models
    "Actor", "ActorRole", "CaseRecord", "CaseStatus", "CasePriority",
    "Referral", "RequestThread", "ThreadStatus",
    # Errors
    "LoanDeskError", "ValidationError", "NotFoundError",
    "IllegalTransitionError", "ConflictError", "PermissionDeniedError",
    # Wiring
    "CoreSettings", "CaseDesk",
    # Clients (lazy loaded)
    "CaseServiceClient",
]
