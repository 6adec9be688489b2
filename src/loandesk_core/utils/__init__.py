"""Utility Functions"""

from loandesk_core.utils.resilience import (
    conflict_retry,
    run_with_conflict_retry,
    service_startup_retry,
)

__all__ = [
    "service_startup_retry",
    "conflict_retry",
    "run_with_conflict_retry",
]
