"""Service clients for internal service-to-service communication."""

from loandesk_core.clients.base import BaseServiceClient
from loandesk_core.clients.case_service_client import CaseServiceClient

__all__ = ["BaseServiceClient", "CaseServiceClient"]
