"""Base service client for internal service-to-service calls."""

import json
import logging
from typing import Optional

import httpx

from loandesk_core.models.common import Actor

logger = logging.getLogger(__name__)


class BaseServiceClient:
    """Base class for internal service-to-service HTTP clients.

    Services call each other directly without JWT authentication.
    Caller identity is propagated via X-User-* headers, the same headers the
    gateway sets and auth.request_context reads.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize service client.

        Args:
            base_url: Service base URL (e.g., http://loandesk-case-service:8000)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (e.g. ASGITransport for in-process calls)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

        logger.info(f"Initialized {self.__class__.__name__} with base_url={base_url}")

    def _headers(self, actor: Optional[Actor] = None, correlation_id: Optional[str] = None) -> dict:
        """Request headers carrying the caller identity."""
        headers = {
            "Content-Type": "application/json",
        }

        if actor is not None:
            headers["X-User-ID"] = actor.user_id
            headers["X-User-Roles"] = json.dumps([actor.role.value])
            if actor.name:
                headers["X-User-Name"] = actor.name

        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id

        return headers

    def _get_client(self) -> httpx.AsyncClient:
        """Get HTTP client instance with configured timeout.

        Returns:
            Configured AsyncClient ready for use with async context manager
        """
        if self._transport is not None:
            return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return httpx.AsyncClient(timeout=self.timeout)
