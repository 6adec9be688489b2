"""Request context extraction from API Gateway headers.

The gateway authenticates the caller and forwards its identity as X-User-*
headers after stripping any client-supplied copies. This core trusts those
headers and turns them into the Actor passed to every mutating operation.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import HTTPException, Request, status

from loandesk_core.models.common import Actor, ActorRole

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """User request context extracted from API Gateway headers.

    Attributes:
        user_id: User ID from X-User-ID header
        user_name: Display name from X-User-Name header
        user_roles: User roles from X-User-Roles header (JSON array)
        correlation_id: Optional correlation ID for request tracing
    """

    user_id: str
    user_name: Optional[str] = None
    user_roles: List[str] = field(default_factory=list)
    correlation_id: Optional[str] = None

    @property
    def role(self) -> ActorRole:
        """First recognised role; telecaller when none is."""
        for raw in self.user_roles:
            try:
                return ActorRole(str(raw).lower())
            except ValueError:
                continue
        return ActorRole.TELECALLER

    def to_actor(self) -> Actor:
        return Actor(user_id=self.user_id, role=self.role, name=self.user_name)


def get_request_context(request: Request) -> RequestContext:
    """Extract request context from API Gateway headers.

    Raises:
        HTTPException: If required X-User-ID header is missing
    """
    user_id = request.headers.get("X-User-ID")
    if not user_id:
        logger.error("Missing X-User-ID header in request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header required (should be added by API Gateway)",
        )

    user_name = request.headers.get("X-User-Name")
    correlation_id = request.headers.get("X-Correlation-ID")

    user_roles = []
    roles_header = request.headers.get("X-User-Roles")
    if roles_header:
        try:
            parsed = json.loads(roles_header)
            if isinstance(parsed, list):
                user_roles = [str(r) for r in parsed]
            else:
                logger.warning(f"X-User-Roles is not a JSON array: {roles_header}")
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse X-User-Roles header: {roles_header}")

    return RequestContext(
        user_id=user_id,
        user_name=user_name,
        user_roles=user_roles,
        correlation_id=correlation_id,
    )


def get_actor(request: Request) -> Actor:
    """FastAPI dependency yielding the calling Actor."""
    return get_request_context(request).to_actor()
