"""Error taxonomy for the case desk core.

Every rejected operation raises one of these and leaves all entities in
their pre-operation state.

- ValidationError: malformed or out-of-range input (lists every violation)
- NotFoundError: referenced id does not exist
- IllegalTransitionError: status move not permitted from the current state
- ConflictError: a concurrent writer won the race for the same resource
- PermissionDeniedError: caller role may not perform the operation
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


@dataclass(frozen=True)
class FieldViolation:
    """One violated field constraint."""

    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class LoanDeskError(Exception):
    """Base class for all core errors."""

    kind = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": str(self)}


class ValidationError(LoanDeskError):
    """Input violated one or more field constraints."""

    kind = "validation_error"

    def __init__(self, violations: Iterable[FieldViolation]):
        self.violations: List[FieldViolation] = list(violations)
        summary = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
        super().__init__(f"Validation failed ({summary})")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldViolation(field, message)])

    @property
    def fields(self) -> List[str]:
        return [v.field for v in self.violations]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["details"] = [v.to_dict() for v in self.violations]
        return data


class NotFoundError(LoanDeskError):
    """Referenced entity does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class IllegalTransitionError(LoanDeskError):
    """Status change is not in the allowed set for the current status."""

    kind = "illegal_transition"

    def __init__(self, from_status: Any, to_status: Any, reason: Optional[str] = None):
        self.from_status = getattr(from_status, "value", from_status)
        self.to_status = getattr(to_status, "value", to_status)
        message = f"Illegal transition: {self.from_status} -> {self.to_status}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["details"] = [{"from": self.from_status, "to": self.to_status}]
        return data


class ConflictError(LoanDeskError):
    """A concurrent write lost the race on a uniquely owned resource."""

    kind = "conflict"

    def __init__(self, resource: str, message: Optional[str] = None):
        self.resource = resource
        super().__init__(message or f"Concurrent modification of {resource}")


class PermissionDeniedError(LoanDeskError):
    """Caller role is not allowed to perform the operation."""

    kind = "permission_denied"
