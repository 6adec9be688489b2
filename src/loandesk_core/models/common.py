"""Common models shared across the case desk.

This module contains foundational pieces used by every entity:
- WireModel: base model with camelCase wire names
- Actor / ActorRole: caller identity supplied by the authentication layer
- Utility functions: utc_now(), id_sequence(), parse_utc_timestamp(), violations_from_pydantic()
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, NoReturn, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from loandesk_core.errors import FieldViolation, ValidationError


class WireModel(BaseModel):
    """Base for every record exposed over the API.

    Attributes are snake_case in Python and camelCase on the wire. Both
    spellings are accepted on input.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        """JSON-compatible dict using wire names."""
        return self.model_dump(mode="json", by_alias=True)


class ActorRole(str, Enum):
    """Roles known to the case desk."""

    ADMIN = "admin"
    OFFICER = "officer"
    TELECALLER = "telecaller"
    MARKETING = "marketing"
    SYSTEM = "system"


class Actor(WireModel):
    """Identity of the caller performing a mutating operation.

    Supplied by the authentication collaborator and trusted as-is.
    """

    user_id: str = Field(min_length=1, max_length=255)
    role: ActorRole = Field(default=ActorRole.TELECALLER)
    name: Optional[str] = Field(default=None, max_length=255)

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def id_sequence(identifier: str) -> int:
    """Numeric tail of a sequential id: 'CASE-0042' -> 42. Zero when there is none."""
    tail = identifier.rsplit("-", 1)[-1]
    return int(tail) if tail.isdigit() else 0


def parse_utc_timestamp(timestamp_str: str) -> datetime:
    """Parse an ISO 8601 timestamp into a timezone-aware UTC datetime.

    Handles:
    - '2025-10-17T04:02:59+00:00'
    - '2025-10-17T04:02:59Z'
    - '2025-10-17T04:02:59' (naive, assumed UTC)
    """
    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1]
    dt = datetime.fromisoformat(timestamp_str)
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def violations_from_pydantic(
    exc: PydanticValidationError, prefix: str = ""
) -> List[FieldViolation]:
    """Convert every pydantic error into a FieldViolation.

    Discriminated-union tags are dropped from the location so a custom field
    error reads 'customFields.1.value' rather than 'customFields.1.number.value'.
    """
    violations = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        if len(loc) >= 3 and loc[0] == "customFields" and loc[1].isdigit():
            loc = loc[:2] + loc[3:]
        field = ".".join(loc) or "__root__"
        if prefix:
            field = f"{prefix}.{field}" if field != "__root__" else prefix
        message = err.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        violations.append(FieldViolation(field, message))
    return violations


def raise_validation(exc: PydanticValidationError, prefix: str = "") -> NoReturn:
    """Re-raise a pydantic error as the core ValidationError."""
    raise ValidationError(violations_from_pydantic(exc, prefix)) from exc
