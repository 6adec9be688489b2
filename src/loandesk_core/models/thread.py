"""Request thread models.

A request thread is a one-shot mailbox: an agent raises a question about a
case and an admin records a reply. Two states only: OPEN and ANSWERED.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field, model_validator

from loandesk_core.models.case import RequiredText
from loandesk_core.models.common import WireModel, id_sequence, utc_now


class ThreadStatus(str, Enum):
    OPEN = "open"
    ANSWERED = "answered"


class ReplyRecord(WireModel):
    """A reply that was later overwritten."""

    text: str
    admin_id: str
    responded_at: datetime


class RequestThread(WireModel):
    """Agent request against a case with at most one current admin reply."""

    thread_id: str = Field(pattern=r"^REQ-\d{6,}$")
    case_id: str
    agent_id: str = Field(min_length=1)
    agent_name: Optional[str] = None
    message: RequiredText = Field(max_length=4000)

    status: ThreadStatus = ThreadStatus.OPEN
    admin_response: Optional[str] = None
    responded_by: Optional[str] = None
    responded_at: Optional[datetime] = None
    reply_history: List[ReplyRecord] = Field(
        default_factory=list,
        description="Earlier replies replaced by a newer one, oldest first",
    )

    created_at: datetime = Field(default_factory=utc_now)

    @property
    def sort_key(self):
        """Creation order, ties broken by the numeric part of the id"""
        return (self.created_at, id_sequence(self.thread_id))

    @model_validator(mode="after")
    def status_matches_response(self) -> "RequestThread":
        if self.status == ThreadStatus.ANSWERED and not self.admin_response:
            raise ValueError("answered threads require adminResponse")
        if self.status == ThreadStatus.OPEN and self.admin_response is not None:
            raise ValueError("open threads cannot carry adminResponse")
        return self
