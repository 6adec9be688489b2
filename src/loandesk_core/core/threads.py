"""Request/Reply Thread Manager.

An agent raises a request against a case; an admin records the reply.
A repeated reply replaces the current one and the replaced text moves to
reply_history, so nothing an admin wrote is lost.
"""

import logging
from typing import List

from pydantic import ValidationError as PydanticValidationError

from loandesk_core.errors import NotFoundError, PermissionDeniedError
from loandesk_core.infrastructure.store import DocumentStore
from loandesk_core.models.api_models import ThreadOpenRequest, ThreadReplyRequest
from loandesk_core.models.common import Actor, raise_validation, utc_now
from loandesk_core.models.thread import ReplyRecord, RequestThread, ThreadStatus
from loandesk_core.core.records import THREADS, dump, load_case_in

logger = logging.getLogger(__name__)


class RequestThreadManager:
    """Open, answer and list request threads."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def open(self, case_id: str, actor: Actor, message: str) -> RequestThread:
        """Open a thread on an existing case.

        The case is read inside the transaction, so a concurrent delete of
        the case makes this commit fail instead of leaving a dangling thread.
        """
        try:
            request = ThreadOpenRequest(message=message)
        except PydanticValidationError as exc:
            raise_validation(exc)

        seq = await self._store.next_sequence(THREADS)
        thread = RequestThread(
            thread_id=f"REQ-{seq:06d}",
            case_id=case_id,
            agent_id=actor.user_id,
            agent_name=actor.name,
            message=request.message,
            created_at=utc_now(),
        )
        async with self._store.transaction() as tx:
            await load_case_in(tx, case_id)
            tx.put(THREADS, thread.thread_id, dump(thread))

        logger.info(f"Thread {thread.thread_id} opened on {case_id} by {actor.user_id}")
        return thread

    async def reply(self, thread_id: str, actor: Actor, response: str) -> RequestThread:
        """Record the admin reply and mark the thread answered.

        Raises:
            PermissionDeniedError: actor is not an admin
            ValidationError: empty response
            NotFoundError: thread does not exist
            ConflictError: another reply to the same thread landed first
        """
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can reply to request threads")
        try:
            request = ThreadReplyRequest(response=response)
        except PydanticValidationError as exc:
            raise_validation(exc)

        async with self._store.transaction() as tx:
            doc = await tx.get(THREADS, thread_id)
            if doc is None:
                raise NotFoundError("RequestThread", thread_id)
            thread = RequestThread.model_validate(doc)

            if thread.admin_response is not None:
                thread.reply_history.append(ReplyRecord(
                    text=thread.admin_response,
                    admin_id=thread.responded_by or "",
                    responded_at=thread.responded_at or thread.created_at,
                ))
                logger.warning(f"Thread {thread_id} reply overwritten by {actor.user_id}")

            thread.admin_response = request.response
            thread.responded_by = actor.user_id
            thread.responded_at = utc_now()
            thread.status = ThreadStatus.ANSWERED
            thread = RequestThread.model_validate(thread.model_dump())
            tx.put(THREADS, thread_id, dump(thread))

        logger.info(f"Thread {thread_id} answered by {actor.user_id}")
        return thread

    async def get_thread(self, thread_id: str) -> RequestThread:
        doc = await self._store.get(THREADS, thread_id)
        if doc is None:
            raise NotFoundError("RequestThread", thread_id)
        return RequestThread.model_validate(doc)

    async def _all(self) -> List[RequestThread]:
        threads = [RequestThread.model_validate(doc) for doc in await self._store.scan(THREADS)]
        threads.sort(key=lambda t: t.sort_key)
        return threads

    async def list_by_case(self, case_id: str) -> List[RequestThread]:
        """Threads of one case, oldest first."""
        return [t for t in await self._all() if t.case_id == case_id]

    async def list_open(self) -> List[RequestThread]:
        """Unanswered threads across all cases, oldest first."""
        return [t for t in await self._all() if t.status == ThreadStatus.OPEN]
