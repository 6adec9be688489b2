"""REST API over a CaseDesk.

Endpoints (all under /api/v1):
  POST   /cases                               create case
  GET    /cases                               list cases (status, assignedTo, createdBy,
                                              priority, referralId, createdFrom, createdTo)
  GET    /cases/{case_id}                     get case
  PATCH  /cases/{case_id}                     partial update
  DELETE /cases/{case_id}                     delete case
  POST   /cases/{case_id}/transition          status transition
  POST   /cases/{case_id}/reopen              admin reopen of a closed case
  POST   /cases/{case_id}/assign              assign to an officer
  POST   /cases/{case_id}/notes               timeline note
  POST   /cases/{case_id}/calls               call outcome
  PUT    /cases/{case_id}/documents/{slot}    attach (overwrite=true to replace)
  DELETE /cases/{case_id}/documents/{slot}    detach
  POST   /cases/{case_id}/threads             open request thread
  GET    /cases/{case_id}/threads             threads of a case
  GET    /threads/open                        unanswered threads
  GET    /threads/{thread_id}                 get thread
  POST   /threads/{thread_id}/reply           admin reply
  GET    /referrals                           list referrals
  POST   /referrals                           create referral
  POST   /referrals/reconcile                 recompute referral counters
  GET    /referrals/{referral_id}             get referral

Caller identity comes from the gateway X-User-* headers.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from loandesk_core.auth import get_actor
from loandesk_core.core.desk import CaseDesk
from loandesk_core.errors import (
    ConflictError,
    IllegalTransitionError,
    LoanDeskError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from loandesk_core.models import (
    Actor,
    AssignRequest,
    AttachRequest,
    CallRequest,
    CaseFilter,
    CasePriority,
    CaseStatus,
    DocumentSlotResponse,
    NoteRequest,
    ReferralCreateRequest,
    ReopenRequest,
    ThreadOpenRequest,
    ThreadReplyRequest,
    TransitionRequest,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 422,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    IllegalTransitionError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
}


def create_router(desk: CaseDesk) -> APIRouter:
    router = APIRouter(prefix="/api/v1")

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------
    @router.post("/cases", status_code=status.HTTP_201_CREATED)
    async def create_case(payload: Dict[str, Any] = Body(...), actor: Actor = Depends(get_actor)):
        record = await desk.cases.create_case(payload, actor)
        return record.to_wire()

    @router.get("/cases")
    async def list_cases(
        status_filter: Optional[List[CaseStatus]] = Query(default=None, alias="status"),
        assigned_to: Optional[str] = Query(default=None, alias="assignedTo"),
        created_by: Optional[str] = Query(default=None, alias="createdBy"),
        priority: Optional[CasePriority] = Query(default=None),
        referral_id: Optional[str] = Query(default=None, alias="referralId"),
        created_from: Optional[datetime] = Query(default=None, alias="createdFrom"),
        created_to: Optional[datetime] = Query(default=None, alias="createdTo"),
    ):
        case_filter = CaseFilter(
            status=status_filter,
            assigned_to=assigned_to,
            created_by=created_by,
            priority=priority,
            referral_id=referral_id,
            created_from=created_from,
            created_to=created_to,
        )
        return [record.to_wire() for record in await desk.cases.list_cases(case_filter)]

    @router.get("/cases/{case_id}")
    async def get_case(case_id: str):
        return (await desk.cases.get_case(case_id)).to_wire()

    @router.patch("/cases/{case_id}")
    async def update_case(case_id: str, patch: Dict[str, Any] = Body(...), actor: Actor = Depends(get_actor)):
        return (await desk.cases.update_case(case_id, patch, actor)).to_wire()

    @router.delete("/cases/{case_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_case(case_id: str, actor: Actor = Depends(get_actor)):
        await desk.cases.delete_case(case_id, actor)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.post("/cases/{case_id}/transition")
    async def transition(case_id: str, body: TransitionRequest, actor: Actor = Depends(get_actor)):
        record = await desk.lifecycle.transition(case_id, body.status, actor, note=body.note)
        return record.to_wire()

    @router.post("/cases/{case_id}/reopen")
    async def reopen(case_id: str, body: ReopenRequest, actor: Actor = Depends(get_actor)):
        record = await desk.lifecycle.reopen(case_id, actor, body.reason, to_status=body.status)
        return record.to_wire()

    @router.post("/cases/{case_id}/assign")
    async def assign(case_id: str, body: AssignRequest, actor: Actor = Depends(get_actor)):
        record = await desk.cases.assign_case(
            case_id, body.assignee_id, actor, assignee_name=body.assignee_name
        )
        return record.to_wire()

    @router.post("/cases/{case_id}/notes")
    async def add_note(case_id: str, body: NoteRequest, actor: Actor = Depends(get_actor)):
        return (await desk.cases.add_note(case_id, actor, body.text)).to_wire()

    @router.post("/cases/{case_id}/calls")
    async def record_call(case_id: str, body: CallRequest, actor: Actor = Depends(get_actor)):
        record = await desk.cases.record_call(
            case_id, actor, body.response, next_call_date=body.next_call_date
        )
        return record.to_wire()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    @router.put("/cases/{case_id}/documents/{slot}")
    async def attach_document(
        case_id: str, slot: str, body: AttachRequest, actor: Actor = Depends(get_actor)
    ):
        previous = await desk.documents.attach(
            case_id, slot, body.document_ref, actor, overwrite=body.overwrite
        )
        return DocumentSlotResponse(
            case_id=case_id, slot=slot, document_ref=body.document_ref, previous_ref=previous
        ).to_wire()

    @router.delete("/cases/{case_id}/documents/{slot}")
    async def detach_document(case_id: str, slot: str, actor: Actor = Depends(get_actor)):
        previous = await desk.documents.detach(case_id, slot, actor)
        return DocumentSlotResponse(case_id=case_id, slot=slot, previous_ref=previous).to_wire()

    # ------------------------------------------------------------------
    # Request threads
    # ------------------------------------------------------------------
    @router.post("/cases/{case_id}/threads", status_code=status.HTTP_201_CREATED)
    async def open_thread(case_id: str, body: ThreadOpenRequest, actor: Actor = Depends(get_actor)):
        return (await desk.threads.open(case_id, actor, body.message)).to_wire()

    @router.get("/cases/{case_id}/threads")
    async def list_case_threads(case_id: str):
        return [t.to_wire() for t in await desk.threads.list_by_case(case_id)]

    @router.get("/threads/open")
    async def list_open_threads():
        return [t.to_wire() for t in await desk.threads.list_open()]

    @router.get("/threads/{thread_id}")
    async def get_thread(thread_id: str):
        return (await desk.threads.get_thread(thread_id)).to_wire()

    @router.post("/threads/{thread_id}/reply")
    async def reply_thread(thread_id: str, body: ThreadReplyRequest, actor: Actor = Depends(get_actor)):
        return (await desk.threads.reply(thread_id, actor, body.response)).to_wire()

    # ------------------------------------------------------------------
    # Referrals
    # ------------------------------------------------------------------
    @router.get("/referrals")
    async def list_referrals():
        return [r.to_wire() for r in await desk.referrals.list_referrals()]

    @router.post("/referrals", status_code=status.HTTP_201_CREATED)
    async def create_referral(body: ReferralCreateRequest, actor: Actor = Depends(get_actor)):
        referral = await desk.referrals.create_referral(
            body.name, body.phone, success_rate=body.success_rate, commission=body.commission
        )
        logger.info(f"Referral {referral.referral_id} created via API by {actor.user_id}")
        return referral.to_wire()

    @router.post("/referrals/reconcile")
    async def reconcile_referrals(actor: Actor = Depends(get_actor)):
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can reconcile referral counters")
        return (await desk.referrals.reconcile()).to_wire()

    @router.get("/referrals/{referral_id}")
    async def get_referral(referral_id: str):
        return (await desk.referrals.get_referral(referral_id)).to_wire()

    return router


async def _core_error_handler(request: Request, exc: LoanDeskError) -> JSONResponse:
    status_code = STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if status_code == status.HTTP_409_CONFLICT:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    body = exc.to_dict()
    body.setdefault("details", [])
    return JSONResponse(status_code=status_code, content=body)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report FastAPI body/query errors in the same shape as core validation errors."""
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc) or "__root__", "message": err.get("msg", "invalid value")})
    return JSONResponse(
        status_code=422,
        content={"error": ValidationError.kind, "message": "Request validation failed", "details": details},
    )


def create_app(desk: CaseDesk) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await desk.close()

    app = FastAPI(title="Loan Desk Case API", version="0.1.0", lifespan=lifespan)
    app.include_router(create_router(desk))
    app.add_exception_handler(LoanDeskError, _core_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    return app
