"""HTTP client for the loan desk case service."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from loandesk_core.clients.base import BaseServiceClient
from loandesk_core.models import (
    Actor,
    CaseFilter,
    CaseRecord,
    CaseStatus,
    DocumentSlotResponse,
    ReconcileReport,
    Referral,
    RequestThread,
)


class CaseServiceClient(BaseServiceClient):
    """Async HTTP client for the case desk REST API.

    Every call raises httpx.HTTPStatusError on a non-2xx response; the
    response body carries {"error", "message", "details"}.

    Usage:
        client = CaseServiceClient(base_url="http://loandesk-case-service:8000")
        case = await client.get_case("CASE-0001", actor=actor)
    """

    def __init__(
        self,
        base_url: str = "http://loandesk-case-service:8000",
        timeout: float = 30.0,
        transport=None,
    ):
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v1{path}"

    async def _request(
        self,
        method: str,
        path: str,
        actor: Optional[Actor] = None,
        correlation_id: Optional[str] = None,
        **kwargs: Any,
    ):
        async with self._get_client() as client:
            response = await client.request(
                method,
                self._url(path),
                headers=self._headers(actor=actor, correlation_id=correlation_id),
                **kwargs,
            )
            response.raise_for_status()
            return response.json() if response.content else None

    # ============================================================
    # Cases
    # ============================================================
    async def create_case(
        self, payload: Dict[str, Any], actor: Actor, correlation_id: Optional[str] = None
    ) -> CaseRecord:
        """Create a case from an intake payload (wire names)."""
        data = await self._request("POST", "/cases", actor, correlation_id, json=payload)
        return CaseRecord.model_validate(data)

    async def get_case(
        self, case_id: str, actor: Optional[Actor] = None, correlation_id: Optional[str] = None
    ) -> CaseRecord:
        data = await self._request("GET", f"/cases/{case_id}", actor, correlation_id)
        return CaseRecord.model_validate(data)

    async def list_cases(
        self,
        case_filter: Optional[CaseFilter] = None,
        actor: Optional[Actor] = None,
        correlation_id: Optional[str] = None,
    ) -> List[CaseRecord]:
        """List cases; the filter is sent as query parameters."""
        params = {}
        if case_filter is not None:
            for key, value in case_filter.model_dump(mode="json", by_alias=True, exclude_none=True).items():
                params[key] = value
        data = await self._request("GET", "/cases", actor, correlation_id, params=params)
        return [CaseRecord.model_validate(item) for item in data]

    async def update_case(
        self, case_id: str, patch: Dict[str, Any], actor: Actor, correlation_id: Optional[str] = None
    ) -> CaseRecord:
        data = await self._request("PATCH", f"/cases/{case_id}", actor, correlation_id, json=patch)
        return CaseRecord.model_validate(data)

    async def delete_case(
        self, case_id: str, actor: Actor, correlation_id: Optional[str] = None
    ) -> bool:
        await self._request("DELETE", f"/cases/{case_id}", actor, correlation_id)
        return True

    async def transition(
        self,
        case_id: str,
        status: CaseStatus,
        actor: Actor,
        note: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> CaseRecord:
        body = {"status": CaseStatus(status).value, "note": note}
        data = await self._request("POST", f"/cases/{case_id}/transition", actor, correlation_id, json=body)
        return CaseRecord.model_validate(data)

    async def reopen(
        self,
        case_id: str,
        reason: str,
        actor: Actor,
        status: CaseStatus = CaseStatus.IN_PROGRESS,
        correlation_id: Optional[str] = None,
    ) -> CaseRecord:
        body = {"status": CaseStatus(status).value, "reason": reason}
        data = await self._request("POST", f"/cases/{case_id}/reopen", actor, correlation_id, json=body)
        return CaseRecord.model_validate(data)

    async def assign_case(
        self,
        case_id: str,
        assignee_id: str,
        actor: Actor,
        assignee_name: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> CaseRecord:
        body = {"assigneeId": assignee_id, "assigneeName": assignee_name}
        data = await self._request("POST", f"/cases/{case_id}/assign", actor, correlation_id, json=body)
        return CaseRecord.model_validate(data)

    async def add_note(
        self, case_id: str, text: str, actor: Actor, correlation_id: Optional[str] = None
    ) -> CaseRecord:
        data = await self._request(
            "POST", f"/cases/{case_id}/notes", actor, correlation_id, json={"text": text}
        )
        return CaseRecord.model_validate(data)

    async def record_call(
        self,
        case_id: str,
        response: str,
        actor: Actor,
        next_call_date: Optional[datetime] = None,
        correlation_id: Optional[str] = None,
    ) -> CaseRecord:
        body = {
            "response": response,
            "nextCallDate": next_call_date.isoformat() if next_call_date else None,
        }
        data = await self._request("POST", f"/cases/{case_id}/calls", actor, correlation_id, json=body)
        return CaseRecord.model_validate(data)

    # ============================================================
    # Documents
    # ============================================================
    async def attach_document(
        self,
        case_id: str,
        slot: str,
        document_ref: str,
        actor: Actor,
        overwrite: bool = False,
        correlation_id: Optional[str] = None,
    ) -> DocumentSlotResponse:
        body = {"documentRef": document_ref, "overwrite": overwrite}
        data = await self._request(
            "PUT", f"/cases/{case_id}/documents/{slot}", actor, correlation_id, json=body
        )
        return DocumentSlotResponse.model_validate(data)

    async def detach_document(
        self, case_id: str, slot: str, actor: Actor, correlation_id: Optional[str] = None
    ) -> DocumentSlotResponse:
        data = await self._request("DELETE", f"/cases/{case_id}/documents/{slot}", actor, correlation_id)
        return DocumentSlotResponse.model_validate(data)

    # ============================================================
    # Request threads
    # ============================================================
    async def open_thread(
        self, case_id: str, message: str, actor: Actor, correlation_id: Optional[str] = None
    ) -> RequestThread:
        data = await self._request(
            "POST", f"/cases/{case_id}/threads", actor, correlation_id, json={"message": message}
        )
        return RequestThread.model_validate(data)

    async def reply_thread(
        self, thread_id: str, response: str, actor: Actor, correlation_id: Optional[str] = None
    ) -> RequestThread:
        data = await self._request(
            "POST", f"/threads/{thread_id}/reply", actor, correlation_id, json={"response": response}
        )
        return RequestThread.model_validate(data)

    async def get_thread(
        self, thread_id: str, actor: Optional[Actor] = None, correlation_id: Optional[str] = None
    ) -> RequestThread:
        data = await self._request("GET", f"/threads/{thread_id}", actor, correlation_id)
        return RequestThread.model_validate(data)

    async def list_case_threads(
        self, case_id: str, actor: Optional[Actor] = None, correlation_id: Optional[str] = None
    ) -> List[RequestThread]:
        data = await self._request("GET", f"/cases/{case_id}/threads", actor, correlation_id)
        return [RequestThread.model_validate(item) for item in data]

    async def list_open_threads(
        self, actor: Optional[Actor] = None, correlation_id: Optional[str] = None
    ) -> List[RequestThread]:
        data = await self._request("GET", "/threads/open", actor, correlation_id)
        return [RequestThread.model_validate(item) for item in data]

    # ============================================================
    # Referrals
    # ============================================================
    async def list_referrals(
        self, actor: Optional[Actor] = None, correlation_id: Optional[str] = None
    ) -> List[Referral]:
        data = await self._request("GET", "/referrals", actor, correlation_id)
        return [Referral.model_validate(item) for item in data]

    async def get_referral(
        self, referral_id: str, actor: Optional[Actor] = None, correlation_id: Optional[str] = None
    ) -> Referral:
        data = await self._request("GET", f"/referrals/{referral_id}", actor, correlation_id)
        return Referral.model_validate(data)

    async def create_referral(
        self,
        name: str,
        actor: Actor,
        phone: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Referral:
        data = await self._request(
            "POST", "/referrals", actor, correlation_id, json={"name": name, "phone": phone}
        )
        return Referral.model_validate(data)

    async def reconcile_referrals(
        self, actor: Actor, correlation_id: Optional[str] = None
    ) -> ReconcileReport:
        data = await self._request("POST", "/referrals/reconcile", actor, correlation_id)
        return ReconcileReport.model_validate(data)
