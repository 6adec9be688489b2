"""REST API: routing, identity headers and error mapping."""

import json

import pytest
from fastapi.testclient import TestClient

from loandesk_core.api import create_app
from tests.conftest import make_payload

TELECALLER = {"X-User-ID": "tc-1", "X-User-Name": "Priya", "X-User-Roles": json.dumps(["telecaller"])}
ADMIN = {"X-User-ID": "adm-1", "X-User-Roles": json.dumps(["admin"])}


@pytest.fixture
def client(desk):
    with TestClient(create_app(desk)) as test_client:
        yield test_client


def _create(client, **overrides):
    response = client.post("/api/v1/cases", json=make_payload(**overrides), headers=TELECALLER)
    assert response.status_code == 201, response.text
    return response.json()


class TestCases:
    def test_create_and_get(self, client):
        created = _create(client, referral={"name": "Vijay Kumar", "phone": "9988776655"})
        assert created["caseId"] == "CASE-0001"
        assert created["status"] == "new"
        assert created["resolutionDate"] is None
        assert created["createdBy"] == "tc-1"
        assert created["createdByName"] == "Priya"

        fetched = client.get(f"/api/v1/cases/{created['caseId']}").json()
        assert fetched == created

        [referral] = client.get("/api/v1/referrals").json()
        assert (referral["name"], referral["phone"], referral["cases"]) == ("Vijay Kumar", "9988776655", 1)

    def test_identity_required(self, client):
        response = client.post("/api/v1/cases", json=make_payload())
        assert response.status_code == 401

    def test_validation_error_body(self, client):
        response = client.post(
            "/api/v1/cases", json={"name": "", "phone": "1", "problem": ""}, headers=TELECALLER
        )
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "validation_error"
        assert {d["field"] for d in body["details"]} >= {"name", "phone", "problem"}

    def test_not_found(self, client):
        response = client.get("/api/v1/cases/CASE-9999")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_patch_and_list_filter(self, client):
        created = _create(client)
        _create(client)
        patched = client.patch(
            f"/api/v1/cases/{created['caseId']}", json={"priority": "urgent"}, headers=TELECALLER
        )
        assert patched.status_code == 200
        assert patched.json()["priority"] == "urgent"

        urgent = client.get("/api/v1/cases", params={"priority": "urgent"}).json()
        assert [c["caseId"] for c in urgent] == [created["caseId"]]
        new_cases = client.get("/api/v1/cases", params={"status": ["new"]}).json()
        assert len(new_cases) == 2

    def test_list_with_naive_date_bounds(self, client):
        created = _create(client)
        response = client.get("/api/v1/cases", params={"createdFrom": "2020-01-01T00:00:00"})
        assert response.status_code == 200, response.text
        assert [c["caseId"] for c in response.json()] == [created["caseId"]]

        before = client.get("/api/v1/cases", params={"createdTo": "2020-01-01T00:00:00"})
        assert before.status_code == 200
        assert before.json() == []

    def test_bank_status_and_cibil_stamp_on_wire(self, client):
        created = _create(
            client,
            banks=["HDFC Bank"],
            bankDetails={"HDFC Bank": {"accountNumber": "123456789", "loanType": "Home Loan"}},
        )
        assert created["bankDetails"]["HDFC Bank"]["status"] == "Pending"
        assert created["cibilUpdatedAt"] is None

        patched = client.patch(
            f"/api/v1/cases/{created['caseId']}", json={"cibilBefore": 640}, headers=TELECALLER
        ).json()
        assert patched["cibilUpdatedAt"] == patched["updatedAt"]

    def test_delete(self, client):
        created = _create(client, referral={"name": "Vijay"})
        assert client.delete(f"/api/v1/cases/{created['caseId']}", headers=ADMIN).status_code == 204
        assert client.get(f"/api/v1/cases/{created['caseId']}").status_code == 404
        assert client.get(f"/api/v1/referrals/{created['referralId']}").json()["cases"] == 0


class TestLifecycle:
    def test_transition_and_illegal_move(self, client):
        case_id = _create(client)["caseId"]
        for status in ("in-progress", "resolved"):
            response = client.post(
                f"/api/v1/cases/{case_id}/transition", json={"status": status}, headers=TELECALLER
            )
            assert response.status_code == 200
        assert response.json()["resolutionDate"] is not None

        rejected = client.post(
            f"/api/v1/cases/{case_id}/transition", json={"status": "new"}, headers=TELECALLER
        )
        assert rejected.status_code == 409
        assert rejected.json()["details"] == [{"from": "resolved", "to": "new"}]

    def test_reopen_is_admin_only(self, client):
        case_id = _create(client)["caseId"]
        for status in ("in-progress", "resolved", "closed"):
            client.post(f"/api/v1/cases/{case_id}/transition", json={"status": status}, headers=ADMIN)

        body = {"reason": "Customer disputes closure"}
        forbidden = client.post(f"/api/v1/cases/{case_id}/reopen", json=body, headers=TELECALLER)
        assert forbidden.status_code == 403
        reopened = client.post(f"/api/v1/cases/{case_id}/reopen", json=body, headers=ADMIN)
        assert reopened.json()["status"] == "in-progress"

    def test_assign_note_and_call(self, client):
        case_id = _create(client)["caseId"]
        assigned = client.post(
            f"/api/v1/cases/{case_id}/assign", json={"assigneeId": "off-1"}, headers=ADMIN
        ).json()
        assert (assigned["assignedTo"], assigned["status"]) == ("off-1", "in-progress")

        noted = client.post(f"/api/v1/cases/{case_id}/notes", json={"text": "Called twice"}, headers=ADMIN)
        assert noted.json()["timeline"][-1]["note"] == "Called twice"

        called = client.post(f"/api/v1/cases/{case_id}/calls", json={"response": "Busy"}, headers=TELECALLER)
        assert called.json()["callHistory"][-1]["response"] == "Busy"

    def test_body_validation_uses_same_shape(self, client):
        case_id = _create(client)["caseId"]
        response = client.post(f"/api/v1/cases/{case_id}/transition", json={"status": "archived"}, headers=ADMIN)
        assert response.status_code == 422
        assert response.json()["details"][0]["field"] == "status"


class TestDocumentsAndThreads:
    def test_attach_replace_detach(self, client):
        case_id = _create(client)["caseId"]
        url = f"/api/v1/cases/{case_id}/documents/panDoc"
        assert client.put(url, json={"documentRef": "uploads/1.pdf"}, headers=TELECALLER).status_code == 200

        occupied = client.put(url, json={"documentRef": "uploads/2.pdf"}, headers=TELECALLER)
        assert occupied.status_code == 422

        replaced = client.put(url, json={"documentRef": "uploads/2.pdf", "overwrite": True}, headers=TELECALLER)
        assert replaced.json()["previousRef"] == "uploads/1.pdf"

        detached = client.delete(url, headers=TELECALLER).json()
        assert detached["previousRef"] == "uploads/2.pdf"

    def test_thread_flow(self, client):
        case_id = _create(client)["caseId"]
        opened = client.post(f"/api/v1/cases/{case_id}/threads", json={"message": "Need help"}, headers=TELECALLER)
        assert opened.status_code == 201
        thread_id = opened.json()["threadId"]
        assert [t["threadId"] for t in client.get("/api/v1/threads/open").json()] == [thread_id]

        assert client.post(
            f"/api/v1/threads/{thread_id}/reply", json={"response": "Done"}, headers=TELECALLER
        ).status_code == 403
        answered = client.post(f"/api/v1/threads/{thread_id}/reply", json={"response": "Done"}, headers=ADMIN)
        assert answered.json()["status"] == "answered"
        assert client.get("/api/v1/threads/open").json() == []
        assert client.get(f"/api/v1/cases/{case_id}/threads").json()[0]["adminResponse"] == "Done"


class TestReferrals:
    def test_create_and_reconcile(self, client):
        created = client.post(
            "/api/v1/referrals", json={"name": "Sunita Rao", "phone": "9123456789"}, headers=ADMIN
        )
        assert created.status_code == 201
        duplicate = client.post(
            "/api/v1/referrals", json={"name": "Sunita Rao", "phone": "9123456789"}, headers=ADMIN
        )
        assert duplicate.status_code == 422

        assert client.post("/api/v1/referrals/reconcile", headers=TELECALLER).status_code == 403
        report = client.post("/api/v1/referrals/reconcile", headers=ADMIN).json()
        assert report == {"checked": 1, "corrections": []}
