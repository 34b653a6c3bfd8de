"""
HTTP tests for the emergency loan API.

Third-party services are swapped out through FastAPI dependency overrides.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import AADHAAR, HOSPITAL_COORDS, HOSPITAL_PLACE_ID, FakeMaps, FakePoliceRegistry
from mediloan.api import emergency_routes
from mediloan.api.main import app
from mediloan.emergency.approval import FinalApprovalService
from mediloan.emergency.confirmation import HospitalConfirmationService, SimulatedConfirmer

FIR_TEXT = (
    "FIR No. MH-123/2024 registered at Andheri police station on 12/03/2024 "
    "for a road traffic accident on the Western Express Highway."
)
MEDICAL_TEXT = (
    "Lilavati Hospital. Diagnosis: critical head injury with internal bleeding. "
    "Treatment: emergency surgery. Physician: Dr. A. Rao."
)


@pytest.fixture
def client(loan_store):
    maps = FakeMaps(places=[{
        "name": "Lilavati Hospital",
        "types": ["hospital", "health"],
        "formatted_address": "Bandra West, Mumbai",
        "place_id": HOSPITAL_PLACE_ID,
    }])
    app.dependency_overrides[emergency_routes.get_maps_client] = lambda: maps
    app.dependency_overrides[emergency_routes.get_store] = lambda: loan_store
    app.dependency_overrides[emergency_routes.get_confirmation_service] = (
        lambda: HospitalConfirmationService(maps, SimulatedConfirmer(1.0), store=loan_store)
    )
    app.dependency_overrides[emergency_routes.get_approval_service] = (
        lambda: FinalApprovalService(loan_store, FakePoliceRegistry())
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_loan(client, **overrides):
    body = {
        "aadhaarNumber": AADHAAR,
        "amount": 100000,
        "description": "Road accident on the Western Express Highway",
        "hospitalPlaceId": HOSPITAL_PLACE_ID,
        "incidentDate": "2024-03-12T10:00:00Z",
    }
    body.update(overrides)
    response = client.post("/emergency/loans", json=body)
    assert response.status_code == 201
    return response.json()["loanId"]


def _register(client, loan_id, doc_type, text):
    response = client.post(
        "/emergency/documents/register", json={"loanId": loan_id, "type": doc_type, "text": text}
    )
    assert response.status_code == 200
    return {"type": doc_type, "text": text, "hash": response.json()["hash"]}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_loan(client):
    response = client.post("/emergency/loans", json={
        "aadhaarNumber": AADHAAR,
        "amount": 5000,
        "description": "Slipped on wet stairs",
    })
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["loanId"].endswith("-9012")


def test_invalid_input_is_400(client):
    response = client.post("/emergency/loans", json={
        "aadhaarNumber": "1234",
        "amount": 5000,
        "description": "Slipped on wet stairs",
    })
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid input"
    assert any("aadhaarNumber" in d["loc"] for d in body["details"])


def test_malformed_loan_id_is_400(client):
    response = client.get("/emergency/loan-status/not-a-loan")
    assert response.status_code == 400


def test_unknown_loan_is_404(client):
    response = client.get("/emergency/loan-status/loan-1710000000000-0000")
    assert response.status_code == 404
    assert response.json() == {"error": "Loan not found"}


def test_risk_score(client):
    response = client.post("/emergency/risk-score", json={
        "aadhaarNumber": AADHAAR,
        "hospitalPlaceId": HOSPITAL_PLACE_ID,
        "accidentDetails": "minor bruise on the arm",
        "loanAmount": 50000,
        "userLocation": HOSPITAL_COORDS,
    })
    assert response.status_code == 200
    assert response.json() == {
        "approved": True,
        "approvedAmount": 41500,
        "riskScore": 17,
        "reasons": [],
        "distanceKm": 0.0,
        "imageAnalysis": None,
    }


def test_risk_score_unknown_hospital(client):
    response = client.post("/emergency/risk-score", json={
        "aadhaarNumber": AADHAAR,
        "hospitalPlaceId": "ChIJ-some-other-hospital-01",
        "accidentDetails": "minor bruise on the arm",
        "loanAmount": 50000,
    })
    assert response.status_code == 404


def test_verify_hospital(client):
    response = client.post("/emergency/hospitals/verify", json={"query": "Lilavati"})
    assert response.status_code == 200
    assert response.json() == {
        "isRegistered": True,
        "name": "Lilavati Hospital",
        "address": "Bandra West, Mumbai",
        "placeId": HOSPITAL_PLACE_ID,
        "confidence": 100,
    }


def test_verify_hospital_rate_limited(client):
    headers = {"X-Forwarded-For": "49.36.1.2"}
    for _ in range(10):
        client.post("/emergency/hospitals/verify", json={"query": "Lilavati"}, headers=headers)
    response = client.post("/emergency/hospitals/verify", json={"query": "Lilavati"}, headers=headers)
    assert response.status_code == 429
    assert "error" in response.json()


def test_full_loan_lifecycle(client):
    loan_id = _create_loan(client)

    confirmation = client.post("/emergency/confirm-hospital", json={
        "loanId": loan_id,
        "hospitalPlaceId": HOSPITAL_PLACE_ID,
        "patientName": "Ravi Kumar",
        "contact": "+919876543210",
    })
    assert confirmation.status_code == 200
    assert confirmation.json() == {
        "confirmed": True,
        "hospitalName": "Lilavati Hospital",
        "nextSteps": "Proceed to document upload",
    }

    documents = [
        _register(client, loan_id, "FIR", FIR_TEXT),
        _register(client, loan_id, "MEDICAL_REPORT", MEDICAL_TEXT),
    ]
    approval = client.post("/emergency/final-approval", json={
        "loanId": loan_id,
        "documents": documents,
        "hospitalPlaceId": HOSPITAL_PLACE_ID,
    })
    assert approval.status_code == 200
    body = approval.json()
    assert body["approved"] is True
    assert body["approvedAmount"] == 500000
    assert body["documentStatus"] == {"FIR": "VALID", "MEDICAL_REPORT": "VALID"}
    assert "rejectionReasons" not in body

    again = client.post("/emergency/final-approval", json={
        "loanId": loan_id,
        "documents": documents,
        "hospitalPlaceId": HOSPITAL_PLACE_ID,
    })
    assert again.status_code == 409

    disbursed = client.post(f"/emergency/loans/{loan_id}/disburse")
    assert disbursed.json()["status"] == "REPAYMENT"

    status = client.get(f"/emergency/loan-status/{loan_id}").json()
    assert status["status"] == "REPAYMENT"
    assert status["amountDue"] == 500000
    assert status["nextPayment"] == 500000

    repaid = client.post(f"/emergency/loans/{loan_id}/repayments", json={"amount": 500000})
    assert repaid.status_code == 201

    status = client.get(f"/emergency/loan-status/{loan_id}").json()
    assert status["status"] == "CLOSED"
    assert status["amountDue"] == 0
    assert status["repaymentHistory"][0]["method"] == "UPI"


def test_rejected_documents_keep_null_amount(client, loan_store):
    loan_id = _create_loan(client)
    loan_store.update_loan(loan_id, status="PENDING_APPROVAL")

    fir = _register(client, loan_id, "FIR", FIR_TEXT)
    response = client.post("/emergency/final-approval", json={
        "loanId": loan_id,
        "documents": [fir],
        "hospitalPlaceId": HOSPITAL_PLACE_ID,
    })

    body = response.json()
    assert body["approved"] is False
    assert body["approvedAmount"] is None
    # no medical report: rejected, but no check failed
    assert body["rejectionReasons"] == []
    assert body["nextSteps"].startswith("Please review")


def test_register_document_for_unknown_loan(client):
    response = client.post("/emergency/documents/register", json={
        "loanId": "loan-1710000000000-0000",
        "type": "FIR",
        "text": FIR_TEXT,
    })
    assert response.status_code == 404


def test_disburse_unapproved_loan_conflicts(client):
    loan_id = _create_loan(client)
    response = client.post(f"/emergency/loans/{loan_id}/disburse")
    assert response.status_code == 409
