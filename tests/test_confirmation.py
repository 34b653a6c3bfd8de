"""
Tests for hospital admission confirmation.
"""

import random

import pytest

from conftest import AADHAAR, HOSPITAL_PLACE_ID, FakeMaps
from mediloan.config.settings import Settings
from mediloan.emergency.confirmation import (
    FAILURE_REASONS,
    NEXT_STEPS_CONFIRMED,
    NEXT_STEPS_REJECTED,
    ConfirmationOutcome,
    HospitalConfirmationService,
    HospitalConfirmer,
    SimulatedConfirmer,
    VoiceCallConfirmer,
    get_confirmer,
)
from mediloan.emergency.models import ConfirmationRequest, LoanStatus
from mediloan.errors import (
    AttemptsExhausted,
    DependencyUnavailable,
    InternalError,
    NotFoundError,
    RateLimitExceeded,
)
from mediloan.repository.audit_trail import AuditTrail


class CountingConfirmer(HospitalConfirmer):
    def __init__(self, outcome: ConfirmationOutcome):
        self.outcome = outcome
        self.calls = []

    def confirm(self, contact, patient_name, hospital_name):
        self.calls.append((contact, patient_name, hospital_name))
        return self.outcome


class RaisingConfirmer(HospitalConfirmer):
    def __init__(self, error: Exception):
        self.error = error

    def confirm(self, contact, patient_name, hospital_name):
        raise self.error


class FakeTelephony:
    def __init__(self, statuses, summary=""):
        self.statuses = list(statuses)
        self.summary = summary
        self.started = []

    def start_call(self, phone_number, task):
        self.started.append((phone_number, task))
        return "call-1"

    def get_call(self, call_id):
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return {"status": status, "summary": self.summary}


def _request(loan_id, place_id=HOSPITAL_PLACE_ID):
    return ConfirmationRequest.model_validate({
        "loanId": loan_id,
        "hospitalPlaceId": place_id,
        "patientName": "Ravi Kumar",
        "contact": "+919876543210",
    })


class TestSimulatedConfirmer:

    def test_always_confirms_at_full_rate(self):
        outcome = SimulatedConfirmer(1.0, random.Random(7)).confirm("+919876543210", "Ravi", "KEM")
        assert outcome == ConfirmationOutcome(confirmed=True)

    def test_failure_carries_reason(self):
        outcome = SimulatedConfirmer(0.0, random.Random(7)).confirm("+919876543210", "Ravi", "KEM")
        assert outcome.confirmed is False
        assert outcome.reason in FAILURE_REASONS

    def test_factory(self):
        assert isinstance(get_confirmer(Settings()), SimulatedConfirmer)
        assert isinstance(get_confirmer(Settings(confirmer="voice")), VoiceCallConfirmer)


class TestVoiceCallConfirmer:

    def test_confirmed_on_call(self):
        telephony = FakeTelephony(["queued", "in-progress", "completed"], summary="Staff said CONFIRM.")
        outcome = VoiceCallConfirmer(telephony, poll_interval=0).confirm("+919876543210", "Ravi", "KEM")

        assert outcome.confirmed is True
        assert telephony.started[0][0] == "+919876543210"
        assert "Ravi" in telephony.started[0][1]

    def test_not_admitted(self):
        telephony = FakeTelephony(["completed"], summary="No such patient.")
        outcome = VoiceCallConfirmer(telephony, poll_interval=0).confirm("+919876543210", "Ravi", "KEM")
        assert outcome == ConfirmationOutcome(confirmed=False, reason="Patient not admitted")

    def test_call_never_completes(self):
        telephony = FakeTelephony(["failed"])
        outcome = VoiceCallConfirmer(telephony, poll_interval=0).confirm("+919876543210", "Ravi", "KEM")
        assert outcome == ConfirmationOutcome(confirmed=False, reason="Contact number unreachable")


class TestHospitalConfirmationService:

    def setup_method(self):
        self.maps = FakeMaps()

    def _service(self, loan_store, confirmer):
        return HospitalConfirmationService(self.maps, confirmer, store=loan_store)

    def _loan(self, loan_store, status=LoanStatus.PENDING):
        loan_id = loan_store.create_loan(AADHAAR, 100000, "Road accident on the highway")["id"]
        if status != LoanStatus.PENDING:
            loan_store.update_loan(loan_id, status=status, hospital_name="Lilavati Hospital")
        return loan_id

    def test_confirmed(self, loan_store):
        loan_id = self._loan(loan_store)
        confirmer = CountingConfirmer(ConfirmationOutcome(confirmed=True))

        response = self._service(loan_store, confirmer).confirm(_request(loan_id), ip="10.0.0.1")

        assert response.confirmed is True
        assert response.hospital_name == "Lilavati Hospital"
        assert response.next_steps == NEXT_STEPS_CONFIRMED
        assert confirmer.calls == [("+919876543210", "Ravi Kumar", "Lilavati Hospital")]

        loan = loan_store.get_loan(loan_id)
        assert loan["status"] == LoanStatus.PENDING_APPROVAL
        assert loan["hospital_place_id"] == HOSPITAL_PLACE_ID

        entry = AuditTrail().recent(loan_id)[0]
        assert entry.status == "CONFIRMED"
        assert entry.target == HOSPITAL_PLACE_ID
        assert entry.ip == "10.0.0.1"

    def test_rejected(self, loan_store):
        loan_id = self._loan(loan_store)
        confirmer = CountingConfirmer(ConfirmationOutcome(confirmed=False, reason="Patient not admitted"))

        response = self._service(loan_store, confirmer).confirm(_request(loan_id))

        assert response.confirmed is False
        assert response.hospital_name == ""
        assert response.next_steps == NEXT_STEPS_REJECTED

        loan = loan_store.get_loan(loan_id)
        assert loan["status"] == LoanStatus.REJECTED
        assert loan["rejection_reason"] == "Patient not admitted"
        assert AuditTrail().recent(loan_id)[0].failure_reason == "Patient not admitted"

    def test_repeat_request_is_served_from_cache(self, loan_store):
        loan_id = self._loan(loan_store)
        confirmer = CountingConfirmer(ConfirmationOutcome(confirmed=True))
        service = self._service(loan_store, confirmer)

        first = service.confirm(_request(loan_id))
        second = service.confirm(_request(loan_id))

        assert second.model_dump_json(by_alias=True) == first.model_dump_json(by_alias=True)
        assert len(confirmer.calls) == 1

    def test_sixth_attempt_is_refused_and_audited(self, loan_store):
        loan_id = self._loan(loan_store)
        service = self._service(loan_store, CountingConfirmer(ConfirmationOutcome(confirmed=True)))

        for _ in range(5):
            service.confirm(_request(loan_id))

        with pytest.raises(AttemptsExhausted) as exc_info:
            service.confirm(_request(loan_id))

        assert exc_info.value.status_code == 423
        entry = AuditTrail().recent(loan_id)[0]
        assert entry.status == "REJECTED"
        assert entry.failure_reason == "Maximum attempts exceeded"

    def test_ip_rate_limit(self, loan_store):
        service = self._service(loan_store, CountingConfirmer(ConfirmationOutcome(confirmed=True)))
        loan_ids = [
            loan_store.create_loan(AADHAAR, 100000, "Road accident", loan_id=f"loan-171000000000{i}-9012")["id"]
            for i in range(10)
        ]
        for loan_id in loan_ids:
            service.confirm(_request(loan_id), ip="10.0.0.9")

        with pytest.raises(RateLimitExceeded):
            service.confirm(_request(loan_ids[0]), ip="10.0.0.9")

    def test_unknown_loan(self, loan_store):
        service = self._service(loan_store, CountingConfirmer(ConfirmationOutcome(confirmed=True)))
        with pytest.raises(NotFoundError):
            service.confirm(_request("loan-1710000000000-0000"))

    def test_unknown_hospital(self, loan_store):
        loan_id = self._loan(loan_store)
        self.maps.details = {}
        confirmer = CountingConfirmer(ConfirmationOutcome(confirmed=True))

        with pytest.raises(NotFoundError) as exc_info:
            self._service(loan_store, confirmer).confirm(_request(loan_id))

        assert "Invalid hospital" in exc_info.value.message
        assert confirmer.calls == []
        assert AuditTrail().recent(loan_id)[0].failure_reason == "System error: Hospital not found"
        assert loan_store.get_loan(loan_id)["status"] == LoanStatus.PENDING

    def test_confirmer_outage_is_audited(self, loan_store):
        loan_id = self._loan(loan_store)
        confirmer = RaisingConfirmer(DependencyUnavailable("Call could not be placed: timed out"))

        with pytest.raises(DependencyUnavailable):
            self._service(loan_store, confirmer).confirm(_request(loan_id), ip="10.0.0.4")

        entry = AuditTrail().recent(loan_id)[0]
        assert entry.status == "REJECTED"
        assert entry.ip == "10.0.0.4"
        assert entry.target == HOSPITAL_PLACE_ID
        assert entry.failure_reason == "System error: Call could not be placed: timed out"
        assert loan_store.get_loan(loan_id)["status"] == LoanStatus.PENDING

    def test_unexpected_error_becomes_internal_error(self, loan_store):
        loan_id = self._loan(loan_store)
        confirmer = RaisingConfirmer(RuntimeError("connection reset"))

        with pytest.raises(InternalError) as exc_info:
            self._service(loan_store, confirmer).confirm(_request(loan_id))

        assert exc_info.value.status_code == 500
        assert "connection reset" not in exc_info.value.message
        assert AuditTrail().recent(loan_id)[0].failure_reason == "System error: connection reset"
        assert loan_store.get_loan(loan_id)["status"] == LoanStatus.PENDING

    def test_unknown_loan_is_audited(self, loan_store):
        service = self._service(loan_store, CountingConfirmer(ConfirmationOutcome(confirmed=True)))
        with pytest.raises(NotFoundError):
            service.confirm(_request("loan-1710000000000-0000"))
        entry = AuditTrail().recent("loan-1710000000000-0000")[0]
        assert entry.failure_reason == "System error: Loan request not found"

    def test_already_confirmed_loan(self, loan_store):
        loan_id = self._loan(loan_store, status=LoanStatus.PENDING_APPROVAL)
        confirmer = CountingConfirmer(ConfirmationOutcome(confirmed=False))

        response = self._service(loan_store, confirmer).confirm(_request(loan_id))

        assert response.confirmed is True
        assert response.hospital_name == "Lilavati Hospital"
        assert confirmer.calls == []

    def test_already_rejected_loan(self, loan_store):
        loan_id = self._loan(loan_store, status=LoanStatus.REJECTED)
        confirmer = CountingConfirmer(ConfirmationOutcome(confirmed=True))

        response = self._service(loan_store, confirmer).confirm(_request(loan_id))

        assert response.confirmed is False
        assert confirmer.calls == []

    def test_loan_past_confirmation_stage(self, loan_store):
        loan_id = self._loan(loan_store, status=LoanStatus.APPROVED)
        response = self._service(
            loan_store, CountingConfirmer(ConfirmationOutcome(confirmed=False))
        ).confirm(_request(loan_id))
        assert response.confirmed is True
