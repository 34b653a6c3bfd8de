"""
Hospital admission confirmation.

A PENDING loan is confirmed by asking the hospital whether the patient is
admitted. The outcome moves the loan to PENDING_APPROVAL (ready for
document upload) or REJECTED.

Guards, in order:
1. 10 requests / minute per IP
2. 5 lifetime attempts per loan (the 6th is refused with 423 and audited)
3. idempotency cache keyed on (loan id, hospital place id), 2 hours
"""

import logging
import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from mediloan.clients.google_maps import GoogleMapsClient
from mediloan.clients.telephony import TelephonyClient
from mediloan.config.settings import Settings, get_settings
from mediloan.emergency.db import LoanStore, get_loan_store
from mediloan.emergency.models import ConfirmationRequest, ConfirmationResponse, LoanStatus
from mediloan.errors import (
    AttemptsExhausted,
    InternalError,
    MediLoanError,
    NotFoundError,
    RateLimitExceeded,
)
from mediloan.repository.audit_trail import AuditEntry, AuditTrail, IdempotencyCache
from mediloan.utils.deadline import poll_until_terminal
from mediloan.utils.rate_limit import (
    AttemptCounter,
    RateLimiter,
    ip_rate_limiter,
    loan_attempt_counter,
)

logger = logging.getLogger(__name__)

NEXT_STEPS_CONFIRMED = "Proceed to document upload"
NEXT_STEPS_REJECTED = "Contact hospital administration for assistance"

FAILURE_REASONS = [
    "Hospital at capacity",
    "Patient not admitted",
    "Contact number unreachable",
    "Invalid patient details",
    "Hospital system maintenance",
    "Patient information mismatch",
]


@dataclass
class ConfirmationOutcome:
    confirmed: bool
    reason: Optional[str] = None


class HospitalConfirmer(ABC):
    """Asks a hospital to confirm a patient's admission."""

    @abstractmethod
    def confirm(self, contact: str, patient_name: str, hospital_name: str) -> ConfirmationOutcome:
        raise NotImplementedError


class SimulatedConfirmer(HospitalConfirmer):
    """SMS round trip stand-in with a fixed success rate."""

    def __init__(self, success_rate: float = 0.7, rng: Optional[random.Random] = None):
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def confirm(self, contact: str, patient_name: str, hospital_name: str) -> ConfirmationOutcome:
        logger.info(
            '[MOCK SMS] to %s: "Confirm admission for %s at %s? Reply CONFIRM"',
            contact, patient_name, hospital_name,
        )
        if self.rng.random() < self.success_rate:
            logger.info("[MOCK SMS RESPONSE]: CONFIRM received from %s", hospital_name)
            return ConfirmationOutcome(confirmed=True)

        reason = self.rng.choice(FAILURE_REASONS)
        logger.info("[MOCK SMS RESPONSE]: FAIL - %s", reason)
        return ConfirmationOutcome(confirmed=False, reason=reason)


class VoiceCallConfirmer(HospitalConfirmer):
    """
    Places an automated call and waits for it to finish.

    The hospital confirms by saying "confirm" on the call; the call summary
    is searched for it once the call reaches a terminal status.
    """

    def __init__(
        self,
        telephony: TelephonyClient,
        poll_interval: float = 10.0,
        max_duration: float = 20 * 60,
        cancel: Optional[threading.Event] = None,
    ):
        self.telephony = telephony
        self.poll_interval = poll_interval
        self.max_duration = max_duration
        self.cancel = cancel

    def confirm(self, contact: str, patient_name: str, hospital_name: str) -> ConfirmationOutcome:
        task = (
            f"You are calling {hospital_name} on behalf of an emergency loan service. "
            f"Ask whether {patient_name} is currently admitted. "
            "If they are, ask the staff member to say CONFIRM."
        )
        call_id = self.telephony.start_call(contact, task)

        status = poll_until_terminal(
            lambda: self.telephony.get_call(call_id).get("status"),
            interval=self.poll_interval,
            max_duration=self.max_duration,
            cancel=self.cancel,
        )
        if status != "completed":
            return ConfirmationOutcome(confirmed=False, reason="Contact number unreachable")

        call = self.telephony.get_call(call_id)
        transcript = " ".join(
            str(call.get(field) or "") for field in ("summary", "concatenated_transcript")
        ).lower()
        if "confirm" in transcript:
            return ConfirmationOutcome(confirmed=True)
        return ConfirmationOutcome(confirmed=False, reason="Patient not admitted")


def get_confirmer(settings: Optional[Settings] = None) -> HospitalConfirmer:
    settings = settings or get_settings()
    if settings.confirmer == "voice":
        return VoiceCallConfirmer(TelephonyClient(settings.bland_api_key, timeout=settings.http_timeout))
    return SimulatedConfirmer(settings.confirmation_success_rate)


class HospitalConfirmationService:

    def __init__(
        self,
        maps: GoogleMapsClient,
        confirmer: HospitalConfirmer,
        store: Optional[LoanStore] = None,
        limiter: Optional[RateLimiter] = None,
        attempts: Optional[AttemptCounter] = None,
        cache: Optional[IdempotencyCache] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.maps = maps
        self.confirmer = confirmer
        self.store = store or get_loan_store()
        self.limiter = limiter or ip_rate_limiter(namespace="confirm-hospital")
        self.attempts = attempts or loan_attempt_counter()
        self.cache = cache or IdempotencyCache()
        self.audit = audit or AuditTrail()

    def confirm(self, request: ConfirmationRequest, ip: str = "unknown") -> ConfirmationResponse:
        loan_id = request.loan_id
        place_id = request.hospital_place_id

        if not self.limiter.admit(ip):
            raise RateLimitExceeded("Too many requests. Try again later.")

        if not self.attempts.record_attempt(loan_id):
            self.audit.append(AuditEntry.now(
                loan_id, "REJECTED", ip=ip, target=place_id,
                failure_reason="Maximum attempts exceeded",
            ))
            raise AttemptsExhausted("Maximum confirmation attempts exceeded")

        try:
            return self._confirm(request, ip)
        except Exception as e:
            # report the underlying failure, not the message shown to the caller
            cause = e.__cause__ if isinstance(e.__cause__, Exception) else e
            self.audit.append(AuditEntry.now(
                loan_id, "REJECTED", ip=ip, target=place_id,
                failure_reason=f"System error: {cause}",
            ))
            if isinstance(e, MediLoanError):
                raise
            logger.exception("Hospital confirmation failed for %s", loan_id)
            raise InternalError("Internal server error. Please try again later.") from e

    def _confirm(self, request: ConfirmationRequest, ip: str) -> ConfirmationResponse:
        loan_id = request.loan_id
        place_id = request.hospital_place_id

        cached = self.cache.get(loan_id, place_id)
        if cached:
            return ConfirmationResponse.model_validate(cached)

        loan = self.store.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("Loan request not found")

        if loan["status"] == LoanStatus.PENDING_APPROVAL:
            response = ConfirmationResponse(
                confirmed=True,
                hospital_name=loan.get("hospital_name") or "Unknown Hospital",
                next_steps=NEXT_STEPS_CONFIRMED,
            )
            self._cache(loan_id, place_id, response)
            return response

        if loan["status"] == LoanStatus.REJECTED:
            return ConfirmationResponse(confirmed=False, hospital_name="", next_steps=NEXT_STEPS_REJECTED)

        if loan["status"] != LoanStatus.PENDING:
            # past the confirmation stage
            return ConfirmationResponse(
                confirmed=True,
                hospital_name=loan.get("hospital_name") or "Unknown Hospital",
                next_steps=NEXT_STEPS_CONFIRMED,
            )

        try:
            details = self.maps.place_details(place_id)
        except NotFoundError as e:
            raise NotFoundError("Invalid hospital. Please verify hospital selection.") from e

        hospital_name = details.get("name") or "Unknown Hospital"
        outcome = self.confirmer.confirm(request.contact, request.patient_name, hospital_name)

        if outcome.confirmed:
            self.store.update_loan(
                loan_id,
                status=LoanStatus.PENDING_APPROVAL,
                hospital_place_id=place_id,
                hospital_name=hospital_name,
            )
            response = ConfirmationResponse(
                confirmed=True, hospital_name=hospital_name, next_steps=NEXT_STEPS_CONFIRMED
            )
        else:
            self.store.update_loan(
                loan_id,
                status=LoanStatus.REJECTED,
                hospital_place_id=place_id,
                hospital_name=hospital_name,
                rejection_reason=outcome.reason,
            )
            response = ConfirmationResponse(
                confirmed=False, hospital_name="", next_steps=NEXT_STEPS_REJECTED
            )

        self.audit.append(AuditEntry.now(
            loan_id,
            "CONFIRMED" if outcome.confirmed else "REJECTED",
            ip=ip,
            target=place_id,
            failure_reason=outcome.reason,
        ))
        logger.info("Hospital confirmation for %s: confirmed=%s", loan_id, outcome.confirmed)

        self._cache(loan_id, place_id, response)
        return response

    def _cache(self, loan_id: str, place_id: str, response: ConfirmationResponse) -> None:
        self.cache.put(loan_id, place_id, response.model_dump(by_alias=True))
