"""
Final approval: document verification and fraud checks.

A loan that passed hospital confirmation (PENDING_APPROVAL) submits its FIR
and medical report. Each document must match a hash registered for the
loan before its content is trusted. The loan is approved only when both
documents verify, their dates sit within 48 hours of the incident, and the
medical report shows a critical or serious condition.

While the checks run the loan sits in PROCESSING, so a concurrent request
for the same loan gets 409 instead of deciding it a second time.
"""

import hashlib
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from mediloan.clients.police_registry import PoliceRegistry, get_police_registry
from mediloan.emergency.db import LoanStore, get_loan_store, utcnow
from mediloan.emergency.models import (
    ApprovalResponse,
    Document,
    DocumentType,
    FinalApprovalRequest,
    LoanStatus,
)
from mediloan.errors import (
    DependencyUnavailable,
    InternalError,
    MediLoanError,
    NotFoundError,
)
from mediloan.signals import (
    ValidationResult,
    approved_amount_for_tier,
    validate_fir,
    validate_medical_report,
)
from mediloan.signals.documents import TIER_MODERATE, TIER_SERIOUS

logger = logging.getLogger(__name__)

ACTION = "FINAL_APPROVAL"
MAX_ATTEMPTS_PER_HOUR = 3
DATE_TOLERANCE = timedelta(hours=48)

NEXT_STEPS_APPROVED = "Funds will be disbursed within 2 hours. You will receive SMS confirmation."
NEXT_STEPS_REJECTED = "Please review and resubmit with valid documents. Contact support if needed."

# Rejection reasons
REASON_HASH = "{} document hash verification failed"
REASON_FIR_POLICE = "FIR verification failed with police database"
REASON_FIR_FORMAT = "FIR format invalid or missing required information"
REASON_MEDICAL = "Medical report missing required information (diagnosis, treatment, physician)"
REASON_DATES = "Document dates are inconsistent with accident timeline"
REASON_SEVERITY = "Medical condition severity does not meet minimum requirements"


def document_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def register_document(
    loan_id: str,
    doc_type: DocumentType,
    text: str,
    store: Optional[LoanStore] = None,
) -> str:
    """Record sha256(text) in the registry for a loan and return it."""
    store = store or get_loan_store()
    if store.get_loan(loan_id) is None:
        raise NotFoundError("Loan not found")

    doc_hash = document_hash(text)
    store.register_document_hash(doc_hash, loan_id, DocumentType(doc_type).value)
    logger.info("Registered %s document for %s", DocumentType(doc_type).value, loan_id)
    return doc_hash


def dates_inconsistent(dates: List[datetime], reference: datetime) -> bool:
    """True if any date is more than 48 hours from the reference."""
    reference = _as_utc(reference)
    return any(abs(_as_utc(d) - reference) > DATE_TOLERANCE for d in dates)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FinalApprovalService:
    """Runs the final approval state machine for one loan."""

    def __init__(
        self,
        store: Optional[LoanStore] = None,
        police: Optional[PoliceRegistry] = None,
    ):
        self.store = store or get_loan_store()
        self.police = police or get_police_registry()

    def process(self, request: FinalApprovalRequest, ip: str = "unknown") -> ApprovalResponse:
        loan_id = request.loan_id

        # Throttle, 404 and 409 are decided atomically with taking the loan
        since = utcnow() - timedelta(hours=1)
        audit_id = self.store.claim_for_approval(loan_id, ACTION, ip, since, MAX_ATTEMPTS_PER_HOUR)
        try:
            loan = self.store.get_loan(loan_id)
            return self._decide(loan, request.documents, audit_id)
        except MediLoanError as e:
            self._release(loan_id, audit_id, {"error": e.message})
            raise
        except Exception as e:
            logger.exception("Final approval failed for %s", loan_id)
            self._release(loan_id, audit_id, {"error": str(e)})
            raise InternalError("Internal server error. Please try again later.") from e

    def _hash_valid(self, doc: Document, loan_id: str) -> bool:
        if document_hash(doc.text) != doc.hash.lower():
            return False
        try:
            return self.store.has_document_hash(doc.hash.lower(), loan_id)
        except sqlite3.Error as e:
            raise DependencyUnavailable("Document registry unavailable") from e

    def _decide(self, loan: Dict, documents: List[Document], audit_id: int) -> ApprovalResponse:
        loan_id = loan["id"]
        reasons: List[str] = []
        document_status: Dict[DocumentType, str] = {}
        extracted_dates: List[datetime] = []

        fir_valid = False
        medical_valid = False
        tier = TIER_MODERATE

        for doc in documents:
            if doc.type == DocumentType.FIR:
                result: ValidationResult = validate_fir(doc.text)
            else:
                result = validate_medical_report(doc.text)
            if result.date is not None:
                extracted_dates.append(result.date)

            if not self._hash_valid(doc, loan_id):
                reasons.append(REASON_HASH.format(doc.type.value))
                document_status[doc.type] = "INVALID"
                continue

            if doc.type == DocumentType.FIR:
                if result.valid and result.fir_number:
                    if self.police.verify_fir(result.fir_number):
                        fir_valid = True
                        document_status[doc.type] = "VALID"
                    else:
                        reasons.append(REASON_FIR_POLICE)
                        document_status[doc.type] = "INVALID"
                else:
                    reasons.append(REASON_FIR_FORMAT)
                    document_status[doc.type] = "INVALID"
            else:
                if result.valid:
                    medical_valid = True
                    tier = result.severity or TIER_MODERATE
                    document_status[doc.type] = "VALID"
                else:
                    reasons.append(REASON_MEDICAL)
                    document_status[doc.type] = "INVALID"

        reference = loan.get("incident_date") or loan["created_at"]
        inconsistent = dates_inconsistent(extracted_dates, reference)
        if inconsistent:
            reasons.append(REASON_DATES)

        if medical_valid and tier > TIER_SERIOUS:
            reasons.append(REASON_SEVERITY)

        approved = (
            fir_valid
            and medical_valid
            and not inconsistent
            and tier <= TIER_SERIOUS
            and not reasons
        )
        approved_amount = approved_amount_for_tier(tier) if approved else None

        self.store.finish_approval(
            loan_id,
            audit_id,
            status=LoanStatus.APPROVED if approved else LoanStatus.REJECTED,
            result="APPROVED" if approved else "REJECTED",
            details={
                "approvedAmount": approved_amount,
                "rejectionReasons": reasons,
                "documentStatus": {k.value: v for k, v in document_status.items()},
                "medicalSeverity": tier,
            },
            approved_amount=approved_amount,
            rejection_reason="; ".join(reasons) or None,
        )
        logger.info("Final approval for %s: approved=%s reasons=%s", loan_id, approved, reasons)

        return ApprovalResponse(
            approved=approved,
            approved_amount=approved_amount,
            next_steps=NEXT_STEPS_APPROVED if approved else NEXT_STEPS_REJECTED,
            rejection_reasons=None if approved else reasons,
            document_status=document_status,
        )

    def _release(self, loan_id: str, audit_id: int, details: Dict) -> None:
        try:
            self.store.release_approval(loan_id, audit_id, details)
        except Exception as e:
            logger.error("Failed to release loan %s after error: %s", loan_id, e)
