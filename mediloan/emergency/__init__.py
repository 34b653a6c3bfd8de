"""
Emergency Medical Loan Module

Loan lifecycle after intake:
- Hospital admission confirmation (PENDING -> PENDING_APPROVAL / REJECTED)
- Final approval on FIR + medical report (-> APPROVED / REJECTED)
- Repayment tracking (REPAYMENT -> DELAYED / CLOSED)
"""

from .models import LoanStatus, DocumentType
from .approval import FinalApprovalService, register_document
from .confirmation import HospitalConfirmationService
from .loan_status import LoanStatusService, mask_aadhaar

__all__ = [
    "LoanStatus",
    "DocumentType",
    "FinalApprovalService",
    "register_document",
    "HospitalConfirmationService",
    "LoanStatusService",
    "mask_aadhaar",
]
