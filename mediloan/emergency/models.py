"""
Pydantic models for emergency loan processing.

Wire format is camelCase; Python attributes are snake_case.
"""

from typing import Optional, List, Dict, Literal
from pydantic import BaseModel, Field, model_serializer
from datetime import datetime
from enum import Enum

from mediloan.geo.locate import Location

LOAN_ID_PATTERN = r"^loan-\d{13}-\d{4}$"


class LoanStatus(str, Enum):
    PENDING = "PENDING"
    PENDING_APPROVAL = "PENDING_APPROVAL"  # hospital confirmed, awaiting documents
    PROCESSING = "PROCESSING"  # final approval in flight
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REPAYMENT = "REPAYMENT"
    DELAYED = "DELAYED"
    CLOSED = "CLOSED"


class DocumentType(str, Enum):
    FIR = "FIR"
    MEDICAL_REPORT = "MEDICAL_REPORT"


class WireModel(BaseModel):
    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Loan intake
# ---------------------------------------------------------------------------

class LoanCreateRequest(WireModel):
    aadhaar_number: str = Field(alias="aadhaarNumber", pattern=r"^\d{12}$")
    amount: int = Field(ge=1000, le=500000)
    description: str = Field(min_length=10, max_length=1000)
    hospital_place_id: Optional[str] = Field(None, alias="hospitalPlaceId")
    incident_date: Optional[datetime] = Field(None, alias="incidentDate")


class LoanCreateResponse(WireModel):
    loan_id: str = Field(alias="loanId")
    status: LoanStatus


# ---------------------------------------------------------------------------
# Risk scoring
# ---------------------------------------------------------------------------

class RiskScoreRequest(WireModel):
    aadhaar_number: str = Field(alias="aadhaarNumber", pattern=r"^\d{12}$")
    hospital_place_id: str = Field(alias="hospitalPlaceId", min_length=20)
    accident_details: str = Field(alias="accidentDetails", min_length=10, max_length=1000)
    loan_amount: float = Field(alias="loanAmount", ge=1000, le=500000)
    accident_image: Optional[str] = Field(
        None, alias="accidentImage", pattern=r"^data:image/(png|jpeg);base64,"
    )
    user_location: Optional[Location] = Field(None, alias="userLocation")
    loan_id: Optional[str] = Field(None, alias="loanId", pattern=LOAN_ID_PATTERN)


class ImageAnalysisSummary(WireModel):
    top_class: str = Field(alias="topClass")
    confidence: float


class RiskScoreResponse(WireModel):
    approved: bool
    approved_amount: int = Field(alias="approvedAmount")
    risk_score: int = Field(alias="riskScore", ge=0, le=100)
    reasons: List[str] = Field(default_factory=list)
    distance_km: float = Field(alias="distanceKm")
    image_analysis: Optional[ImageAnalysisSummary] = Field(None, alias="imageAnalysis")


# ---------------------------------------------------------------------------
# Final approval
# ---------------------------------------------------------------------------

class Document(WireModel):
    type: DocumentType
    text: str = Field(min_length=50, max_length=10000)
    hash: str = Field(min_length=64, max_length=64)


class FinalApprovalRequest(WireModel):
    loan_id: str = Field(alias="loanId", pattern=LOAN_ID_PATTERN)
    documents: List[Document] = Field(min_length=1, max_length=5)
    hospital_place_id: str = Field(alias="hospitalPlaceId", min_length=27, max_length=27)


DocumentState = Literal["VALID", "INVALID"]


class ApprovalResponse(WireModel):
    approved: bool
    approved_amount: Optional[int] = Field(None, alias="approvedAmount")
    next_steps: str = Field(alias="nextSteps")
    rejection_reasons: Optional[List[str]] = Field(None, alias="rejectionReasons")
    document_status: Dict[DocumentType, DocumentState] = Field(
        default_factory=dict, alias="documentStatus"
    )

    @model_serializer(mode="wrap")
    def _omit_empty_reasons(self, handler):
        # approvedAmount stays as null; rejectionReasons is left out entirely
        data = handler(self)
        for key in ("rejectionReasons", "rejection_reasons"):
            if key in data and data[key] is None:
                del data[key]
        return data


class DocumentRegistration(WireModel):
    loan_id: str = Field(alias="loanId", pattern=LOAN_ID_PATTERN)
    type: DocumentType
    text: str = Field(min_length=50, max_length=10000)


# ---------------------------------------------------------------------------
# Hospital confirmation
# ---------------------------------------------------------------------------

class ConfirmationRequest(WireModel):
    loan_id: str = Field(alias="loanId", pattern=LOAN_ID_PATTERN)
    hospital_place_id: str = Field(alias="hospitalPlaceId", min_length=27, max_length=27)
    patient_name: str = Field(alias="patientName", min_length=3, max_length=50, pattern=r"^[a-zA-Z\s.]+$")
    contact: str = Field(pattern=r"^\+91[6-9]\d{9}$")


class ConfirmationResponse(WireModel):
    confirmed: bool
    hospital_name: str = Field(alias="hospitalName")
    next_steps: str = Field(alias="nextSteps")


# ---------------------------------------------------------------------------
# Loan status
# ---------------------------------------------------------------------------

class Repayment(WireModel):
    amount: int = Field(gt=0)
    date: Optional[datetime] = None
    method: Literal["UPI", "NETBANKING", "AUTO_DEBIT"] = "UPI"
    status: Literal["PAID", "PENDING", "FAILED"] = "PAID"


class RepaymentView(WireModel):
    date: str
    amount: int
    method: str
    status: str


class LoanStatusResponse(WireModel):
    status: LoanStatus
    amount: int
    amount_due: int = Field(alias="amountDue")
    due_date: Optional[str] = Field(None, alias="dueDate")
    next_payment: int = Field(alias="nextPayment")
    days_remaining: Optional[int] = Field(None, alias="daysRemaining")
    repayment_history: List[RepaymentView] = Field(default_factory=list, alias="repaymentHistory")
    rejection_reason: Optional[str] = Field(None, alias="rejectionReason")


# ---------------------------------------------------------------------------
# Hospital search
# ---------------------------------------------------------------------------

class HospitalSearchRequest(WireModel):
    query: str = Field(min_length=3, max_length=100)
    location: Optional[Location] = None


class HospitalMatch(WireModel):
    is_registered: bool = Field(alias="isRegistered")
    name: str
    address: str
    place_id: str = Field(alias="placeId")
    confidence: int = Field(ge=0, le=100)
