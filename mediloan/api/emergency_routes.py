"""
API routes for emergency medical loans.

Endpoints:
- POST /emergency/loans                       - Open a loan request
- POST /emergency/risk-score                  - Score a loan request
- POST /emergency/hospitals/verify            - Match free text to a hospital
- POST /emergency/confirm-hospital            - Confirm admission with the hospital
- POST /emergency/documents/register          - Register a document hash
- POST /emergency/final-approval              - Verify documents and decide
- POST /emergency/loans/{loan_id}/disburse    - Mark funds released
- POST /emergency/loans/{loan_id}/repayments  - Record a repayment
- GET  /emergency/loan-status/{loan_id}       - Status and repayment view
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends, Path, Request

from ..clients.google_maps import GoogleMapsClient
from ..clients.ipinfo import IpInfoClient
from ..clients.police_registry import get_police_registry
from ..config.settings import get_settings
from ..emergency.approval import FinalApprovalService, register_document
from ..emergency.confirmation import HospitalConfirmationService, get_confirmer
from ..emergency.db import LoanStore, get_loan_store
from ..emergency.loan_status import LoanStatusService
from ..emergency.models import (
    LOAN_ID_PATTERN,
    ApprovalResponse,
    ConfirmationRequest,
    ConfirmationResponse,
    DocumentRegistration,
    FinalApprovalRequest,
    HospitalMatch,
    HospitalSearchRequest,
    LoanCreateRequest,
    LoanCreateResponse,
    LoanStatusResponse,
    Repayment,
    RiskScoreRequest,
    RiskScoreResponse,
)
from ..errors import NotFoundError, RateLimitExceeded
from ..geo.hospitals import verify_hospital
from ..geo.locate import GeolocationResolver
from ..pipelines.image_analysis import get_image_analyzer
from ..pipelines.risk_score import RiskScorePipeline
from ..utils.rate_limit import RateLimiter, ip_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/emergency", tags=["emergency"])


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# Dependencies (overridden in tests)
# ---------------------------------------------------------------------------

def get_maps_client() -> GoogleMapsClient:
    settings = get_settings()
    return GoogleMapsClient(settings.google_maps_api_key, timeout=settings.http_timeout)


def get_store() -> LoanStore:
    return get_loan_store()


def get_risk_pipeline(maps: GoogleMapsClient = Depends(get_maps_client)) -> RiskScorePipeline:
    settings = get_settings()
    resolver = GeolocationResolver(maps, IpInfoClient(settings.ipinfo_token, timeout=settings.http_timeout))
    return RiskScorePipeline(resolver, get_image_analyzer(settings))


def get_confirmation_service(
    maps: GoogleMapsClient = Depends(get_maps_client),
    store: LoanStore = Depends(get_store),
) -> HospitalConfirmationService:
    return HospitalConfirmationService(maps, get_confirmer(), store=store)


def get_approval_service(store: LoanStore = Depends(get_store)) -> FinalApprovalService:
    return FinalApprovalService(store, get_police_registry())


def get_status_service(store: LoanStore = Depends(get_store)) -> LoanStatusService:
    return LoanStatusService(store)


def get_ip_limiter() -> RateLimiter:
    return ip_rate_limiter()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/loans", response_model=LoanCreateResponse, status_code=201)
def create_loan(payload: LoanCreateRequest, store: LoanStore = Depends(get_store)):
    loan = store.create_loan(
        aadhaar_number=payload.aadhaar_number,
        amount=payload.amount,
        description=payload.description,
        hospital_place_id=payload.hospital_place_id,
        incident_date=payload.incident_date,
    )
    return LoanCreateResponse(loan_id=loan["id"], status=loan["status"])


@router.post("/risk-score", response_model=RiskScoreResponse)
def risk_score(
    payload: RiskScoreRequest,
    request: Request,
    pipeline: RiskScorePipeline = Depends(get_risk_pipeline),
):
    return pipeline.assess(payload, headers=dict(request.headers), ip=client_ip(request))


@router.post("/hospitals/verify", response_model=HospitalMatch)
def verify_hospital_route(
    payload: HospitalSearchRequest,
    request: Request,
    maps: GoogleMapsClient = Depends(get_maps_client),
    limiter: RateLimiter = Depends(get_ip_limiter),
):
    if not limiter.admit(client_ip(request)):
        raise RateLimitExceeded("Too many requests. Try again later.")
    location = payload.location.model_dump() if payload.location else None
    result = verify_hospital(payload.query, maps, location=location)
    return HospitalMatch(**result)


@router.post("/confirm-hospital", response_model=ConfirmationResponse)
def confirm_hospital(
    payload: ConfirmationRequest,
    request: Request,
    service: HospitalConfirmationService = Depends(get_confirmation_service),
):
    return service.confirm(payload, ip=client_ip(request))


@router.post("/documents/register")
def register_document_route(payload: DocumentRegistration, store: LoanStore = Depends(get_store)) -> Dict[str, str]:
    doc_hash = register_document(payload.loan_id, payload.type, payload.text, store=store)
    return {"hash": doc_hash}


@router.post("/final-approval", response_model=ApprovalResponse)
def final_approval(
    payload: FinalApprovalRequest,
    request: Request,
    service: FinalApprovalService = Depends(get_approval_service),
):
    return service.process(payload, ip=client_ip(request))


@router.post("/loans/{loan_id}/disburse", response_model=LoanCreateResponse)
def disburse_loan(
    loan_id: str = Path(pattern=LOAN_ID_PATTERN),
    store: LoanStore = Depends(get_store),
):
    store.mark_disbursed(loan_id)
    loan = store.get_loan(loan_id)
    return LoanCreateResponse(loan_id=loan_id, status=loan["status"])


@router.post("/loans/{loan_id}/repayments", status_code=201)
def record_repayment(
    payment: Repayment,
    loan_id: str = Path(pattern=LOAN_ID_PATTERN),
    store: LoanStore = Depends(get_store),
) -> Dict[str, str]:
    if store.get_loan(loan_id) is None:
        raise NotFoundError("Loan not found")
    store.add_repayment(loan_id, payment.amount, payment.method, payment.status, payment.date)
    return {"loanId": loan_id, "status": payment.status}


@router.get("/loan-status/{loan_id}", response_model=LoanStatusResponse)
def loan_status(
    request: Request,
    loan_id: str = Path(pattern=LOAN_ID_PATTERN),
    service: LoanStatusService = Depends(get_status_service),
):
    return service.get_status(loan_id, ip=client_ip(request))
