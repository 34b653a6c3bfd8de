"""
Risk scoring for an emergency loan request.

Four signals are combined with fixed weights:

    distance 0.4 | amount 0.3 | text severity 0.2 | image 0.1

score = 100 * weighted sum, rounded half up. Requests scoring 60 or less
are approved for a base amount that shrinks linearly with the score.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import List, Mapping, Optional, Tuple

from mediloan.config.settings import get_settings
from mediloan.emergency.models import (
    ImageAnalysisSummary,
    RiskScoreRequest,
    RiskScoreResponse,
)
from mediloan.errors import InternalError, MediLoanError, RateLimitExceeded, RequestTimeout
from mediloan.geo.locate import GeolocationResolver, Location, haversine_km
from mediloan.pipelines.image_analysis import ImageAnalysis, ImageAnalyzer
from mediloan.repository.audit_trail import AuditEntry, AuditTrail
from mediloan.signals import score_text_severity
from mediloan.utils.deadline import Deadline
from mediloan.utils.logger import log_decision
from mediloan.utils.rate_limit import RateLimiter, hash_identity, identity_rate_limiter

logger = logging.getLogger(__name__)

# Weights
DISTANCE_WEIGHT = 0.4
AMOUNT_WEIGHT = 0.3
TEXT_WEIGHT = 0.2
IMAGE_WEIGHT = 0.1

# Normalisation caps
DISTANCE_CAP_KM = 100.0
AMOUNT_CAP = 200000.0

# Reason thresholds
DISTANCE_REASON_KM = 50
AMOUNT_REASON = 100000
TEXT_REASON = 0.6
IMAGE_REASON = 0.6

DEFAULT_IMAGE_RISK = 0.5
APPROVAL_THRESHOLD = 60
BASE_AMOUNT = 50000

_lookup_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="risk-lookup")


def _round_half_up(value: float) -> int:
    # 9 decimals absorbs float noise such as 20.499999999999996
    return int(math.floor(round(value, 9) + 0.5))


def compute_risk(
    distance_km: float,
    amount: float,
    text: str,
    image_risk: Optional[float] = None,
) -> Tuple[int, List[str]]:
    """
    Weighted risk score in [0, 100] plus human-readable reasons.

    Args:
        distance_km: applicant to hospital distance
        amount: requested loan amount in rupees
        text: incident description
        image_risk: image risk factor, or None when no image was supplied
    """
    reasons: List[str] = []

    distance_risk = min(distance_km / DISTANCE_CAP_KM, 1.0)
    if distance_km > DISTANCE_REASON_KM:
        reasons.append(f"High distance variance ({distance_km:.0f}km)")

    amount_risk = min(amount / AMOUNT_CAP, 1.0)
    if amount > AMOUNT_REASON:
        reasons.append(f"High loan amount (₹{amount / 1000:.0f}k)")

    text_risk = score_text_severity(text)
    if text_risk > TEXT_REASON:
        reasons.append("High severity accident description")

    if image_risk is None:
        image_risk = DEFAULT_IMAGE_RISK
    if image_risk > IMAGE_REASON:
        reasons.append("Unverified accident image")

    total = (
        distance_risk * DISTANCE_WEIGHT
        + amount_risk * AMOUNT_WEIGHT
        + text_risk * TEXT_WEIGHT
        + image_risk * IMAGE_WEIGHT
    )
    score = max(0, min(100, _round_half_up(total * 100)))
    return score, reasons


def decide(score: int, requested: float) -> Tuple[bool, int]:
    """(approved, approved_amount) for a risk score."""
    if score > APPROVAL_THRESHOLD:
        return False, 0
    # evaluated in floating point: score 34 offers 32999, not 33000
    ceiling = math.floor(BASE_AMOUNT * (1 - score / 100))
    return True, int(min(requested, ceiling))


class RiskScorePipeline:
    """
    Orchestrates one risk assessment under a fixed time budget.

    Hospital lookup failures propagate (NotFoundError, DependencyUnavailable).
    Image analysis failures degrade to a conservative risk factor.
    """

    def __init__(
        self,
        resolver: GeolocationResolver,
        image_analyzer: ImageAnalyzer,
        limiter: Optional[RateLimiter] = None,
        audit: Optional[AuditTrail] = None,
        timeout: Optional[float] = None,
        decision_log: Optional[str] = None,
    ):
        settings = get_settings()
        self.resolver = resolver
        self.image_analyzer = image_analyzer
        self.limiter = limiter or identity_rate_limiter()
        self.audit = audit or AuditTrail()
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.decision_log = decision_log if decision_log is not None else settings.decision_log

    def _locate(
        self,
        request: RiskScoreRequest,
        headers: Mapping[str, str],
        deadline: Deadline,
    ) -> Tuple[Location, Location]:
        hospital_future = _lookup_pool.submit(
            self.resolver.resolve_hospital_location, request.hospital_place_id
        )
        user_future = _lookup_pool.submit(
            self.resolver.resolve_user_location, request.user_location, headers
        )
        try:
            hospital = hospital_future.result(timeout=deadline.remaining)
            user = user_future.result(timeout=deadline.remaining)
        except FuturesTimeoutError:
            raise RequestTimeout("Request processing timeout")
        return hospital, user

    def assess(
        self,
        request: RiskScoreRequest,
        headers: Optional[Mapping[str, str]] = None,
        ip: str = "unknown",
    ) -> RiskScoreResponse:
        identity = hash_identity(request.aadhaar_number)
        if not self.limiter.admit(identity):
            raise RateLimitExceeded("Rate limit exceeded. Try again later.")

        try:
            return self._assess(request, identity, headers or {}, ip)
        except Exception as e:
            if request.loan_id:
                self.audit.append(AuditEntry.now(
                    request.loan_id, "RISK_ERROR", ip=ip, target=request.hospital_place_id,
                    failure_reason=f"System error: {e}",
                ))
            if isinstance(e, MediLoanError):
                raise
            logger.exception("Risk assessment failed")
            raise InternalError("Internal server error. Please try again later.") from e

    def _assess(
        self,
        request: RiskScoreRequest,
        identity: str,
        headers: Mapping[str, str],
        ip: str,
    ) -> RiskScoreResponse:
        deadline = Deadline(self.timeout)
        deadline.check()

        hospital, user = self._locate(request, headers, deadline)
        deadline.check()

        distance_km = haversine_km(user, hospital)

        analysis: Optional[ImageAnalysis] = None
        if request.accident_image:
            analysis = self.image_analyzer.analyze(request.accident_image)
        deadline.check()

        image_risk = analysis.risk_factor if analysis else None
        score, reasons = compute_risk(
            distance_km, request.loan_amount, request.accident_details, image_risk
        )
        approved, approved_amount = decide(score, request.loan_amount)

        logger.info(
            "Risk assessed: score=%d approved=%s distance=%.1fkm elapsed=%.2fs",
            score, approved, distance_km, deadline.elapsed,
        )
        self._record(request, identity, ip, distance_km, image_risk, score, approved, approved_amount, reasons)

        return RiskScoreResponse(
            approved=approved,
            approved_amount=approved_amount,
            risk_score=score,
            reasons=reasons,
            distance_km=round(distance_km, 1),
            image_analysis=(
                ImageAnalysisSummary(top_class=analysis.top_class, confidence=analysis.confidence)
                if analysis else None
            ),
        )

    def _record(self, request, identity, ip, distance_km, image_risk, score, approved, approved_amount, reasons):
        try:
            log_decision(
                self.decision_log,
                identity_hash=identity,
                loan_id=request.loan_id,
                distance_km=distance_km,
                loan_amount=request.loan_amount,
                text_risk=score_text_severity(request.accident_details),
                image_risk=image_risk,
                risk_score=score,
                approved=approved,
                approved_amount=approved_amount,
                reasons=reasons,
            )
        except OSError as e:
            logger.warning("Could not write decision log: %s", e)

        if request.loan_id:
            self.audit.append(
                AuditEntry.now(
                    request.loan_id,
                    "RISK_APPROVED" if approved else "RISK_REJECTED",
                    ip=ip,
                    target=request.hospital_place_id,
                    failure_reason="; ".join(reasons) or None,
                )
            )
