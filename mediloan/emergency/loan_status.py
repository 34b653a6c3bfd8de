"""
Loan status and repayment view.

Reading a loan's status also applies the time-driven transitions:
- REPAYMENT past its due date with a balance -> DELAYED
- REPAYMENT / DELAYED with nothing left to pay -> CLOSED
Both are persisted.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from mediloan.emergency.db import LoanStore, get_loan_store, utcnow
from mediloan.emergency.models import LoanStatus, LoanStatusResponse, RepaymentView
from mediloan.errors import NotFoundError, RateLimitExceeded
from mediloan.utils.rate_limit import RateLimiter, ip_rate_limiter

logger = logging.getLogger(__name__)

ACTION = "LOAN_STATUS_CHECK"
DEFAULT_REJECTION_REASON = "Document verification failed"
MAX_MONTHLY_INSTALLMENT = 500000


def mask_aadhaar(aadhaar: str) -> str:
    """'123456789012' -> 'XXXX-XXXX-9012'"""
    return f"XXXX-XXXX-{aadhaar[-4:]}"


def calculate_amount_due(total: int, repayments: List[Dict]) -> int:
    paid = sum(r["amount"] for r in repayments if r["status"] == "PAID")
    return max(0, total - paid)


def calculate_due_date(start: datetime) -> datetime:
    """One calendar month after disbursement (or creation)."""
    return start + relativedelta(months=1)


def calculate_next_payment(amount_due: int) -> int:
    return min(amount_due, MAX_MONTHLY_INSTALLMENT)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class LoanStatusService:

    def __init__(
        self,
        store: Optional[LoanStore] = None,
        limiter: Optional[RateLimiter] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or get_loan_store()
        self.limiter = limiter or ip_rate_limiter(namespace="loan-status")
        self.clock = clock

    def get_status(self, loan_id: str, ip: str = "unknown") -> LoanStatusResponse:
        if not self.limiter.admit(ip):
            raise RateLimitExceeded("Rate limit exceeded. Please try again later.")

        loan = self.store.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("Loan not found")

        now = _as_utc(self.clock())
        repayments = sorted(self.store.get_repayments(loan_id), key=lambda r: r["date"], reverse=True)

        principal = loan.get("approved_amount") or loan["amount"]
        amount_due = calculate_amount_due(principal, repayments)

        if loan.get("due_date"):
            due_date = _as_utc(loan["due_date"])
        else:
            due_date = calculate_due_date(_as_utc(loan.get("disbursed_at") or loan["created_at"]))
        days_remaining = int((due_date - now).total_seconds() / 86400)

        status = loan["status"]
        if status == LoanStatus.REPAYMENT and now > due_date and amount_due > 0:
            status = LoanStatus.DELAYED
            self.store.update_loan(loan_id, status=status)
            logger.info("Loan %s is overdue", loan_id)

        if amount_due == 0 and status in (LoanStatus.REPAYMENT, LoanStatus.DELAYED):
            status = LoanStatus.CLOSED
            self.store.update_loan(loan_id, status=status, repaid_at=now)
            logger.info("Loan %s fully repaid", loan_id)

        response = LoanStatusResponse(
            status=status,
            amount=principal,
            amount_due=amount_due,
            due_date=due_date.isoformat(),
            next_payment=calculate_next_payment(amount_due),
            days_remaining=days_remaining,
            repayment_history=[
                RepaymentView(
                    date=r["date"].date().isoformat(),
                    amount=r["amount"],
                    method=r["method"],
                    status=r["status"],
                )
                for r in repayments
            ],
            rejection_reason=(
                loan.get("rejection_reason") or DEFAULT_REJECTION_REASON
                if status == LoanStatus.REJECTED else None
            ),
        )

        try:
            self.store.add_audit_log(
                loan_id, ACTION, "SUCCESS", ip,
                {"status": status.value, "amountDue": amount_due},
            )
        except Exception as e:
            logger.error("Failed to create audit log for %s: %s", loan_id, e)

        return response
