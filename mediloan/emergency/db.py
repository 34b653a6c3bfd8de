"""Database operations for emergency loans.

SQLite only. Timestamps are stored as ISO-8601 UTC strings so range
queries can compare them as text.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from mediloan.emergency.bootstrap import bootstrap_loan_db, get_loan_db_path
from mediloan.emergency.models import LoanStatus
from mediloan.errors import ConflictError, NotFoundError, RateLimitExceeded
from mediloan.utils.rate_limit import hash_identity

logger = logging.getLogger(__name__)

DATETIME_FIELDS = ("incident_date", "disbursed_at", "due_date", "repaid_at", "created_at", "updated_at")
UPDATABLE_FIELDS = {
    "status", "risk_score", "approved_amount", "rejection_reason",
    "hospital_place_id", "hospital_name", "incident_date",
    "disbursed_at", "due_date", "repaid_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return _to_utc(value).isoformat()
    if isinstance(value, LoanStatus):
        return value.value
    return value


def generate_loan_id(aadhaar_number: str, now: Optional[datetime] = None) -> str:
    """loan-<13 digit epoch millis>-<last four Aadhaar digits>"""
    now = now or utcnow()
    millis = int(_to_utc(now).timestamp() * 1000)
    return f"loan-{millis:013d}-{aadhaar_number[-4:]}"


class LoanStore:
    """SQLite storage for loans, repayments, the document hash registry and the approval log."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_loan_db_path()
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        bootstrap_loan_db(self.db_path)

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_loan(row: sqlite3.Row) -> Dict[str, Any]:
        loan = dict(row)
        for field in DATETIME_FIELDS:
            if loan.get(field):
                loan[field] = datetime.fromisoformat(loan[field])
        loan["status"] = LoanStatus(loan["status"])
        return loan

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    def create_loan(
        self,
        aadhaar_number: str,
        amount: int,
        description: str,
        hospital_place_id: Optional[str] = None,
        incident_date: Optional[datetime] = None,
        loan_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Insert a PENDING loan. Raises ConflictError if the id already exists."""
        now = now or utcnow()
        loan_id = loan_id or generate_loan_id(aadhaar_number, now)

        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO loans (
                        id, identity_hash, aadhaar_last4, amount, description,
                        hospital_place_id, incident_date, status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        loan_id,
                        hash_identity(aadhaar_number),
                        aadhaar_number[-4:],
                        amount,
                        description,
                        hospital_place_id,
                        _serialize(incident_date),
                        LoanStatus.PENDING.value,
                        _serialize(now),
                        _serialize(now),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Loan {loan_id} already exists") from e

        logger.info("Created loan %s", loan_id)
        return self.get_loan(loan_id)

    def get_loan(self, loan_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM loans WHERE id = ?", (loan_id,)).fetchone()
        return self._row_to_loan(row) if row else None

    def update_loan(self, loan_id: str, **fields: Any) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update loan fields: {sorted(unknown)}")

        fields["updated_at"] = utcnow()
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [_serialize(v) for v in fields.values()] + [loan_id]

        with self._get_connection() as conn:
            cursor = conn.execute(f"UPDATE loans SET {assignments} WHERE id = ?", params)
            if cursor.rowcount == 0:
                raise NotFoundError("Loan not found")

    def mark_disbursed(self, loan_id: str, when: Optional[datetime] = None) -> None:
        """APPROVED -> REPAYMENT once funds have been released."""
        loan = self.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("Loan not found")
        if loan["status"] != LoanStatus.APPROVED:
            raise ConflictError("Only approved loans can be disbursed")
        self.update_loan(loan_id, status=LoanStatus.REPAYMENT, disbursed_at=when or utcnow())

    # ------------------------------------------------------------------
    # Repayments
    # ------------------------------------------------------------------

    def add_repayment(
        self,
        loan_id: str,
        amount: int,
        method: str = "UPI",
        status: str = "PAID",
        paid_at: Optional[datetime] = None,
    ) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO repayments (loan_id, amount, paid_at, method, status) VALUES (?, ?, ?, ?, ?)",
                (loan_id, amount, _serialize(paid_at or utcnow()), method, status),
            )

    def get_repayments(self, loan_id: str) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT amount, paid_at, method, status FROM repayments WHERE loan_id = ? ORDER BY paid_at",
                (loan_id,),
            ).fetchall()
        return [
            {
                "amount": row["amount"],
                "date": datetime.fromisoformat(row["paid_at"]),
                "method": row["method"],
                "status": row["status"],
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Document hash registry
    # ------------------------------------------------------------------

    def register_document_hash(self, doc_hash: str, loan_id: str, doc_type: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO document_hashes (hash, loan_id, doc_type, registered_at)
                VALUES (?, ?, ?, ?)
                """,
                (doc_hash, loan_id, doc_type, _serialize(utcnow())),
            )

    def has_document_hash(self, doc_hash: str, loan_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM document_hashes WHERE hash = ? AND loan_id = ?",
                (doc_hash, loan_id),
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Approval audit log
    # ------------------------------------------------------------------

    def add_audit_log(
        self,
        loan_id: str,
        action: str,
        result: str,
        ip: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO audit_logs (loan_id, action, result, ip, details, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (loan_id, action, result, ip, json.dumps(details or {}), _serialize(utcnow())),
            )

    def count_audit_logs(self, loan_id: str, action: str, since: datetime) -> int:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM audit_logs WHERE loan_id = ? AND action = ? AND created_at >= ?",
                (loan_id, action, _serialize(since)),
            ).fetchone()
        return row[0]

    def get_audit_logs(self, loan_id: str) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT action, result, ip, details, created_at FROM audit_logs WHERE loan_id = ? ORDER BY id",
                (loan_id,),
            ).fetchall()
        return [dict(row, details=json.loads(row["details"] or "{}")) for row in rows]

    # ------------------------------------------------------------------
    # Final approval claim
    # ------------------------------------------------------------------

    def claim_for_approval(
        self,
        loan_id: str,
        action: str,
        ip: Optional[str],
        since: datetime,
        max_attempts: int,
    ) -> int:
        """
        Take a PENDING_APPROVAL loan into PROCESSING and open its audit row.

        The attempt count, status check, status change and audit insert share
        one BEGIN IMMEDIATE transaction, so concurrent callers serialize and
        only one of them gets the loan. Returns the audit row id.
        """
        now = utcnow()
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")

            attempts = conn.execute(
                "SELECT COUNT(*) FROM audit_logs WHERE loan_id = ? AND action = ? AND created_at >= ?",
                (loan_id, action, _serialize(since)),
            ).fetchone()[0]
            if attempts >= max_attempts:
                raise RateLimitExceeded("Too many attempts. Please try again later.")

            row = conn.execute("SELECT status FROM loans WHERE id = ?", (loan_id,)).fetchone()
            if row is None:
                raise NotFoundError("Loan not found")
            if row["status"] != LoanStatus.PENDING_APPROVAL.value:
                raise ConflictError("Loan has already been processed")

            conn.execute(
                "UPDATE loans SET status = ?, updated_at = ? WHERE id = ?",
                (LoanStatus.PROCESSING.value, _serialize(now), loan_id),
            )
            cursor = conn.execute(
                "INSERT INTO audit_logs (loan_id, action, result, ip, details, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (loan_id, action, LoanStatus.PROCESSING.value, ip, "{}", _serialize(now)),
            )
            return cursor.lastrowid

    def finish_approval(
        self,
        loan_id: str,
        audit_id: int,
        status: LoanStatus,
        result: str,
        details: Dict[str, Any],
        approved_amount: Optional[int] = None,
        rejection_reason: Optional[str] = None,
    ) -> None:
        """PROCESSING -> APPROVED / REJECTED, closing the claim's audit row."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE loans SET status = ?, approved_amount = ?, rejection_reason = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    _serialize(status),
                    approved_amount,
                    rejection_reason,
                    _serialize(utcnow()),
                    loan_id,
                    LoanStatus.PROCESSING.value,
                ),
            )
            if cursor.rowcount == 0:
                raise ConflictError("Loan has already been processed")
            conn.execute(
                "UPDATE audit_logs SET result = ?, details = ? WHERE id = ?",
                (result, json.dumps(details), audit_id),
            )

    def release_approval(self, loan_id: str, audit_id: int, details: Dict[str, Any]) -> None:
        """Return a PROCESSING loan to PENDING_APPROVAL and mark the attempt as ERROR."""
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE loans SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (
                    LoanStatus.PENDING_APPROVAL.value,
                    _serialize(utcnow()),
                    loan_id,
                    LoanStatus.PROCESSING.value,
                ),
            )
            conn.execute(
                "UPDATE audit_logs SET result = ?, details = ? WHERE id = ?",
                ("ERROR", json.dumps(details), audit_id),
            )


_store: Optional[LoanStore] = None


def get_loan_store() -> LoanStore:
    """Get or create the process-wide loan store."""
    global _store
    if _store is None:
        _store = LoanStore()
    return _store
