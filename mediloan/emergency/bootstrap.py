"""
Bootstrap the emergency loan database schema.
"""

import sqlite3
from pathlib import Path
from typing import Optional

from mediloan.config.settings import get_settings


def get_loan_db_path() -> str:
    """Get path to the loan database, creating its directory."""
    db_path = Path(get_settings().db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path)


def bootstrap_loan_db(db_path: Optional[str] = None) -> str:
    """
    Create the loan database with all required tables.

    Safe to run repeatedly. Returns the path to the database.
    """
    if db_path is None:
        db_path = get_loan_db_path()

    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    # =========================================================================
    # Loans
    # =========================================================================
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS loans (
            id TEXT PRIMARY KEY,
            identity_hash TEXT NOT NULL,
            aadhaar_last4 TEXT,

            -- Request
            amount INTEGER NOT NULL,
            description TEXT,
            hospital_place_id TEXT,
            hospital_name TEXT,
            incident_date TEXT,

            -- Decision
            status TEXT NOT NULL,
            risk_score INTEGER,
            approved_amount INTEGER,
            rejection_reason TEXT,

            -- Lifecycle
            disbursed_at TEXT,
            due_date TEXT,
            repaid_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    # =========================================================================
    # Repayments
    # =========================================================================
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS repayments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            loan_id TEXT NOT NULL,
            amount INTEGER NOT NULL,
            paid_at TEXT NOT NULL,
            method TEXT NOT NULL,
            status TEXT NOT NULL,
            FOREIGN KEY (loan_id) REFERENCES loans(id)
        )
    """)

    # =========================================================================
    # Document hash registry
    # =========================================================================
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS document_hashes (
            hash TEXT NOT NULL,
            loan_id TEXT NOT NULL,
            doc_type TEXT NOT NULL,
            registered_at TEXT NOT NULL,
            PRIMARY KEY (hash, loan_id)
        )
    """)

    # =========================================================================
    # Approval audit log
    # =========================================================================
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            loan_id TEXT NOT NULL,
            action TEXT NOT NULL,
            result TEXT NOT NULL,
            ip TEXT,
            details TEXT,
            created_at TEXT NOT NULL
        )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_repayments_loan ON repayments(loan_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_loan_action ON audit_logs(loan_id, action, created_at)")

    conn.commit()
    conn.close()
    return db_path
