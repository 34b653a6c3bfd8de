# mediloan/utils/logger.py
"""
Decision log for risk scoring.

Every risk assessment appends one row to a CSV file. The file is the
dataset used to recalibrate weights and the approval threshold.

We log:
- hashed identity (never the raw Aadhaar number), loan id, timestamp
- the four signals and the final score / decision
"""

import csv
import os
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

LOG_DIR = "data/logs"
LOG_FILE = os.path.join(LOG_DIR, "risk_decisions.csv")

FIELDNAMES = [
    "timestamp_utc",
    "identity_hash",
    "loan_id",
    "distance_km",
    "loan_amount",
    "text_risk",
    "image_risk",
    "risk_score",
    "approved",
    "approved_amount",
    "reasons",
]


def _ensure_log_dir(log_file: str) -> None:
    directory = os.path.dirname(log_file)
    if directory:
        os.makedirs(directory, exist_ok=True)


def _decision_to_row(
    identity_hash: str,
    loan_id: Optional[str],
    distance_km: float,
    loan_amount: float,
    text_risk: float,
    image_risk: Optional[float],
    risk_score: int,
    approved: bool,
    approved_amount: int,
    reasons: List[str],
) -> Dict[str, Any]:
    return {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "identity_hash": identity_hash,
        "loan_id": loan_id or "",
        "distance_km": round(distance_km, 1),
        "loan_amount": loan_amount,
        "text_risk": text_risk,
        "image_risk": "" if image_risk is None else image_risk,
        "risk_score": risk_score,
        "approved": approved,
        "approved_amount": approved_amount,
        "reasons": "; ".join(reasons),
    }


def log_decision(log_file: str = LOG_FILE, **decision: Any) -> None:
    """
    Append a single risk decision as a row to the CSV log.

    - Creates the log file if it doesn't exist.
    - Writes header on first write.
    """
    _ensure_log_dir(log_file)

    row = _decision_to_row(**decision)
    file_exists = os.path.isfile(log_file)

    with open(log_file, mode="a", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
        if not file_exists:
            writer.writeheader()
        writer.writerow(row)
