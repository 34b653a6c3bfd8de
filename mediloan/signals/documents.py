"""
Structural validation of FIR and medical report text.

These checks look only at the text; hash verification and the police
registry lookup happen in the approval pipeline.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

# "FIR No.", "CR No." anywhere, or a state police case number at the start
FIR_PATTERN = re.compile(r"(FIR No\.|CR No\.|^[A-Z]{2}/\d{4}/\d+)", re.IGNORECASE)
FIR_NUMBER_PATTERN = re.compile(r"(FIR No\.\s*[A-Z0-9/-]+)", re.IGNORECASE)
DATE_PATTERN = re.compile(r"(\d{2}[/-]\d{2}[/-]\d{4})")

MEDICAL_REQUIRED_TERMS = ("diagnosis", "treatment", "physician", "hospital")
MEDICAL_MIN_TERMS = 3

TIER_CRITICAL = 1
TIER_SERIOUS = 2
TIER_MODERATE = 3

TIER_AMOUNTS = {
    TIER_CRITICAL: 500000,
    TIER_SERIOUS: 250000,
    TIER_MODERATE: 100000,
}
DEFAULT_TIER_AMOUNT = 50000


@dataclass
class ValidationResult:
    """Outcome of validating one document's text."""
    valid: bool
    fir_number: Optional[str] = None
    date: Optional[datetime] = None
    severity: Optional[int] = None


def parse_document_date(raw: str) -> Optional[datetime]:
    """Parse DD/MM/YYYY or DD-MM-YYYY; None for impossible dates."""
    try:
        return datetime.strptime(raw.replace("/", "-"), "%d-%m-%Y")
    except ValueError:
        return None


def validate_fir(text: str) -> ValidationResult:
    date_match = DATE_PATTERN.search(text)
    number_match = FIR_NUMBER_PATTERN.search(text)

    return ValidationResult(
        valid=bool(FIR_PATTERN.search(text)),
        fir_number=number_match.group(0) if number_match else None,
        date=parse_document_date(date_match.group(0)) if date_match else None,
    )


def validate_medical_report(text: str) -> ValidationResult:
    lowered = text.lower()
    score = sum(1 for term in MEDICAL_REQUIRED_TERMS if term in lowered)

    severity = TIER_MODERATE
    if "critical" in lowered:
        severity = TIER_CRITICAL
    elif "serious" in lowered:
        severity = TIER_SERIOUS

    return ValidationResult(valid=score >= MEDICAL_MIN_TERMS, severity=severity)


def approved_amount_for_tier(tier: Optional[int]) -> int:
    """Loan ceiling for a medical severity tier."""
    return TIER_AMOUNTS.get(tier, DEFAULT_TIER_AMOUNT)
