"""
Text signals used by risk scoring and document approval.

- severity: keyword-tier severity of an incident description
- documents: FIR / medical report structure, severity tier amounts
"""

from mediloan.signals.severity import score_text_severity

from mediloan.signals.documents import (
    ValidationResult,
    validate_fir,
    validate_medical_report,
    approved_amount_for_tier,
)

__all__ = [
    "score_text_severity",
    "ValidationResult",
    "validate_fir",
    "validate_medical_report",
    "approved_amount_for_tier",
]
