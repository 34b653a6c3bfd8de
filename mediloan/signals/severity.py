"""
Keyword-tier severity scoring for free-text incident descriptions.

Tier precedence is high > low > medium > default. A description that
mentions both "critical" and "minor" is high severity. Text with no
keyword at all falls back to a moderate 0.3, which is a known weakness of
keyword scoring and is kept as-is for scoring compatibility.
"""

import re

HIGH_SEVERITY = re.compile(
    r"(critical|fracture|bleeding|unconscious|serious|severe|emergency|trauma|intensive|surgery)",
    re.IGNORECASE,
)
MEDIUM_SEVERITY = re.compile(
    r"(injury|pain|accident|hospital|hurt|wound|damage|broken|sprain)",
    re.IGNORECASE,
)
LOW_SEVERITY = re.compile(r"(minor|scratch|bruise|light|small)", re.IGNORECASE)

HIGH_SCORE = 0.8
MEDIUM_SCORE = 0.5
LOW_SCORE = 0.2
DEFAULT_SCORE = 0.3


def score_text_severity(text: str) -> float:
    """Severity in [0, 1] for an incident description."""
    text = (text or "").lower().strip()

    if HIGH_SEVERITY.search(text):
        return HIGH_SCORE
    if LOW_SEVERITY.search(text):
        return LOW_SCORE
    if MEDIUM_SEVERITY.search(text):
        return MEDIUM_SCORE
    return DEFAULT_SCORE
