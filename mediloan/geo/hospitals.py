"""
Decide whether a place-search candidate is a hospital, and how sure we are.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from mediloan.clients.google_maps import GoogleMapsClient
from mediloan.repository.kv_store import KVStore, get_kv_store

logger = logging.getLogger(__name__)

MEDICAL_KEYWORDS = re.compile(r"(hospital|clinic|medical|health|care|centre|center)", re.IGNORECASE)
MEDICAL_TYPES = {"health", "emergency", "clinic", "doctor", "medical", "pharmacy"}
SEARCH_CACHE_TTL = 24 * 60 * 60


def _indicators(place: Dict[str, Any]) -> List[bool]:
    types = place.get("types") or []
    return [
        "hospital" in types,
        any(t in MEDICAL_TYPES for t in types),
        bool(MEDICAL_KEYWORDS.search(place.get("name") or "")),
    ]


def hospital_confidence(place: Dict[str, Any]) -> int:
    """0-100 score; 95 for primary hospitals, 80 for medical types, 60 for name-only."""
    is_hospital, is_medical, name_match = _indicators(place)

    if is_hospital:
        confidence = 95
    elif is_medical:
        confidence = 80
    elif name_match:
        confidence = 60
    else:
        confidence = 0

    if sum([is_hospital, is_medical, name_match]) > 1:
        confidence = min(100, confidence + 10)
    return confidence


def is_valid_hospital(place: Dict[str, Any]) -> bool:
    return any(_indicators(place))


def find_best_match(places: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Best hospital candidate: primary hospitals first, then by confidence."""
    valid = [p for p in places or [] if is_valid_hospital(p)]
    if not valid:
        return None
    return sorted(
        valid,
        key=lambda p: ("hospital" not in (p.get("types") or []), -hospital_confidence(p)),
    )[0]


def sanitize_query(query: str) -> str:
    cleaned = re.sub(r"[<>\"'%;()&+]", "", query.strip())
    return re.sub(r"\s+", " ", cleaned)


def verify_hospital(
    query: str,
    maps: GoogleMapsClient,
    location: Optional[Dict[str, float]] = None,
    store: Optional[KVStore] = None,
) -> Dict[str, Any]:
    """
    Look a hospital up by free text.

    Returns:
        {
            "is_registered": bool,
            "name": str,
            "address": str,
            "place_id": str,
            "confidence": int,
        }
    """
    store = store or get_kv_store()
    clean = sanitize_query(query)
    cache_key = "hospital:" + re.sub(r"\s+", "_", clean.lower())

    try:
        cached = store.get(cache_key)
        if cached:
            return json.loads(cached)
    except Exception as e:
        logger.warning("Cache read failed for hospital search: %s", e)

    best = find_best_match(maps.text_search(clean, location))
    if best is None:
        result = {"is_registered": False, "name": "", "address": "", "place_id": "", "confidence": 0}
    else:
        result = {
            "is_registered": True,
            "name": best.get("name", ""),
            "address": best.get("formatted_address", ""),
            "place_id": best.get("place_id", ""),
            "confidence": hospital_confidence(best),
        }

    try:
        store.set(cache_key, json.dumps(result), ttl=SEARCH_CACHE_TTL)
    except Exception as e:
        logger.warning("Cache write failed for hospital search: %s", e)
    return result
