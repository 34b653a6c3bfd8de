"""
Geolocation for emergency loans: hospital coordinates, applicant location,
distance, and hospital identification from place search results.
"""

from .locate import Location, GeolocationResolver, haversine_km
from .hospitals import hospital_confidence, find_best_match, verify_hospital

__all__ = [
    "Location",
    "GeolocationResolver",
    "haversine_km",
    "hospital_confidence",
    "find_best_match",
    "verify_hospital",
]
