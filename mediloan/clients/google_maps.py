"""
Thin client over the Google Maps geocoding and places endpoints.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from mediloan.errors import DependencyUnavailable, NotFoundError

logger = logging.getLogger(__name__)

MAPS_BASE_URL = "https://maps.googleapis.com/maps/api"


class GoogleMapsClient:
    """Geocoding, place details and text search."""

    def __init__(self, api_key: Optional[str], timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise DependencyUnavailable("Google Maps API key not configured")
        params = dict(params, key=self.api_key)
        try:
            response = self.session.get(f"{MAPS_BASE_URL}/{path}", params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error("Google Maps request %s failed: %s", path, e)
            raise DependencyUnavailable(f"Google Maps request failed: {e}") from e

    def geocode_place(self, place_id: str) -> Dict[str, float]:
        """Resolve a place id to {"lat", "lng"}."""
        data = self._get("geocode/json", {"place_id": place_id})
        results = data.get("results") or []
        if not results:
            raise NotFoundError("Hospital not found")
        location = results[0]["geometry"]["location"]
        return {"lat": float(location["lat"]), "lng": float(location["lng"])}

    def place_details(self, place_id: str) -> Dict[str, Optional[str]]:
        """Name and phone number for a place id."""
        data = self._get(
            "place/details/json",
            {"place_id": place_id, "fields": "name,formatted_phone_number"},
        )
        if data.get("status") != "OK" or not data.get("result"):
            raise NotFoundError("Hospital not found")
        result = data["result"]
        return {"name": result.get("name"), "phone": result.get("formatted_phone_number")}

    def text_search(self, query: str, location: Optional[Dict[str, float]] = None) -> List[Dict[str, Any]]:
        """Ranked place candidates with `name`, `types`, `formatted_address`, `place_id`."""
        params: Dict[str, Any] = {"query": query, "region": "in"}
        if location:
            params["location"] = f"{location['lat']},{location['lng']}"
            params["radius"] = 50000
        data = self._get("place/textsearch/json", params)
        return data.get("results") or []
