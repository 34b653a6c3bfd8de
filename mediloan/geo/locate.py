"""
Resolve hospital and applicant coordinates and the distance between them.
"""

import json
import logging
import math
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field

from mediloan.clients.google_maps import GoogleMapsClient
from mediloan.clients.ipinfo import IpInfoClient
from mediloan.repository.kv_store import KVStore, get_kv_store

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
HOSPITAL_CACHE_TTL = 24 * 60 * 60

# Mumbai; used so a missing location never blocks scoring
FALLBACK_LOCATION = {"lat": 19.0760, "lng": 72.8777}


class Location(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


def haversine_km(a: Location, b: Location) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class GeolocationResolver:
    """
    Hospital lookups go through a 24h cache in front of the geocoder.
    Applicant lookups follow a priority chain and always produce a point.
    """

    def __init__(
        self,
        maps: GoogleMapsClient,
        ipinfo: IpInfoClient,
        store: Optional[KVStore] = None,
    ):
        self.maps = maps
        self.ipinfo = ipinfo
        self._store = store

    @property
    def store(self) -> KVStore:
        return self._store or get_kv_store()

    def resolve_hospital_location(self, place_id: str) -> Location:
        cache_key = f"hospital_coords:{place_id}"

        try:
            cached = self.store.get(cache_key)
            if cached:
                return Location(**json.loads(cached))
        except Exception as e:
            logger.warning("Cache read failed for hospital coordinates: %s", e)

        # NotFoundError / DependencyUnavailable propagate to the caller
        location = Location(**self.maps.geocode_place(place_id))

        try:
            self.store.set(cache_key, location.model_dump_json(), ttl=HOSPITAL_CACHE_TTL)
        except Exception as e:
            logger.warning("Cache write failed for hospital coordinates: %s", e)

        return location

    def resolve_user_location(
        self,
        explicit: Optional[Location] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Location:
        # 1. Client-supplied coordinates
        if explicit is not None:
            return explicit

        headers = {k.lower(): v for k, v in (headers or {}).items()}

        # 2. Edge geo headers
        lat_header = headers.get("x-vercel-ip-latitude")
        lng_header = headers.get("x-vercel-ip-longitude")
        if lat_header and lng_header:
            try:
                return Location(lat=float(lat_header), lng=float(lng_header))
            except ValueError:
                logger.warning("Ignoring malformed geo headers: %s, %s", lat_header, lng_header)

        # 3. IP geolocation
        ip = headers.get("x-forwarded-for", "").split(",")[0].strip()
        if ip and self.ipinfo.enabled:
            try:
                found = self.ipinfo.lookup(ip)
                if found:
                    return Location(**found)
            except Exception as e:
                logger.warning("IP geolocation failed: %s", e)

        # 4. Fixed fallback
        return Location(**FALLBACK_LOCATION)
