"""
IP geolocation lookup via ipinfo.io.
"""

from typing import Dict, Optional

import requests


class IpInfoClient:

    def __init__(self, token: Optional[str], timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    def lookup(self, ip: str) -> Optional[Dict[str, float]]:
        """Return {"lat", "lng"} for an IP, or None if the lookup gave nothing usable."""
        response = self.session.get(
            f"https://ipinfo.io/{ip}",
            params={"token": self.token},
            timeout=self.timeout,
        )
        if not response.ok:
            return None
        loc = response.json().get("loc")
        if not loc:
            return None
        lat, lng = (float(part) for part in loc.split(","))
        return {"lat": lat, "lng": lng}
