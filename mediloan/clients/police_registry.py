"""
FIR confirmation against a state police registry.

When POLICE_REGISTRY_URL is set, FIR numbers are confirmed over HTTP.
Without it the offline registry accepts every structurally valid FIR
number, which keeps local development and demos usable.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from mediloan.config.settings import get_settings

logger = logging.getLogger(__name__)


class PoliceRegistry(ABC):

    @abstractmethod
    def verify_fir(self, fir_number: str) -> bool:
        """True if the registry knows this FIR."""
        raise NotImplementedError


class HttpPoliceRegistry(PoliceRegistry):

    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def verify_fir(self, fir_number: str) -> bool:
        try:
            response = requests.get(
                f"{self.base_url}/fir",
                params={"number": fir_number},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Police registry lookup failed for %s: %s", fir_number, e)
            return False
        if response.status_code == 404:
            return False
        if not response.ok:
            logger.warning("Police registry returned %s", response.status_code)
            return False
        return bool(response.json().get("verified", False))


class OfflinePoliceRegistry(PoliceRegistry):

    def verify_fir(self, fir_number: str) -> bool:
        logger.warning("No police registry configured; accepting %s unverified", fir_number)
        return bool(fir_number)


def get_police_registry(url: Optional[str] = None) -> PoliceRegistry:
    settings = get_settings()
    url = url or settings.police_registry_url
    if url:
        return HttpPoliceRegistry(url, timeout=settings.http_timeout)
    return OfflinePoliceRegistry()
