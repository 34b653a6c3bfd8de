"""
Outbound voice calls through Bland.ai.
"""

import logging
from typing import Any, Dict, Optional

import requests

from mediloan.errors import DependencyUnavailable

logger = logging.getLogger(__name__)

BLAND_BASE_URL = "https://api.bland.ai/v1"


class TelephonyClient:

    def __init__(self, api_key: Optional[str], timeout: float = 5.0):
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise DependencyUnavailable("Bland.ai API key is not defined")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def start_call(self, phone_number: str, task: str) -> str:
        """Place a call and return its call id."""
        try:
            response = requests.post(
                f"{BLAND_BASE_URL}/calls",
                headers=self._headers(),
                json={"phone_number": phone_number, "task": task},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise DependencyUnavailable(f"Call could not be placed: {e}") from e
        call_id = response.json().get("call_id")
        if not call_id:
            raise DependencyUnavailable("Telephony service returned no call id")
        logger.info("Call started: %s", call_id)
        return call_id

    def get_call(self, call_id: str) -> Dict[str, Any]:
        response = requests.get(
            f"{BLAND_BASE_URL}/calls/{call_id}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()
