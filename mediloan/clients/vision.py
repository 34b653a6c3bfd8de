"""
Google Cloud Vision label detection.
"""

import logging
from typing import List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

VISION_URL = "https://vision.googleapis.com/v1/images:annotate"


class VisionLabelClient:
    """Returns (description, score) label pairs for a base64 image."""

    def __init__(self, api_key: Optional[str], timeout: float = 5.0, max_results: int = 10):
        self.api_key = api_key
        self.timeout = timeout
        self.max_results = max_results

    def labels(self, image_b64: str) -> List[Tuple[str, float]]:
        if not self.api_key:
            raise RuntimeError("Google Cloud API key not configured")

        body = {
            "requests": [{
                "image": {"content": image_b64},
                "features": [{"type": "LABEL_DETECTION", "maxResults": self.max_results}],
            }]
        }
        response = requests.post(
            VISION_URL,
            params={"key": self.api_key},
            json=body,
            timeout=self.timeout,
        )
        if not response.ok:
            raise RuntimeError(f"Vision API error: {response.status_code}")

        first = (response.json().get("responses") or [{}])[0]
        if "error" in first:
            raise RuntimeError(f"Vision API error: {first['error'].get('message')}")
        return [
            (label["description"], float(label["score"]))
            for label in first.get("labelAnnotations", [])
        ]
