"""
Accident image plausibility checks.

Two interchangeable strategies, chosen by MEDILOAN_IMAGE_ANALYZER:
1. labels    - Vision API labels matched against an accident vocabulary
2. heuristic - file size bounds and JPEG/PNG magic bytes, no ML

Design principles:
- analyze() NEVER raises; any failure or timeout degrades to a
  conservative mid-high risk factor
- risk_factor is in [0, 1]; higher means less trustworthy evidence
"""

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Optional

from mediloan.clients.vision import VisionLabelClient
from mediloan.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

ACCIDENT_CLASSES = [
    "ambulance", "car crash", "traffic accident", "bandage", "hospital",
    "emergency vehicle", "medical", "injury", "wheelchair", "stretcher",
    "vehicle", "car", "accident", "damage", "emergency", "healthcare",
]

FAILURE_RISK = 0.6
MIN_IMAGE_BYTES = 1000
MAX_IMAGE_BYTES = 5000000

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="image-analysis")


@dataclass
class ImageAnalysis:
    top_class: str
    confidence: float
    risk_factor: float


def analysis_failed() -> ImageAnalysis:
    return ImageAnalysis(top_class="analysis_failed", confidence=0.0, risk_factor=FAILURE_RISK)


def _strip_data_uri(image: str) -> str:
    """'data:image/png;base64,AAAA' -> 'AAAA'."""
    return image.split(",", 1)[1] if image.startswith("data:") else image


class ImageAnalyzer(ABC):
    """Base strategy. Subclasses implement `_analyze`."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def analyze(self, image: str) -> ImageAnalysis:
        try:
            if self.timeout is None:
                return self._analyze(_strip_data_uri(image))
            future = _executor.submit(self._analyze, _strip_data_uri(image))
            return future.result(timeout=self.timeout)
        except FuturesTimeoutError:
            logger.warning("%s timed out after %.1fs", type(self).__name__, self.timeout)
            return analysis_failed()
        except Exception as e:
            logger.error("%s failed: %s", type(self).__name__, e)
            return analysis_failed()

    @abstractmethod
    def _analyze(self, image_b64: str) -> ImageAnalysis:
        raise NotImplementedError


class LabelImageAnalyzer(ImageAnalyzer):
    """Classify with Vision API labels."""

    def __init__(self, client: VisionLabelClient, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.client = client

    def _analyze(self, image_b64: str) -> ImageAnalysis:
        labels = self.client.labels(image_b64)
        if not labels:
            return ImageAnalysis(top_class="no_labels_detected", confidence=0.0, risk_factor=0.8)

        best_description, best_score = labels[0]
        accident_related = False

        for description, score in labels:
            desc = description.lower()
            if score > 0.5 and any(cls in desc or desc in cls for cls in ACCIDENT_CLASSES):
                best_description, best_score = description, score
                accident_related = True
                break

        if accident_related and best_score > 0.8:
            risk = 0.1
        elif accident_related and best_score > 0.5:
            risk = 0.3
        else:
            risk = 0.8

        return ImageAnalysis(
            top_class=best_description,
            confidence=round(best_score, 2),
            risk_factor=risk,
        )


class HeuristicImageAnalyzer(ImageAnalyzer):
    """Format and size checks only."""

    def _analyze(self, image_b64: str) -> ImageAnalysis:
        try:
            data = base64.b64decode(image_b64, validate=False)
        except (binascii.Error, ValueError):
            return ImageAnalysis(top_class="invalid_image_format", confidence=0.9, risk_factor=1.0)

        size = len(data)
        is_jpeg = data[:2] == b"\xff\xd8"
        is_png = data[:4] == b"\x89PNG"

        if not (is_jpeg or is_png):
            return ImageAnalysis(top_class="invalid_image_format", confidence=0.9, risk_factor=1.0)
        if not (MIN_IMAGE_BYTES < size < MAX_IMAGE_BYTES):
            top = "image_too_small" if size <= MIN_IMAGE_BYTES else "image_too_large"
            return ImageAnalysis(top_class=top, confidence=0.7, risk_factor=0.8)
        return ImageAnalysis(top_class="valid_accident_image", confidence=0.6, risk_factor=0.2)


def get_image_analyzer(settings: Optional[Settings] = None) -> ImageAnalyzer:
    """Build the configured strategy."""
    settings = settings or get_settings()
    if settings.image_analyzer == "labels":
        client = VisionLabelClient(settings.google_cloud_api_key, timeout=settings.http_timeout)
        return LabelImageAnalyzer(client, timeout=settings.http_timeout)
    return HeuristicImageAnalyzer()
