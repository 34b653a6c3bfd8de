"""
Runtime configuration for the MediLoan service.

Everything is read from environment variables so the same build runs
locally (in-memory store, heuristic image checks, offline police registry)
and in production (SQLite-backed shared store, Vision labels, live registry).
"""

import os
from typing import Optional, Literal
from dataclasses import dataclass


@dataclass
class Settings:
    """Service configuration."""

    # Third-party credentials
    google_maps_api_key: Optional[str] = None
    google_cloud_api_key: Optional[str] = None
    ipinfo_token: Optional[str] = None
    bland_api_key: Optional[str] = None
    police_registry_url: Optional[str] = None

    # Storage
    db_path: str = "data/mediloan.sqlite"
    kv_backend: Literal["memory", "sqlite"] = "memory"
    kv_path: str = "data/mediloan_kv.sqlite"
    decision_log: str = "data/logs/risk_decisions.csv"

    # Strategies
    image_analyzer: Literal["heuristic", "labels"] = "heuristic"
    confirmer: Literal["simulated", "voice"] = "simulated"
    confirmation_success_rate: float = 0.7

    # Timeouts (seconds)
    request_timeout: float = 10.0
    http_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            google_maps_api_key=os.getenv("GOOGLE_MAPS_API_KEY"),
            google_cloud_api_key=os.getenv("GOOGLE_CLOUD_API_KEY"),
            ipinfo_token=os.getenv("IPINFO_TOKEN"),
            bland_api_key=os.getenv("BLAND_AI_API_KEY"),
            police_registry_url=os.getenv("POLICE_REGISTRY_URL"),
            db_path=os.getenv("MEDILOAN_DB_PATH", "data/mediloan.sqlite"),
            kv_backend=os.getenv("MEDILOAN_KV_BACKEND", "memory").lower(),
            kv_path=os.getenv("MEDILOAN_KV_PATH", "data/mediloan_kv.sqlite"),
            decision_log=os.getenv("MEDILOAN_DECISION_LOG", "data/logs/risk_decisions.csv"),
            image_analyzer=os.getenv("MEDILOAN_IMAGE_ANALYZER", "heuristic").lower(),
            confirmer=os.getenv("MEDILOAN_CONFIRMER", "simulated").lower(),
            confirmation_success_rate=float(os.getenv("MEDILOAN_CONFIRMATION_SUCCESS_RATE", "0.7")),
            request_timeout=float(os.getenv("MEDILOAN_REQUEST_TIMEOUT", "10")),
            http_timeout=float(os.getenv("MEDILOAN_HTTP_TIMEOUT", "5")),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
