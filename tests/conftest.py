"""
Shared fixtures.

Every test gets its own in-memory key-value store, a loan database under
tmp_path and settings that keep the decision log out of the repo.
Third-party services are replaced with the fakes below.
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mediloan.config import settings as settings_module
from mediloan.config.settings import Settings
from mediloan.emergency import db as db_module
from mediloan.emergency.db import LoanStore
from mediloan.errors import NotFoundError
from mediloan.repository.kv_store import MemoryKVStore, set_kv_store

HOSPITAL_PLACE_ID = "ChIJ-hospital-place-0000001"  # 27 characters
HOSPITAL_COORDS = {"lat": 19.0760, "lng": 72.8777}
AADHAAR = "123456789012"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMaps:
    """Stands in for GoogleMapsClient."""

    def __init__(
        self,
        coords: Optional[Dict[str, Dict[str, float]]] = None,
        details: Optional[Dict[str, Dict[str, Any]]] = None,
        places: Optional[List[Dict[str, Any]]] = None,
    ):
        self.coords = coords if coords is not None else {HOSPITAL_PLACE_ID: HOSPITAL_COORDS}
        self.details = details if details is not None else {
            HOSPITAL_PLACE_ID: {"name": "Lilavati Hospital", "phone": "+91 22 2675 1000"}
        }
        self.places = places or []
        self.geocode_calls = 0
        self.search_calls = 0

    def geocode_place(self, place_id: str) -> Dict[str, float]:
        self.geocode_calls += 1
        if place_id not in self.coords:
            raise NotFoundError("Hospital not found")
        return dict(self.coords[place_id])

    def place_details(self, place_id: str) -> Dict[str, Any]:
        if place_id not in self.details:
            raise NotFoundError("Hospital not found")
        return dict(self.details[place_id])

    def text_search(self, query: str, location=None) -> List[Dict[str, Any]]:
        self.search_calls += 1
        return list(self.places)


class FakeIpInfo:
    def __init__(self, result: Optional[Dict[str, float]] = None):
        self.result = result
        self.lookups: List[str] = []

    @property
    def enabled(self) -> bool:
        return self.result is not None

    def lookup(self, ip: str) -> Optional[Dict[str, float]]:
        self.lookups.append(ip)
        return self.result


class FakePoliceRegistry:
    def __init__(self, verified: bool = True):
        self.verified = verified
        self.checked: List[str] = []

    def verify_fir(self, fir_number: str) -> bool:
        self.checked.append(fir_number)
        return self.verified


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Fresh settings, key-value store and loan store singletons per test."""
    test_settings = Settings(
        db_path=str(tmp_path / "mediloan.sqlite"),
        kv_path=str(tmp_path / "kv.sqlite"),
        decision_log=str(tmp_path / "logs" / "risk_decisions.csv"),
    )
    monkeypatch.setattr(settings_module, "_settings", test_settings)
    monkeypatch.setattr(db_module, "_store", None)
    store = MemoryKVStore()
    set_kv_store(store)
    yield store
    set_kv_store(None)


@pytest.fixture
def kv_store(isolated_state):
    return isolated_state


@pytest.fixture
def loan_store(tmp_path):
    return LoanStore(str(tmp_path / "loans.sqlite"))


@pytest.fixture
def fake_maps():
    return FakeMaps()


@pytest.fixture
def fake_ipinfo():
    return FakeIpInfo()


@pytest.fixture
def fake_police():
    return FakePoliceRegistry()


@pytest.fixture
def clock():
    return FakeClock()
