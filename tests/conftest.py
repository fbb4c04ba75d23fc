"""
Pytest configuration and fixtures for Allergy Scan tests.

The allergen store and the scanning service are faked with an
httpx.MockTransport handler, so no network is touched.
"""

import asyncio
import json
import os

import httpx
import pytest

# Set test environment before importing allergy_scan modules
os.environ["ALLERGY_ENV"] = "development"
os.environ["ALLERGY_API_URL"] = "http://allergy.test"

from allergy_scan.client import AllergyApiClient
from allergy_scan.config import ScanSettings


SAMPLE_ALLERGENS = [
    {"_id": "peanut-id", "name": "Peanut", "keywords": ["peanut", "groundnut"], "severity": "HIGH"},
    {"_id": "milk-id", "name": "Milk", "keywords": ["milk", "lactose", "whey"], "severity": "MEDIUM"},
    {"_id": "sesame-id", "name": "Sesame", "keywords": ["sesame", "tahini"], "severity": "LOW"},
]


class FakeBackend:
    """In-memory allergen store + scanning service behind MockTransport."""

    def __init__(self):
        self.allergens = [dict(a) for a in SAMPLE_ALLERGENS]
        self.store_down = False
        self.store_status = 200
        self.scan_down = False
        self.scan_status = 200
        self.scan_body: object = {
            "matches": [],
            "safe": True,
            "timestamp": "2025-01-01 12:00:00",
        }
        self.scan_gate: asyncio.Event | None = None
        self.scans_pending = 0
        self.requests: list[httpx.Request] = []
        self._next_id = 100

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def _find(self, allergen_id: str) -> dict | None:
        for a in self.allergens:
            if a["_id"] == allergen_id:
                return a
        return None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/scan":
            if self.scan_gate is not None:
                self.scans_pending += 1
                try:
                    await self.scan_gate.wait()
                finally:
                    self.scans_pending -= 1
            if self.scan_down:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(self.scan_status, json=self.scan_body)

        if self.store_down:
            raise httpx.ConnectError("connection refused", request=request)
        if self.store_status != 200:
            return httpx.Response(self.store_status, json={"detail": "store error"})

        if path == "/allergens":
            if request.method == "GET":
                return httpx.Response(200, json=self.allergens)
            if request.method == "POST":
                body = json.loads(request.content)
                record = {
                    "_id": str(self._next_id),
                    "name": body["name"],
                    "keywords": [k.strip() for k in body["keywords"].split(",")],
                    "severity": body["severity"],
                }
                self._next_id += 1
                self.allergens.append(record)
                return httpx.Response(201, json=record)

        if path.startswith("/allergens/"):
            record = self._find(path.rsplit("/", 1)[1])
            if record is None:
                return httpx.Response(404, json={"detail": "Allergen not found"})
            if request.method == "PUT":
                body = json.loads(request.content)
                record.update(
                    name=body["name"],
                    keywords=[k.strip() for k in body["keywords"].split(",")],
                    severity=body["severity"],
                )
                return httpx.Response(200, json=record)
            if request.method == "DELETE":
                self.allergens.remove(record)
                return httpx.Response(204)

        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_client(backend):
    """Factory so each test builds its client inside its own event loop."""

    def _make() -> AllergyApiClient:
        return AllergyApiClient(
            base_url="http://allergy.test",
            transport=httpx.MockTransport(backend),
        )

    return _make


@pytest.fixture
def fast_settings() -> ScanSettings:
    """Settings with instant progress pacing."""
    return ScanSettings(
        _env_file=None,
        allergy_progress_interval=0,
        allergy_report_settle=0,
    )


@pytest.fixture
def peanut_match() -> dict:
    return {
        "allergen": "Peanut",
        "keyword_found": "peanut",
        "severity": "HIGH",
        "position": {"start": 9, "end": 16},
    }
