"""Quota test fixtures and helpers."""

import sys
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fake_mongo import FakeDatabase
from quota.identity import IdentityVerifier
from quota.ledger import QuotaLedger
from quota.service import QuotaService

USERINFO_URL = "https://auth.example.test/oauth2/v3/userinfo"
COLLECTION = "tesla_map_bridge_usage_quota"

# Bearer token -> userinfo profile returned by the fake provider
PROFILES = {
    "token-a": {"email": "a@x.com", "sub": "sub-a"},
    "token-a-upper": {"email": "  A@X.com ", "sub": "sub-a"},
    "token-b": {"email": "b@y.com", "sub": "sub-b"},
    "token-sub-only": {"sub": "Vehicle-Owner-42"},
}


def make_verifier(profiles=None, handler=None):
    """IdentityVerifier backed by httpx.MockTransport; requests land on .requests."""
    profiles = PROFILES if profiles is None else profiles
    requests = []

    def default_handler(request: httpx.Request) -> httpx.Response:
        auth = request.headers.get("Authorization", "")
        token = auth[len("Bearer "):] if auth.startswith("Bearer ") else None
        if token not in profiles:
            return httpx.Response(401, json={"error": "invalid_token", "detail": "secret provider detail"})
        return httpx.Response(200, json=profiles[token])

    def recording_handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return (handler or default_handler)(request)

    verifier = IdentityVerifier(USERINFO_URL, 5.0, transport=httpx.MockTransport(recording_handler))
    verifier.requests = requests
    return verifier


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def collection(fake_db):
    return fake_db[COLLECTION]


@pytest.fixture
def ledger(fake_db):
    return QuotaLedger(fake_db, COLLECTION)


@pytest.fixture
def verifier():
    return make_verifier()


@pytest.fixture
def service(ledger, verifier):
    return QuotaService(ledger, verifier, default_balance=10)


def seed(collection, user_id, balance):
    """Insert an account document directly."""
    collection.docs.append({
        "_id": len(collection.docs) + 1,
        "user_id": user_id,
        "balance": balance,
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    })
