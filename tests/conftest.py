"""
Pytest configuration and shared fixtures.

Fixtures available to all tests:
  • db_session - session on a fresh in-memory database; the app's
    ``SessionLocal`` is pointed at the same database
  • make_user(email, ...) - insert a user row
  • make_team(owner, ...) - create a team owned by ``owner``
  • make_proposal(owner) - create a proposal with one pricing table
  • fake_gateway - in-memory stand-in for the Stripe gateway
  • sign_webhook(body) - ``Stripe-Signature`` header for a webhook body
"""

from __future__ import annotations

import os
import sys

# Configure before any backend import reads the environment.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")
os.environ.setdefault("AUTH_SECRET", "test-secret")

# Ensure the project root is on the path so all backend imports resolve.
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import hashlib
import hmac
import itertools
import time
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from backend import database, payment_gateway
from backend.auth import hash_password
from backend.cache_backend import reset_cache_backend_for_tests
from backend.metrics import reset_metrics_for_tests
from backend.services import proposals as proposal_service
from backend.services import teams as team_service


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory(monkeypatch):
    engine = database.make_engine("sqlite://")
    database.init_db(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    monkeypatch.setattr(database, "SessionLocal", factory)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_cache_backend_for_tests()
    reset_metrics_for_tests()
    yield
    payment_gateway.set_gateway(None)
    reset_cache_backend_for_tests()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session):
    def _factory(email: str = "owner@example.com", name: str = "Owner",
                 password: str = "correct horse") -> database.User:
        user = database.User(email=email, name=name, password_hash=hash_password(password))
        db_session.add(user)
        db_session.commit()
        return user
    return _factory


@pytest.fixture
def make_team(db_session):
    def _factory(owner: database.User, name: str = "Sales") -> database.Team:
        return team_service.create_team(db_session, owner.id, name)
    return _factory


def proposal_payload(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "title": "Website redesign",
        "client_name": "Acme Ltd",
        "client_email": "buyer@acme.test",
        "tax_rate": 0.0,
        "blocks": [
            {"type": "TEXT", "content": {"html": "<p>Hello</p>"}},
            {"type": "PRICING_TABLE", "pricing_items": [
                {"name": "Design", "price": 1000.0},
                {"name": "Build", "price": 500.0},
                {"name": "Hosting", "price": 300.0, "type": "OPTIONAL"},
            ]},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_proposal(db_session):
    def _factory(owner: database.User, **overrides: Any) -> database.Proposal:
        return proposal_service.create_proposal(db_session, owner.id, proposal_payload(**overrides))
    return _factory


# ---------------------------------------------------------------------------
# Payment gateway
# ---------------------------------------------------------------------------

TEST_WEBHOOK_SECRET = "whsec_test_secret"


def sign_webhook(payload: bytes, secret: str = TEST_WEBHOOK_SECRET,
                 timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe signs webhook bodies."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeGateway:
    """Records calls and returns canned Stripe-shaped dicts."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.intents: List[Dict[str, Any]] = []
        self.updates: List[Dict[str, Any]] = []
        self.refunds: List[str] = []
        self.accounts: List[Dict[str, Any]] = []
        self.account_status = {"charges_enabled": False, "payouts_enabled": False, "details_submitted": False}

    def create_payment_intent(self, amount_cents: int, currency: str, metadata: Dict[str, str],
                              receipt_email: Optional[str] = None, description: Optional[str] = None,
                              application_fee_amount: Optional[int] = None,
                              destination: Optional[str] = None) -> Dict[str, Any]:
        intent_id = f"pi_{next(self._ids)}"
        self.intents.append({
            "id": intent_id,
            "amount_cents": amount_cents,
            "currency": currency,
            "metadata": metadata,
            "receipt_email": receipt_email,
            "description": description,
            "application_fee_amount": application_fee_amount,
            "destination": destination,
        })
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    def update_payment_intent(self, payment_intent_id: str, amount_cents: int,
                              metadata: Dict[str, str]) -> Dict[str, Any]:
        self.updates.append({"id": payment_intent_id, "amount_cents": amount_cents, "metadata": metadata})
        return {"id": payment_intent_id, "client_secret": f"{payment_intent_id}_secret"}

    def refund(self, payment_intent_id: str) -> Dict[str, Any]:
        self.refunds.append(payment_intent_id)
        return {"id": f"re_{payment_intent_id}", "status": "succeeded"}

    def create_account(self, email: str, country: str = "US") -> Dict[str, Any]:
        account = {"id": f"acct_{next(self._ids)}", "email": email, "country": country}
        self.accounts.append(account)
        return {"id": account["id"]}

    def retrieve_account(self, account_id: str) -> Dict[str, Any]:
        return {"id": account_id, **self.account_status}

    def create_account_link(self, account_id: str, return_url: str, refresh_url: str) -> Dict[str, Any]:
        return {
            "url": f"https://connect.example/{account_id}?return={return_url}&refresh={refresh_url}",
            "expires_at": 1_700_000_000,
        }

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        return payment_gateway.StripeGateway("", TEST_WEBHOOK_SECRET).parse_event(payload, signature)


@pytest.fixture
def fake_gateway():
    gateway = FakeGateway()
    payment_gateway.set_gateway(gateway)
    return gateway
