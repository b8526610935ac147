"""
Shared fixtures: a throwaway SQLite database and a populated marketplace.
"""
import os
import tempfile
from datetime import date, timedelta
from types import SimpleNamespace

_TMP_DIR = tempfile.mkdtemp(prefix="procureflow-tests-")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789abcdef")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}")
os.environ.setdefault("LLM_PROVIDER", "mock")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest  # noqa: E402

from procureflow.core.config import settings  # noqa: E402
from procureflow.core import rules  # noqa: E402
from procureflow.db.session import Base, SessionLocal, engine  # noqa: E402
from procureflow.db import models  # noqa: E402,F401
from procureflow.db.models import Role  # noqa: E402
from procureflow.services import (  # noqa: E402
    accounts, market_requests, proposals, rfp_requests,
)

PASSWORD = "password123"


# ============= DATABASE =============

@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# ============= ACCOUNTS =============

def _org_fields(name):
    return {
        "name": name,
        "industry": "Technology",
        "address": {"street": "1 Main St", "city": "Austin", "state": "TX", "country": "USA", "zip_code": "73301"},
        "contact": {"email": "contact@example.com", "phone": "+1 555 0100"},
    }


def _admin_fields(email):
    return {"first_name": "Ada", "last_name": "Admin", "email": email, "password": PASSWORD}


@pytest.fixture
def make_org(db):
    """Register an organization; returns (org, admin principal)."""
    def _make(name="Acme Corp", admin_email="admin@acme.test"):
        org, admin = accounts.register_organization(db, _org_fields(name), _admin_fields(admin_email))
        return org, accounts.principal_for(admin)
    return _make


@pytest.fixture
def org(make_org):
    return make_org()


@pytest.fixture
def admin(org):
    return org[1]


@pytest.fixture
def manager(db, admin):
    user = accounts.create_user(db, admin, {
        "first_name": "Max", "last_name": "Manager", "email": "manager@acme.test",
        "password": PASSWORD, "role": Role.MANAGER.value,
    })
    return accounts.principal_for(user)


@pytest.fixture
def requester(db, admin, manager):
    user = accounts.create_user(db, admin, {
        "first_name": "Rita", "last_name": "Requester", "email": "user@acme.test",
        "password": PASSWORD, "role": Role.USER.value, "manager_id": manager.id,
    })
    return accounts.principal_for(user)


@pytest.fixture
def make_vendor(db):
    def _make(email="vendor@supply.test", company="Supply Co"):
        vendor = accounts.register_vendor(db, {
            "first_name": "Vic", "last_name": "Vendor", "email": email,
            "password": PASSWORD, "company_name": company,
        })
        return accounts.principal_for(vendor)
    return _make


@pytest.fixture
def vendor(make_vendor):
    return make_vendor()


@pytest.fixture
def other_vendor(make_vendor):
    return make_vendor("other@parts.test", "Parts Ltd")


# ============= LIFECYCLE BUILDERS =============

RFP_FIELDS = {
    "title": "Laptops",
    "description": "Developer laptops",
    "category": "Electronics",
    "quantity": 10,
    "budget_estimate": 15000.0,
    "justification": "Fleet refresh",
}


def proposal_fields(**overrides):
    fields = {
        "proposed_item": "ThinkPad X1",
        "description": "14 inch, 32GB RAM",
        "quantity": 10,
        "unit_price": 1200.0,
        "delivery_time": "2 weeks",
        "delivery_date": date.today() + timedelta(days=14),
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def make_mr(db, requester, manager):
    """Raise, approve and publish an RFP request; returns the open market request."""
    def _make(title="Laptops", **mr_fields):
        rfp = rfp_requests.create_rfp_request(db, requester, dict(RFP_FIELDS, title=title))
        rfp_requests.review_rfp_request(db, manager, rfp.id, "approved")
        mr_fields.setdefault("deadline", rules.utcnow() + timedelta(days=7))
        return market_requests.create_market_request(db, manager, rfp.id, mr_fields)
    return _make


@pytest.fixture
def approved_rfp(db, requester, manager):
    rfp = rfp_requests.create_rfp_request(db, requester, dict(RFP_FIELDS))
    return rfp_requests.review_rfp_request(db, manager, rfp.id, "approved")


@pytest.fixture
def open_mr(db, manager, approved_rfp):
    return market_requests.create_market_request(db, manager, approved_rfp.id, {
        "deadline": rules.utcnow() + timedelta(days=7),
        "evaluation_criteria": [
            {"criterion": "Price", "weight": 60},
            {"criterion": "Delivery", "weight": 40},
        ],
    })


@pytest.fixture
def draft(db):
    """Create a draft proposal for a vendor."""
    def _draft(vendor, mr, **overrides):
        return proposals.create_proposal(db, vendor, mr.id, proposal_fields(**overrides))
    return _draft


@pytest.fixture
def submit(db, draft):
    """Create and submit a proposal for a vendor."""
    def _submit(vendor, mr, **overrides):
        return proposals.submit_proposal(db, vendor, draft(vendor, mr, **overrides).id)
    return _submit


# ============= ORACLE =============

@pytest.fixture
def openai_reply(monkeypatch):
    """Point the oracle at a fake OpenAI client that answers with the given choices."""
    import openai

    def _install(choices):
        def create(**request):
            return SimpleNamespace(choices=choices)

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        monkeypatch.setattr(settings, "LLM_PROVIDER", "openai")
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(settings, "ORACLE_MAX_ATTEMPTS", 1)
        monkeypatch.setattr(openai, "OpenAI", lambda **kwargs: client)
    return _install
