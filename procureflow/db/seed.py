"""
Demo data seeding.

Creates one organization with an admin, a manager and a requester, two
vendors, and an RFP request that has been approved and published so the
marketplace is not empty on first start.
Run: python -m procureflow.db.seed
"""
from datetime import timedelta

from procureflow.core import rules
from procureflow.core.logging import get_logger
from procureflow.db.session import SessionLocal
from procureflow.db.models import Organization, Role
from procureflow.services import accounts, market_requests, rfp_requests

logger = get_logger(__name__)

DEMO_PASSWORD = "demo12345"
DEMO_ORG_NAME = "Acme Manufacturing"


def seed_demo_data():
    """Seed the database with demo data (idempotent)."""
    db = SessionLocal()

    try:
        if db.query(Organization).filter(Organization.name == DEMO_ORG_NAME).first():
            logger.info("Demo data already seeded. Skipping...")
            return

        _, admin = accounts.register_organization(
            db,
            {
                "name": DEMO_ORG_NAME,
                "industry": "Manufacturing",
                "description": "Demo buying organization",
                "address": {
                    "street": "1 Industrial Way", "city": "Springfield", "state": "IL",
                    "country": "USA", "zip_code": "62701",
                },
                "contact": {"email": "procurement@acme.example", "phone": "+1 555 0100"},
            },
            {
                "first_name": "Alice", "last_name": "Admin",
                "email": "admin@acme.example", "password": DEMO_PASSWORD,
            },
        )
        admin_principal = accounts.principal_for(admin)

        manager = accounts.create_user(db, admin_principal, {
            "first_name": "Mark", "last_name": "Manager", "email": "manager@acme.example",
            "password": DEMO_PASSWORD, "role": Role.MANAGER.value, "department": "Operations",
        })
        requester = accounts.create_user(db, admin_principal, {
            "first_name": "Uma", "last_name": "User", "email": "user@acme.example",
            "password": DEMO_PASSWORD, "role": Role.USER.value, "manager_id": manager.id,
            "department": "Engineering",
        })

        for first, last, company, specialization in [
            ("Victor", "Vance", "Vance Electronics", ["Electronics", "Hardware"]),
            ("Wendy", "Ward", "Ward Office Supply", ["Office Supplies", "Furniture"]),
        ]:
            accounts.register_vendor(db, {
                "first_name": first, "last_name": last, "company_name": company,
                "email": f"{first.lower()}@{last.lower()}.example", "password": DEMO_PASSWORD,
                "specialization": specialization,
            })

        manager_principal = accounts.principal_for(manager)
        rfp = rfp_requests.create_rfp_request(db, accounts.principal_for(requester), {
            "title": "Developer laptops",
            "description": "Replacement laptops for the engineering team",
            "category": "Electronics",
            "urgency": "high",
            "quantity": 10,
            "budget_estimate": 20000.0,
            "justification": "Current fleet is past its support window",
        })
        rfp_requests.review_rfp_request(
            db, manager_principal, rfp.id, "approved", manager_notes="Approved for Q4 budget",
        )
        market_requests.create_market_request(db, manager_principal, rfp.id, {
            "deadline": rules.utcnow() + timedelta(days=30),
            "requirements": [{"requirement": "3-year warranty", "mandatory": True}],
            "evaluation_criteria": [
                {"criterion": "Price", "weight": 50},
                {"criterion": "Delivery", "weight": 30},
                {"criterion": "Warranty", "weight": 20},
            ],
        })

        logger.info(f"Demo data seeded; log in with any demo account and password '{DEMO_PASSWORD}'")
    finally:
        db.close()


if __name__ == "__main__":
    seed_demo_data()
