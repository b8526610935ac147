"""
Tests for the vendor directory, vendor profiles and the vendor dashboard.
"""
import pytest

from procureflow.core.errors import AuthorizationError, NotFoundError, ValidationError
from procureflow.db.models import Vendor
from procureflow.services import accounts, market_requests, proposals, vendors


@pytest.fixture
def directory(db, vendor, other_vendor):
    """Two vendors with distinct specializations and locations."""
    accounts.update_profile(db, vendor, {
        "specialization": ["Electronics", "IT Services"],
        "location": {"city": "Austin", "country": "USA"},
    })
    accounts.update_profile(db, other_vendor, {
        "specialization": ["Furniture"],
        "location": {"city": "Berlin", "country": "Germany"},
    })
    return vendor, other_vendor


class TestDirectory:
    """Organization users browse vendors."""

    def test_lists_all_with_total(self, db, manager, directory):
        found, total = vendors.list_vendors(db, manager)
        assert total == 2
        assert {v.company_name for v in found} == {"Supply Co", "Parts Ltd"}

    def test_specialization_filter_matches_whole_tag(self, db, manager, directory):
        found, total = vendors.list_vendors(db, manager, specialization="Furniture")
        assert total == 1
        assert found[0].company_name == "Parts Ltd"
        assert vendors.list_vendors(db, manager, specialization="Electro")[1] == 0

    def test_location_and_search(self, db, manager, directory):
        found, _ = vendors.list_vendors(db, manager, location="berlin")
        assert [v.company_name for v in found] == ["Parts Ltd"]
        found, _ = vendors.list_vendors(db, manager, search="supply")
        assert [v.company_name for v in found] == ["Supply Co"]

    def test_inactive_filter(self, db, manager, directory):
        vendor, _ = directory
        db.get(Vendor, vendor.id).is_active = False
        db.commit()
        found, total = vendors.list_vendors(db, manager, is_active=True)
        assert total == 1
        assert found[0].id != vendor.id

    def test_sort_and_paginate(self, db, manager, directory):
        found, total = vendors.list_vendors(
            db, manager, sort_by="company_name", sort_order="desc", skip=0, limit=1
        )
        assert total == 2
        assert [v.company_name for v in found] == ["Supply Co"]

    def test_unknown_sort_field_rejected(self, db, manager, directory):
        with pytest.raises(ValidationError):
            vendors.list_vendors(db, manager, sort_by="hashed_password")

    def test_vendors_cannot_browse(self, db, vendor):
        with pytest.raises(AuthorizationError):
            vendors.list_vendors(db, vendor)


class TestProfile:
    """Viewing and editing a single vendor."""

    def test_org_user_views_any_vendor(self, db, manager, vendor):
        assert vendors.get_vendor(db, manager, vendor.id).email == "vendor@supply.test"

    def test_vendor_views_only_self(self, db, vendor, other_vendor):
        assert vendors.get_vendor(db, vendor, vendor.id).id == vendor.id
        with pytest.raises(AuthorizationError):
            vendors.get_vendor(db, vendor, other_vendor.id)

    def test_unknown_vendor(self, db, manager):
        with pytest.raises(NotFoundError):
            vendors.get_vendor(db, manager, "0" * 24)

    def test_update_ignores_counters_and_flags(self, db, vendor):
        updated = vendors.update_vendor_profile(db, vendor, vendor.id, {
            "description": "Hardware reseller",
            "certifications": ["ISO 9001"],
            "rating": 5.0,
            "is_verified": True,
            "accepted_proposals": 99,
        })
        assert updated.description == "Hardware reseller"
        assert updated.certifications == ["ISO 9001"]
        assert updated.rating == 0.0
        assert updated.is_verified is False
        assert updated.accepted_proposals == 0

    def test_cannot_update_another_vendor(self, db, vendor, other_vendor):
        with pytest.raises(AuthorizationError):
            vendors.update_vendor_profile(db, vendor, other_vendor.id, {"description": "Mine now"})

    def test_org_user_cannot_update_vendor(self, db, manager, vendor):
        with pytest.raises(AuthorizationError):
            vendors.update_vendor_profile(db, manager, vendor.id, {"description": "Edited"})


class TestDashboard:
    """Per-vendor proposal statistics."""

    def test_empty_dashboard(self, db, vendor):
        stats = vendors.vendor_dashboard(db, vendor)
        assert stats["proposals"]["total"] == 0
        assert stats["proposals"]["win_rate"] == 0.0
        assert stats["market_requests"]["viewed"] == 0
        assert stats["recent_activity"] == []

    def test_counts_and_win_rate(self, db, vendor, manager, open_mr, make_mr, submit, draft):
        won = submit(vendor, open_mr)
        proposals.accept_proposal(db, manager, won.id)
        draft(vendor, make_mr("Monitors"))
        market_requests.view_market_request(db, vendor, open_mr.id)

        stats = vendors.vendor_dashboard(db, vendor)
        assert stats["proposals"]["total"] == 2
        assert stats["proposals"]["accepted"] == 1
        assert stats["proposals"]["draft"] == 1
        assert stats["proposals"]["rejected"] == 0
        assert stats["proposals"]["win_rate"] == pytest.approx(50.0)
        assert stats["market_requests"]["viewed"] == 1
        assert {a["market_request_title"] for a in stats["recent_activity"]} == {"Laptops", "Monitors"}

    def test_other_vendors_proposals_not_counted(self, db, vendor, other_vendor, open_mr, submit):
        submit(other_vendor, open_mr)
        assert vendors.vendor_dashboard(db, vendor)["proposals"]["total"] == 0

    def test_org_user_has_no_dashboard(self, db, manager):
        with pytest.raises(AuthorizationError):
            vendors.vendor_dashboard(db, manager)

    def test_list_own_proposals_by_status(self, db, vendor, other_vendor, open_mr, make_mr, submit, draft):
        submit(vendor, open_mr)
        draft(vendor, make_mr("Monitors"))
        submit(other_vendor, open_mr)
        assert len(vendors.list_vendor_proposals(db, vendor)) == 2
        drafts = vendors.list_vendor_proposals(db, vendor, status="draft")
        assert [p.vendor_id for p in drafts] == [vendor.id]
