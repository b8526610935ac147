"""
Tests for the proposal lifecycle and its cascades onto market requests.
"""
from datetime import date, timedelta

import pytest

from procureflow.core import rules
from procureflow.core.errors import (
    AuthorizationError, ConflictError, StateError, ValidationError,
)
from procureflow.db.models import (
    AuditLog, MarketRequest, Proposal, RFPRequest, Vendor,
)
from procureflow.db.session import SessionLocal
from procureflow.services import market_requests, proposals, rfp_requests
from procureflow.services.accounts import principal_for

SCORES = [
    {"criterion": "Price", "score": 8, "max_score": 10},
    {"criterion": "Delivery", "score": 4, "max_score": 5},
]


def _expire(db, mr):
    db.query(MarketRequest).filter(MarketRequest.id == mr.id).update(
        {MarketRequest.deadline: rules.utcnow() - timedelta(minutes=1)}
    )
    db.commit()


class TestCreate:
    """Draft creation by vendors."""

    def test_create_computes_total_and_counts(self, db, open_mr, vendor, draft):
        proposal = draft(vendor, open_mr, quantity=4, unit_price=250.5)
        assert proposal.status == "draft"
        assert proposal.total_price == 1002.0
        db.refresh(open_mr)
        assert open_mr.proposals_count == 1
        assert db.get(Vendor, vendor.id).total_proposals == 1

    def test_client_total_price_ignored(self, db, open_mr, vendor, draft):
        proposal = draft(vendor, open_mr, total_price=1.0)
        assert proposal.total_price == 12000.0

    def test_duplicate_proposal_conflicts(self, db, open_mr, vendor, draft):
        first = draft(vendor, open_mr)
        proposals.submit_proposal(db, vendor, first.id)
        proposals.withdraw_proposal(db, vendor, first.id)
        with pytest.raises(ConflictError):
            draft(vendor, open_mr)

    def test_org_user_cannot_create(self, db, open_mr, manager, draft):
        with pytest.raises(AuthorizationError):
            draft(manager, open_mr)

    def test_closed_market_request_rejected(self, db, open_mr, manager, vendor, draft):
        market_requests.close_market_request(db, manager, open_mr.id)
        with pytest.raises(StateError):
            draft(vendor, open_mr)

    def test_past_deadline_rejected(self, db, open_mr, vendor, draft):
        _expire(db, open_mr)
        with pytest.raises(StateError):
            draft(vendor, open_mr)

    def test_delivery_date_in_past_rejected(self, db, open_mr, vendor, draft):
        with pytest.raises(ValidationError):
            draft(vendor, open_mr, delivery_date=date.today() - timedelta(days=1))
        db.refresh(open_mr)
        assert open_mr.proposals_count == 0


class TestVendorCommands:
    """Edit, submit, withdraw, delete."""

    def test_update_recomputes_total(self, db, open_mr, vendor, draft):
        proposal = draft(vendor, open_mr)
        updated = proposals.update_proposal(db, vendor, proposal.id, {"unit_price": 1000.0, "status": "accepted"})
        assert updated.total_price == 10000.0
        assert updated.status == "draft"

    def test_only_owner_updates(self, db, open_mr, vendor, other_vendor, draft):
        proposal = draft(vendor, open_mr)
        with pytest.raises(AuthorizationError):
            proposals.update_proposal(db, other_vendor, proposal.id, {"unit_price": 1.0})

    def test_submitted_proposal_not_editable(self, db, open_mr, vendor, submit):
        proposal = submit(vendor, open_mr)
        with pytest.raises(StateError):
            proposals.update_proposal(db, vendor, proposal.id, {"unit_price": 1.0})

    def test_submit_sets_submitted_at(self, db, open_mr, vendor, submit):
        proposal = submit(vendor, open_mr)
        assert proposal.status == "submitted"
        assert proposal.submitted_at is not None

    def test_submit_after_deadline_rejected(self, db, open_mr, vendor, draft):
        proposal = draft(vendor, open_mr)
        _expire(db, open_mr)
        with pytest.raises(StateError):
            proposals.submit_proposal(db, vendor, proposal.id)

    def test_withdraw_keeps_count(self, db, open_mr, vendor, submit):
        proposal = submit(vendor, open_mr)
        withdrawn = proposals.withdraw_proposal(db, vendor, proposal.id, "Out of stock")
        assert withdrawn.status == "withdrawn"
        assert withdrawn.withdrawn_at is not None
        assert withdrawn.vendor_notes == "Out of stock"
        db.refresh(open_mr)
        assert open_mr.proposals_count == 1

    def test_draft_cannot_be_withdrawn(self, db, open_mr, vendor, draft):
        proposal = draft(vendor, open_mr)
        with pytest.raises(StateError):
            proposals.withdraw_proposal(db, vendor, proposal.id)

    def test_delete_draft_only(self, db, open_mr, vendor, other_vendor, draft, submit):
        proposal = draft(vendor, open_mr)
        proposal_id = proposal.id
        proposals.delete_proposal(db, vendor, proposal_id)
        assert db.query(Proposal).filter(Proposal.id == proposal_id).first() is None

        submitted = submit(other_vendor, open_mr)
        with pytest.raises(StateError):
            proposals.delete_proposal(db, other_vendor, submitted.id)


class TestReviewerCommands:
    """Evaluate, accept, reject."""

    def test_evaluate_moves_to_under_review(self, db, open_mr, manager, vendor, submit):
        proposal = submit(vendor, open_mr)
        evaluated = proposals.evaluate_proposal(db, manager, proposal.id, SCORES, "Solid offer")
        assert evaluated.status == "under_review"
        assert evaluated.evaluation["total_score"] == 12
        assert evaluated.evaluation["max_total_score"] == 15
        assert evaluated.evaluation["percentage_score"] == pytest.approx(80.0)
        assert evaluated.evaluation["evaluated_by"] == manager.id
        assert evaluated.reviewed_at is not None

    def test_evaluate_requires_submitted(self, db, open_mr, manager, vendor, submit):
        proposal = submit(vendor, open_mr)
        proposals.evaluate_proposal(db, manager, proposal.id, SCORES)
        with pytest.raises(StateError):
            proposals.evaluate_proposal(db, manager, proposal.id, SCORES)

    def test_plain_user_cannot_evaluate(self, db, open_mr, requester, vendor, submit):
        proposal = submit(vendor, open_mr)
        with pytest.raises(AuthorizationError):
            proposals.evaluate_proposal(db, requester, proposal.id, SCORES)

    def test_other_org_manager_cannot_accept(self, db, open_mr, vendor, submit, make_org):
        _, other_admin = make_org("Globex", "admin@globex.test")
        proposal = submit(vendor, open_mr)
        with pytest.raises(AuthorizationError):
            proposals.accept_proposal(db, other_admin, proposal.id)

    def test_accept_without_evaluation(self, db, open_mr, manager, vendor, submit):
        proposal = submit(vendor, open_mr)
        accepted = proposals.accept_proposal(db, manager, proposal.id, "Go ahead")
        assert accepted.status == "accepted"
        assert accepted.manager_notes == "Go ahead"

    def test_reject_leaves_market_request_open(self, db, open_mr, manager, vendor, submit):
        proposal = submit(vendor, open_mr)
        rejected = proposals.reject_proposal(db, manager, proposal.id, "Too expensive")
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Too expensive"
        assert rejected.rejected_at is not None
        db.refresh(open_mr)
        assert open_mr.status == "open"
        assert db.get(Vendor, vendor.id).rejected_proposals == 1

    def test_withdrawn_cannot_be_accepted(self, db, open_mr, manager, vendor, submit):
        proposal = submit(vendor, open_mr)
        proposals.withdraw_proposal(db, vendor, proposal.id)
        with pytest.raises(StateError):
            proposals.accept_proposal(db, manager, proposal.id)


class TestVisibility:
    """Who sees which proposals."""

    def test_drafts_hidden_from_buyer(self, db, open_mr, manager, vendor, other_vendor, draft, submit):
        hidden = draft(vendor, open_mr)
        visible = submit(other_vendor, open_mr)
        with pytest.raises(AuthorizationError):
            proposals.get_proposal(db, manager, hidden.id)
        assert [p.id for p in proposals.list_proposals(db, manager, open_mr.id)] == [visible.id]

    def test_vendor_sees_only_own(self, db, open_mr, vendor, other_vendor, submit):
        mine = submit(vendor, open_mr)
        theirs = submit(other_vendor, open_mr)
        assert [p.id for p in proposals.list_proposals(db, vendor)] == [mine.id]
        with pytest.raises(AuthorizationError):
            proposals.get_proposal(db, vendor, theirs.id)

    def test_status_filter(self, db, open_mr, manager, vendor, other_vendor, submit):
        first = submit(vendor, open_mr)
        submit(other_vendor, open_mr)
        proposals.reject_proposal(db, manager, first.id)
        rejected = proposals.list_proposals(db, manager, status="rejected")
        assert [p.id for p in rejected] == [first.id]


class TestAwardScenario:
    """End-to-end: request, publish, bid, evaluate, award."""

    def test_full_award_flow(self, db, requester, manager, vendor, other_vendor):
        rfp = rfp_requests.create_rfp_request(db, requester, {
            "title": "Servers", "description": "Rack servers", "category": "Hardware",
            "quantity": 2, "budget_estimate": 20000.0, "justification": "Capacity",
        })
        rfp_requests.review_rfp_request(db, manager, rfp.id, "approved")
        mr = rfp_requests.convert_to_market(db, manager, rfp.id, {
            "deadline": rules.utcnow() + timedelta(days=10),
        })

        delivery = date.today() + timedelta(days=30)
        p1 = proposals.create_proposal(db, vendor, mr.id, {
            "proposed_item": "R750", "description": "2U", "quantity": 2, "unit_price": 9000.0,
            "delivery_time": "30 days", "delivery_date": delivery,
        })
        p2 = proposals.create_proposal(db, other_vendor, mr.id, {
            "proposed_item": "DL380", "description": "2U", "quantity": 2, "unit_price": 8500.0,
            "delivery_time": "30 days", "delivery_date": delivery,
        })
        proposals.submit_proposal(db, vendor, p1.id)
        proposals.submit_proposal(db, other_vendor, p2.id)
        proposals.evaluate_proposal(db, manager, p2.id, SCORES)

        proposals.accept_proposal(db, manager, p2.id)

        db.refresh(mr)
        db.refresh(p1)
        db.refresh(p2)
        assert mr.status == "awarded"
        assert mr.winning_proposal_id == p2.id
        assert mr.proposals_count == 2
        assert p2.status == "accepted"
        assert p2.total_price == 17000.0
        assert p1.status == "submitted"
        assert db.get(RFPRequest, rfp.id).status == "converted_to_market"
        assert db.get(Vendor, other_vendor.id).accepted_proposals == 1

        with pytest.raises(StateError):
            proposals.accept_proposal(db, manager, p1.id)

        # p1 may still be rejected after the award
        rejected = proposals.reject_proposal(db, manager, p1.id, "Another vendor won")
        assert rejected.status == "rejected"

        actions = {a for (a,) in db.query(AuditLog.action).all()}
        assert {"create_rfp_request", "review_rfp_request", "convert_to_market",
                "create_market_request", "create_proposal", "submit_proposal",
                "evaluate_proposal", "accept_proposal", "reject_proposal"} <= actions

    def test_concurrent_accepts_yield_single_winner(self, db, open_mr, manager, vendor, other_vendor, submit):
        p1 = submit(vendor, open_mr)
        p2 = submit(other_vendor, open_mr)

        first, second = SessionLocal(), SessionLocal()
        try:
            # Both sessions load their proposal and see the market request open
            stale_1 = first.get(Proposal, p1.id)
            stale_2 = second.get(Proposal, p2.id)
            assert stale_1.market_request.status == "open"
            assert stale_2.market_request.status == "open"

            proposals.accept_proposal(first, manager, p1.id)
            with pytest.raises(StateError):
                proposals.accept_proposal(second, manager, p2.id)
        finally:
            first.close()
            second.close()

        db.expire_all()
        mr = db.get(MarketRequest, open_mr.id)
        assert mr.status == "awarded"
        assert mr.winning_proposal_id == p1.id
        assert db.get(Proposal, p2.id).status == "submitted"
        assert db.get(Vendor, other_vendor.id).accepted_proposals == 0

    def test_award_races_accept(self, db, open_mr, manager, vendor, other_vendor, submit):
        p1 = submit(vendor, open_mr)
        p2 = submit(other_vendor, open_mr)

        first, second = SessionLocal(), SessionLocal()
        try:
            assert first.get(MarketRequest, open_mr.id).status == "open"
            assert second.get(Proposal, p2.id).market_request.status == "open"

            market_requests.award_market_request(first, manager, open_mr.id, p1.id)
            with pytest.raises(StateError):
                proposals.accept_proposal(second, manager, p2.id)
        finally:
            first.close()
            second.close()

        db.expire_all()
        accepted = db.query(Proposal).filter(Proposal.status == "accepted").all()
        assert [p.id for p in accepted] == [p1.id]


class TestPrincipals:

    def test_principal_for_vendor_has_no_org(self, db, vendor):
        account = db.get(Vendor, vendor.id)
        assert principal_for(account) == vendor
        assert not hasattr(vendor, "organization_id")
