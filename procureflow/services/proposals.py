"""
Proposal lifecycle.

draft -> submitted -> under_review -> {accepted, rejected};
submitted/under_review -> withdrawn; drafts may be deleted outright.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from procureflow.core import rules
from procureflow.core.errors import AuthorizationError, ConflictError, StateError, ValidationError
from procureflow.core.logging import get_logger
from procureflow.core.rbac import (
    Principal, UserPrincipal, VendorPrincipal,
    require_org_user, require_reviewer, require_same_org, require_vendor,
)
from procureflow.db.models import (
    MarketRequest, MarketRequestStatus, Proposal, ProposalStatus, Vendor,
)
from procureflow.services.audit import record_audit
from procureflow.services.market_requests import OPEN, apply_award
from procureflow.services.persistence import (
    apply_pagination, assert_status, get_or_404, guarded_update, increment, unit_of_work,
)

logger = get_logger(__name__)

REQUIRED_FIELDS = (
    "proposed_item", "description", "quantity", "unit_price", "delivery_time", "delivery_date",
)

REVIEWABLE = [ProposalStatus.SUBMITTED.value, ProposalStatus.UNDER_REVIEW.value]


def _ensure_accepting_proposals(mr: MarketRequest) -> None:
    if mr.status != MarketRequestStatus.OPEN.value:
        raise StateError("Market request is not open for proposals", {"status": mr.status})
    if rules.deadline_passed(mr.deadline):
        raise StateError("Market request deadline has passed")


def _validate_fields(fields: Dict[str, Any]) -> None:
    if "quantity" in fields:
        rules.validate_quantity(fields["quantity"])
    if "unit_price" in fields:
        rules.validate_price(fields["unit_price"])
    if "currency" in fields:
        rules.validate_currency(fields["currency"])
    if "delivery_date" in fields:
        rules.validate_delivery_date(fields["delivery_date"])


def _owned(db: Session, principal: Principal, proposal_id: str, action: str):
    vendor = require_vendor(principal, action)
    proposal = get_or_404(db, Proposal, proposal_id, "Proposal")
    if proposal.vendor_id != vendor.id:
        raise AuthorizationError(f"Not authorized to {action}")
    return vendor, proposal


def _reviewed(db: Session, principal: Principal, proposal_id: str, action: str):
    reviewer = require_reviewer(principal, action)
    proposal = get_or_404(db, Proposal, proposal_id, "Proposal")
    require_same_org(reviewer, proposal.market_request.organization_id, action)
    return reviewer, proposal


# ============= VENDOR COMMANDS =============

def create_proposal(
    db: Session, principal: Principal, market_request_id: str, fields: Dict[str, Any]
) -> Proposal:
    vendor = require_vendor(principal, "create proposals")
    mr = get_or_404(db, MarketRequest, market_request_id, "Market request")
    _ensure_accepting_proposals(mr)

    existing = db.query(Proposal.id).filter(
        Proposal.market_request_id == mr.id, Proposal.vendor_id == vendor.id
    ).first()
    if existing:
        raise ConflictError(
            "You have already submitted a proposal for this market request",
            {"proposal_id": existing.id},
        )

    data = rules.filter_fields(fields, rules.PROPOSAL_UPDATABLE_FIELDS)
    missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    _validate_fields(data)

    proposal = Proposal(
        market_request_id=mr.id,
        vendor_id=vendor.id,
        status=ProposalStatus.DRAFT.value,
        total_price=rules.compute_total_price(data["quantity"], data["unit_price"]),
        **data,
    )

    with unit_of_work(db):
        db.add(proposal)
        db.flush()
        # The counter bump doubles as the open-status re-check
        guarded_update(
            db, MarketRequest, mr.id, OPEN,
            {MarketRequest.proposals_count: MarketRequest.proposals_count + 1},
            "Market request",
        )
        increment(db, Vendor, vendor.id, total_proposals=1)
        record_audit(
            db, vendor, "create_proposal", "proposal", proposal.id,
            details={"market_request_id": mr.id, "total_price": proposal.total_price},
            to_status=ProposalStatus.DRAFT.value,
        )
    return proposal


def update_proposal(db: Session, principal: Principal, proposal_id: str, fields: Dict[str, Any]) -> Proposal:
    vendor, proposal = _owned(db, principal, proposal_id, "update this proposal")
    if not proposal.is_editable:
        raise StateError("Only draft proposals can be edited", {"status": proposal.status})

    data = rules.filter_fields(fields, rules.PROPOSAL_UPDATABLE_FIELDS)
    _validate_fields(data)
    if not data:
        return proposal

    values = {getattr(Proposal, k): v for k, v in data.items()}
    if "quantity" in data or "unit_price" in data:
        values[Proposal.total_price] = rules.compute_total_price(
            data.get("quantity", proposal.quantity),
            data.get("unit_price", proposal.unit_price),
        )

    with unit_of_work(db):
        guarded_update(db, Proposal, proposal.id, [ProposalStatus.DRAFT.value], values, "Proposal")
        record_audit(
            db, vendor, "update_proposal", "proposal", proposal.id,
            details={"fields": sorted(data)},
        )
    db.refresh(proposal)
    return proposal


def submit_proposal(db: Session, principal: Principal, proposal_id: str) -> Proposal:
    vendor, proposal = _owned(db, principal, proposal_id, "submit this proposal")
    if proposal.status != ProposalStatus.DRAFT.value:
        raise StateError("Only draft proposals can be submitted", {"status": proposal.status})
    mr = proposal.market_request
    _ensure_accepting_proposals(mr)

    with unit_of_work(db):
        assert_status(db, MarketRequest, mr.id, OPEN, "Market request")
        guarded_update(
            db, Proposal, proposal.id, [ProposalStatus.DRAFT.value],
            {
                Proposal.status: ProposalStatus.SUBMITTED.value,
                Proposal.submitted_at: proposal.submitted_at or rules.utcnow(),
            },
            "Proposal",
        )
        record_audit(
            db, vendor, "submit_proposal", "proposal", proposal.id,
            from_status=ProposalStatus.DRAFT.value, to_status=ProposalStatus.SUBMITTED.value,
        )
    db.refresh(proposal)
    return proposal


def withdraw_proposal(
    db: Session, principal: Principal, proposal_id: str, reason: Optional[str] = None
) -> Proposal:
    """proposals_count is cumulative and is not decremented here."""
    vendor, proposal = _owned(db, principal, proposal_id, "withdraw this proposal")
    if not proposal.can_be_withdrawn:
        raise StateError("Proposal cannot be withdrawn in its current state", {"status": proposal.status})

    previous = proposal.status
    values = {
        Proposal.status: ProposalStatus.WITHDRAWN.value,
        Proposal.withdrawn_at: proposal.withdrawn_at or rules.utcnow(),
    }
    if reason:
        values[Proposal.vendor_notes] = reason

    with unit_of_work(db):
        guarded_update(db, Proposal, proposal.id, REVIEWABLE, values, "Proposal")
        record_audit(
            db, vendor, "withdraw_proposal", "proposal", proposal.id,
            details={"reason": reason} if reason else None,
            from_status=previous, to_status=ProposalStatus.WITHDRAWN.value,
        )
    db.refresh(proposal)
    return proposal


def delete_proposal(db: Session, principal: Principal, proposal_id: str) -> None:
    vendor, proposal = _owned(db, principal, proposal_id, "delete this proposal")
    with unit_of_work(db):
        deleted = (
            db.query(Proposal)
            .filter(Proposal.id == proposal.id, Proposal.status == ProposalStatus.DRAFT.value)
            .delete(synchronize_session=False)
        )
        if not deleted:
            raise StateError("Only draft proposals can be deleted")
        record_audit(db, vendor, "delete_proposal", "proposal", proposal_id)
    db.expunge(proposal)


# ============= REVIEWER COMMANDS =============

def evaluate_proposal(
    db: Session,
    principal: Principal,
    proposal_id: str,
    scores: List[Dict[str, Any]],
    overall_notes: Optional[str] = None,
) -> Proposal:
    """Manual scoring; always moves the proposal from submitted to under_review."""
    reviewer, proposal = _reviewed(db, principal, proposal_id, "evaluate proposals")
    if proposal.status != ProposalStatus.SUBMITTED.value:
        raise StateError("Only submitted proposals can be evaluated", {"status": proposal.status})

    totals = rules.compute_evaluation_scores(scores)
    now = rules.utcnow()
    evaluation = {
        "scores": scores,
        **totals,
        "overall_notes": overall_notes,
        "evaluated_by": reviewer.id,
        "evaluated_at": now.isoformat(),
    }

    with unit_of_work(db):
        guarded_update(
            db, Proposal, proposal.id, [ProposalStatus.SUBMITTED.value],
            {
                Proposal.status: ProposalStatus.UNDER_REVIEW.value,
                Proposal.evaluation: evaluation,
                Proposal.reviewed_at: proposal.reviewed_at or now,
            },
            "Proposal",
        )
        record_audit(
            db, reviewer, "evaluate_proposal", "proposal", proposal.id,
            details={"percentage_score": totals["percentage_score"]},
            from_status=ProposalStatus.SUBMITTED.value,
            to_status=ProposalStatus.UNDER_REVIEW.value,
        )
    db.refresh(proposal)
    return proposal


def accept_proposal(
    db: Session, principal: Principal, proposal_id: str, manager_notes: Optional[str] = None
) -> Proposal:
    """Accepting a proposal awards its market request; only one proposal can ever win."""
    reviewer, proposal = _reviewed(db, principal, proposal_id, "accept proposals")
    if proposal.status not in REVIEWABLE:
        raise StateError("Proposal cannot be accepted in its current state", {"status": proposal.status})
    mr = proposal.market_request
    if mr.status != MarketRequestStatus.OPEN.value:
        raise StateError(f"Market request is already {mr.status}")

    previous = proposal.status
    with unit_of_work(db):
        apply_award(db, mr, proposal, REVIEWABLE)
        if manager_notes:
            db.query(Proposal).filter(Proposal.id == proposal.id).update(
                {Proposal.manager_notes: manager_notes}, synchronize_session=False
            )
        record_audit(
            db, reviewer, "accept_proposal", "proposal", proposal.id,
            details={"market_request_id": mr.id},
            from_status=previous, to_status=ProposalStatus.ACCEPTED.value,
        )

    logger.info(f"Proposal {proposal.id} accepted; market request {mr.id} awarded")
    db.refresh(proposal)
    return proposal


def reject_proposal(
    db: Session,
    principal: Principal,
    proposal_id: str,
    rejection_reason: Optional[str] = None,
    manager_notes: Optional[str] = None,
) -> Proposal:
    reviewer, proposal = _reviewed(db, principal, proposal_id, "reject proposals")
    if proposal.status not in REVIEWABLE:
        raise StateError("Proposal cannot be rejected in its current state", {"status": proposal.status})

    previous = proposal.status
    now = rules.utcnow()
    values = {
        Proposal.status: ProposalStatus.REJECTED.value,
        Proposal.rejected_at: proposal.rejected_at or now,
        Proposal.reviewed_at: proposal.reviewed_at or now,
    }
    if rejection_reason:
        values[Proposal.rejection_reason] = rejection_reason
    if manager_notes:
        values[Proposal.manager_notes] = manager_notes

    with unit_of_work(db):
        guarded_update(db, Proposal, proposal.id, REVIEWABLE, values, "Proposal")
        increment(db, Vendor, proposal.vendor_id, rejected_proposals=1)
        record_audit(
            db, reviewer, "reject_proposal", "proposal", proposal.id,
            details={"rejection_reason": rejection_reason} if rejection_reason else None,
            from_status=previous, to_status=ProposalStatus.REJECTED.value,
        )
    db.refresh(proposal)
    return proposal


# ============= READS =============

def get_proposal(db: Session, principal: Principal, proposal_id: str) -> Proposal:
    proposal = get_or_404(db, Proposal, proposal_id, "Proposal")
    if isinstance(principal, VendorPrincipal):
        if proposal.vendor_id != principal.id:
            raise AuthorizationError("Not authorized to view this proposal")
        return proposal

    member = require_org_user(principal, "view proposals")
    require_same_org(member, proposal.market_request.organization_id, "view proposals")
    # Drafts stay private to the vendor
    if proposal.status == ProposalStatus.DRAFT.value:
        raise AuthorizationError("Draft proposals are not visible to the buyer")
    return proposal


def list_proposals(
    db: Session,
    principal: Principal,
    market_request_id: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> List[Proposal]:
    """Vendors see their own proposals; organization users those on their market requests."""
    query = db.query(Proposal)
    if isinstance(principal, VendorPrincipal):
        query = query.filter(Proposal.vendor_id == principal.id)
    else:
        member: UserPrincipal = require_org_user(principal, "list proposals")
        query = query.join(MarketRequest, Proposal.market_request_id == MarketRequest.id).filter(
            MarketRequest.organization_id == member.organization_id,
            Proposal.status != ProposalStatus.DRAFT.value,
        )

    if market_request_id:
        query = query.filter(Proposal.market_request_id == market_request_id)
    if status:
        query = query.filter(Proposal.status == status)

    return apply_pagination(query.order_by(Proposal.created_at.desc()), skip, limit).all()
