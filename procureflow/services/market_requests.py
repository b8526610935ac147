"""
Market request lifecycle: open -> {closed, awarded, cancelled}.

Creation converts an approved RFP request; award is one of the two paths
(with proposal acceptance) that can pick the single winning proposal.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from procureflow.core import rules
from procureflow.core.errors import (
    AuthorizationError, ConflictError, StateError, ValidationError,
)
from procureflow.core.logging import get_logger
from procureflow.core.rbac import (
    Principal, UserPrincipal, VendorPrincipal,
    require_org_user, require_reviewer, require_same_org, require_vendor,
)
from procureflow.db.models import (
    InterestedVendor, MarketRequest, MarketRequestStatus, Proposal, ProposalStatus,
    RFPRequest, RFPStatus, Vendor, generate_id,
)
from procureflow.services.audit import record_audit
from procureflow.services.persistence import (
    apply_pagination, get_or_404, guarded_update, increment, unit_of_work,
)

logger = get_logger(__name__)

OPEN = [MarketRequestStatus.OPEN.value]


def _validate_fields(fields: Dict[str, Any]) -> None:
    if "deadline" in fields:
        if fields["deadline"] is None:
            raise ValidationError("Deadline is required")
        fields["deadline"] = rules.to_utc(fields["deadline"])
        rules.validate_deadline_future(fields["deadline"])
    if "evaluation_criteria" in fields:
        rules.validate_criteria_weights(fields["evaluation_criteria"])
    if "quantity" in fields:
        rules.validate_quantity(fields["quantity"])
    if fields.get("max_budget") is not None:
        rules.validate_price(fields["max_budget"], "max_budget")
    if "currency" in fields:
        rules.validate_currency(fields["currency"])


def _require_creator(principal: Principal, mr: MarketRequest, action: str) -> UserPrincipal:
    member = require_org_user(principal, action)
    if mr.created_by_id != member.id:
        raise AuthorizationError(f"Only the creator of this market request can {action}")
    return member


# ============= CREATION =============

def create_market_request(
    db: Session, principal: Principal, rfp_request_id: str, fields: Dict[str, Any]
) -> MarketRequest:
    """
    Convert an approved, unclaimed RFP request into an open market request.

    The RFP flip (approved -> converted_to_market) is a guarded update, and
    market_requests.rfp_request_id is unique, so a request converts at most
    once even under concurrent calls.
    """
    member = require_reviewer(principal, "create market requests")
    rfp = get_or_404(db, RFPRequest, rfp_request_id, "RFP request")
    require_same_org(member, rfp.organization_id, "convert RFP requests")

    if rfp.status != RFPStatus.APPROVED.value or rfp.market_request_id:
        raise StateError(
            "Only approved RFP requests that have not been converted can be published",
            {"status": rfp.status},
        )

    data = rules.filter_fields(fields, rules.MARKET_REQUEST_UPDATABLE_FIELDS)
    if "deadline" not in data:
        raise ValidationError("Deadline is required")
    data.setdefault("title", rfp.title)
    data.setdefault("description", rfp.description)
    data.setdefault("quantity", rfp.quantity)
    data.setdefault("currency", rfp.currency or "USD")
    data.setdefault("specifications", rfp.specifications or {})
    if data.get("max_budget") is None and rfp.budget_estimate is not None:
        data["max_budget"] = rfp.budget_estimate
    _validate_fields(data)

    mr_id = generate_id()
    mr = MarketRequest(
        id=mr_id,
        category=rfp.category,
        rfp_request_id=rfp.id,
        created_by_id=member.id,
        organization_id=rfp.organization_id,
        status=MarketRequestStatus.OPEN.value,
        **data,
    )

    with unit_of_work(db):
        guarded_update(
            db, RFPRequest, rfp.id, [RFPStatus.APPROVED.value],
            {
                RFPRequest.status: RFPStatus.CONVERTED_TO_MARKET.value,
                RFPRequest.market_request_id: mr_id,
            },
            "RFP request",
        )
        db.add(mr)
        db.flush()
        record_audit(
            db, member, "convert_to_market", "rfp_request", rfp.id,
            details={"market_request_id": mr_id},
            from_status=RFPStatus.APPROVED.value,
            to_status=RFPStatus.CONVERTED_TO_MARKET.value,
        )
        record_audit(
            db, member, "create_market_request", "market_request", mr_id,
            details={"title": mr.title, "rfp_request_id": rfp.id},
            to_status=MarketRequestStatus.OPEN.value,
        )

    logger.info(f"RFP request {rfp.id} published as market request {mr_id}")
    return mr


# ============= READS =============

def _vendor_has_proposal(db: Session, vendor_id: str, mr_id: str) -> bool:
    return db.query(Proposal.id).filter(
        Proposal.market_request_id == mr_id, Proposal.vendor_id == vendor_id
    ).first() is not None


def _record_first_view(db: Session, mr: MarketRequest, vendor_id: str, is_interested: bool) -> None:
    """Insert the vendor's interest row and bump views_count in the same transaction."""
    db.add(InterestedVendor(
        market_request_id=mr.id,
        vendor_id=vendor_id,
        viewed_at=rules.utcnow(),
        is_interested=is_interested,
    ))
    db.flush()
    increment(db, MarketRequest, mr.id, views_count=1)


def view_market_request(db: Session, principal: Principal, mr_id: str) -> MarketRequest:
    """
    Fetch a market request for display.

    A vendor's first look at an open request is recorded once in the
    interested-vendor list and counted in views_count.
    """
    mr = get_or_404(db, MarketRequest, mr_id, "Market request")

    if isinstance(principal, VendorPrincipal):
        is_open = mr.status == MarketRequestStatus.OPEN.value
        if not is_open and not _vendor_has_proposal(db, principal.id, mr.id):
            raise AuthorizationError("This market request is no longer open")
        if is_open:
            existing = db.query(InterestedVendor.id).filter(
                InterestedVendor.market_request_id == mr.id,
                InterestedVendor.vendor_id == principal.id,
            ).first()
            if not existing:
                try:
                    with unit_of_work(db):
                        _record_first_view(db, mr, principal.id, False)
                        record_audit(db, principal, "view_market_request", "market_request", mr.id)
                except ConflictError:
                    # A concurrent request already recorded this vendor's first view
                    logger.debug(f"First view of {mr.id} by vendor {principal.id} already recorded")
                db.refresh(mr)
        return mr

    member = require_org_user(principal, "view market requests")
    require_same_org(member, mr.organization_id, "view market requests")
    return mr


def interested_vendors_for(principal: Principal, mr: MarketRequest) -> Optional[List[InterestedVendor]]:
    """Vendors never see who else is looking at a request."""
    if isinstance(principal, VendorPrincipal):
        return None
    return list(mr.interested_vendors)


def list_market_requests(
    db: Session,
    principal: Principal,
    status: Optional[str] = None,
    category: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> List[MarketRequest]:
    """Vendors browse open requests; organization users see their organization's."""
    query = db.query(MarketRequest)
    if isinstance(principal, VendorPrincipal):
        query = query.filter(MarketRequest.status == MarketRequestStatus.OPEN.value)
        query = query.filter(MarketRequest.deadline >= rules.utcnow())
    else:
        query = query.filter(MarketRequest.organization_id == principal.organization_id)
        if status:
            query = query.filter(MarketRequest.status == status)

    if category:
        query = query.filter(MarketRequest.category == category)

    return apply_pagination(query.order_by(MarketRequest.created_at.desc()), skip, limit).all()


# ============= VENDOR INTEREST =============

def _set_interest(db: Session, mr: MarketRequest, vendor_id: str, is_interested: bool) -> bool:
    """Update an existing interest row; False when the vendor has none yet."""
    updated = db.query(InterestedVendor).filter(
        InterestedVendor.market_request_id == mr.id,
        InterestedVendor.vendor_id == vendor_id,
    ).update({InterestedVendor.is_interested: is_interested}, synchronize_session=False)
    return updated > 0


def mark_interest(db: Session, principal: Principal, mr_id: str, is_interested: bool) -> InterestedVendor:
    vendor = require_vendor(principal, "mark interest")
    mr = get_or_404(db, MarketRequest, mr_id, "Market request")
    if mr.status != MarketRequestStatus.OPEN.value:
        raise StateError("Market request is not open")

    details = {"is_interested": is_interested}
    try:
        with unit_of_work(db):
            if not _set_interest(db, mr, vendor.id, is_interested):
                _record_first_view(db, mr, vendor.id, is_interested)
            record_audit(db, vendor, "mark_interest", "market_request", mr.id, details=details)
    except ConflictError:
        # A concurrent request inserted the row first
        logger.debug(f"Interest row for {mr.id} by vendor {vendor.id} already exists, updating")
        with unit_of_work(db):
            if not _set_interest(db, mr, vendor.id, is_interested):
                raise ConflictError("Interest could not be recorded", {"market_request_id": mr.id})
            record_audit(db, vendor, "mark_interest", "market_request", mr.id, details=details)

    return db.query(InterestedVendor).filter(
        InterestedVendor.market_request_id == mr.id,
        InterestedVendor.vendor_id == vendor.id,
    ).one()


# ============= CREATOR COMMANDS =============

def update_market_request(
    db: Session, principal: Principal, mr_id: str, fields: Dict[str, Any]
) -> MarketRequest:
    mr = get_or_404(db, MarketRequest, mr_id, "Market request")
    member = _require_creator(principal, mr, "update this market request")
    if mr.status != MarketRequestStatus.OPEN.value:
        raise StateError("Only open market requests can be updated")

    data = rules.filter_fields(fields, rules.MARKET_REQUEST_UPDATABLE_FIELDS)
    _validate_fields(data)
    if not data:
        return mr

    with unit_of_work(db):
        guarded_update(
            db, MarketRequest, mr.id, OPEN,
            {getattr(MarketRequest, k): v for k, v in data.items()},
            "Market request",
        )
        record_audit(
            db, member, "update_market_request", "market_request", mr.id,
            details={"fields": sorted(data)},
        )
    db.refresh(mr)
    return mr


def _finish(
    db: Session, principal: Principal, mr_id: str, target: MarketRequestStatus,
    reason: Optional[str], action: str,
) -> MarketRequest:
    mr = get_or_404(db, MarketRequest, mr_id, "Market request")
    member = _require_creator(principal, mr, action)
    if mr.status != MarketRequestStatus.OPEN.value:
        raise StateError(f"Market request is already {mr.status}")

    values = {
        MarketRequest.status: target.value,
        MarketRequest.closed_at: mr.closed_at or rules.utcnow(),
    }
    if reason:
        values[MarketRequest.cancellation_reason] = reason

    with unit_of_work(db):
        guarded_update(db, MarketRequest, mr.id, OPEN, values, "Market request")
        record_audit(
            db, member, action, "market_request", mr.id,
            details={"reason": reason} if reason else None,
            from_status=MarketRequestStatus.OPEN.value, to_status=target.value,
        )
    db.refresh(mr)
    return mr


def close_market_request(db: Session, principal: Principal, mr_id: str, reason: Optional[str] = None) -> MarketRequest:
    return _finish(db, principal, mr_id, MarketRequestStatus.CLOSED, reason, "close_market_request")


def cancel_market_request(db: Session, principal: Principal, mr_id: str, reason: Optional[str] = None) -> MarketRequest:
    return _finish(db, principal, mr_id, MarketRequestStatus.CANCELLED, reason, "cancel_market_request")


def apply_award(db: Session, mr: MarketRequest, proposal: Proposal, from_statuses: List[str]) -> None:
    """
    Award cascade, run inside the caller's unit of work.

    The market request flip comes first and is guarded on `open`: whichever
    award/accept reaches it second matches no row and fails with StateError.
    """
    now = rules.utcnow()
    guarded_update(
        db, MarketRequest, mr.id, OPEN,
        {
            MarketRequest.status: MarketRequestStatus.AWARDED.value,
            MarketRequest.winning_proposal_id: proposal.id,
            MarketRequest.awarded_at: mr.awarded_at or now,
            MarketRequest.closed_at: mr.closed_at or now,
        },
        "Market request",
    )
    guarded_update(
        db, Proposal, proposal.id, from_statuses,
        {
            Proposal.status: ProposalStatus.ACCEPTED.value,
            Proposal.accepted_at: proposal.accepted_at or now,
        },
        "Proposal",
    )
    increment(db, Vendor, proposal.vendor_id, accepted_proposals=1)


def award_market_request(db: Session, principal: Principal, mr_id: str, proposal_id: str) -> MarketRequest:
    mr = get_or_404(db, MarketRequest, mr_id, "Market request")
    member = _require_creator(principal, mr, "award this market request")
    if mr.status != MarketRequestStatus.OPEN.value:
        raise StateError(f"Market request is already {mr.status}")

    proposal = get_or_404(db, Proposal, proposal_id, "Proposal")
    if proposal.market_request_id != mr.id:
        raise ConflictError("Proposal does not belong to this market request")
    if proposal.status != ProposalStatus.SUBMITTED.value:
        raise StateError(
            "Only submitted proposals can be awarded directly",
            {"status": proposal.status},
        )

    with unit_of_work(db):
        apply_award(db, mr, proposal, [ProposalStatus.SUBMITTED.value])
        record_audit(
            db, member, "award_market_request", "market_request", mr.id,
            details={"proposal_id": proposal.id, "vendor_id": proposal.vendor_id},
            from_status=MarketRequestStatus.OPEN.value,
            to_status=MarketRequestStatus.AWARDED.value,
        )

    logger.info(f"Market request {mr.id} awarded to proposal {proposal.id}")
    db.refresh(mr)
    return mr
