"""
RFP request workflow: create, review, update, delete and conversion into
a market request.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from procureflow.core import rules
from procureflow.core.errors import AuthorizationError, StateError, ValidationError
from procureflow.core.logging import get_logger
from procureflow.core.rbac import Principal, Role, require_org_user
from procureflow.db.models import RFPRequest, RFPStatus, Urgency, User
from procureflow.services.accounts import validate_manager
from procureflow.services.audit import record_audit
from procureflow.services.market_requests import create_market_request
from procureflow.services.persistence import (
    apply_pagination, get_or_404, guarded_update, unit_of_work,
)

logger = get_logger(__name__)

REVIEW_DECISIONS = (
    RFPStatus.APPROVED.value,
    RFPStatus.REJECTED.value,
    RFPStatus.NEEDS_CLARIFICATION.value,
)

# needs_clarification sends the request back for another review round
REVIEWABLE_STATUSES = (RFPStatus.PENDING.value, RFPStatus.NEEDS_CLARIFICATION.value)

REQUIRED_FIELDS = ("title", "description", "category", "quantity", "justification")


def _validate_fields(fields: Dict[str, Any]) -> None:
    if "category" in fields and fields["category"] not in rules.CATEGORIES:
        raise ValidationError(f"Unknown category: {fields['category']}")
    if "urgency" in fields and fields["urgency"] not in [u.value for u in Urgency]:
        raise ValidationError(f"Unknown urgency: {fields['urgency']}")
    if "quantity" in fields:
        rules.validate_quantity(fields["quantity"])
    if fields.get("budget_estimate") is not None:
        rules.validate_price(fields["budget_estimate"], "budget_estimate")
    if "currency" in fields:
        rules.validate_currency(fields["currency"])


def create_rfp_request(db: Session, principal: Principal, fields: Dict[str, Any]) -> RFPRequest:
    member = require_org_user(principal, "create RFP requests")
    requester = get_or_404(db, User, member.id, "User")

    if requester.manager_id:
        manager_id = requester.manager_id
    elif requester.role in (Role.MANAGER.value, Role.ADMIN.value):
        manager_id = requester.id
    else:
        raise ValidationError("You must have a manager assigned to create RFP requests")

    if manager_id != requester.id:
        validate_manager(db, requester.organization_id, manager_id)

    data = rules.filter_fields(fields, rules.RFP_UPDATABLE_FIELDS)
    missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    _validate_fields(data)

    rfp = RFPRequest(
        requested_by_id=requester.id,
        organization_id=requester.organization_id,
        manager_id=manager_id,
        status=RFPStatus.PENDING.value,
        **data,
    )
    with unit_of_work(db):
        db.add(rfp)
        db.flush()
        record_audit(
            db, member, "create_rfp_request", "rfp_request", rfp.id,
            details={"title": rfp.title, "manager_id": manager_id},
            to_status=RFPStatus.PENDING.value,
        )
    return rfp


def _can_view(member, rfp: RFPRequest) -> bool:
    if rfp.organization_id != member.organization_id:
        return False
    if member.role == Role.ADMIN:
        return True
    return member.id in (rfp.requested_by_id, rfp.manager_id)


def get_rfp_request(db: Session, principal: Principal, rfp_id: str) -> RFPRequest:
    member = require_org_user(principal, "view RFP requests")
    rfp = get_or_404(db, RFPRequest, rfp_id, "RFP request")
    if not _can_view(member, rfp):
        raise AuthorizationError("Not authorized to view this RFP request")
    return rfp


def list_rfp_requests(
    db: Session,
    principal: Principal,
    status: Optional[str] = None,
    category: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> List[RFPRequest]:
    """Users see their own requests, managers the ones assigned to them, admins everything."""
    member = require_org_user(principal, "list RFP requests")
    query = db.query(RFPRequest).filter(RFPRequest.organization_id == member.organization_id)

    if member.role == Role.USER:
        query = query.filter(RFPRequest.requested_by_id == member.id)
    elif member.role == Role.MANAGER:
        query = query.filter(
            or_(RFPRequest.manager_id == member.id, RFPRequest.requested_by_id == member.id)
        )

    if status:
        query = query.filter(RFPRequest.status == status)
    if category:
        query = query.filter(RFPRequest.category == category)

    return apply_pagination(query.order_by(RFPRequest.created_at.desc()), skip, limit).all()


def review_rfp_request(
    db: Session,
    principal: Principal,
    rfp_id: str,
    decision: str,
    manager_notes: Optional[str] = None,
    clarification_notes: Optional[str] = None,
    rejection_reason: Optional[str] = None,
) -> RFPRequest:
    member = require_org_user(principal, "review RFP requests")
    rfp = get_or_404(db, RFPRequest, rfp_id, "RFP request")

    is_assigned = rfp.manager_id == member.id and member.role in (Role.MANAGER, Role.ADMIN)
    is_org_admin = member.role == Role.ADMIN and rfp.organization_id == member.organization_id
    if not (is_assigned or is_org_admin):
        raise AuthorizationError("Only the assigned manager or an admin can review this request")

    if decision not in REVIEW_DECISIONS:
        raise ValidationError(f"Invalid review decision: {decision}")
    if rfp.status not in REVIEWABLE_STATUSES:
        raise StateError(f"RFP request has already been reviewed (status: {rfp.status})")

    previous = rfp.status
    values = {
        RFPRequest.status: decision,
        RFPRequest.reviewed_at: rfp.reviewed_at or rules.utcnow(),
    }
    if manager_notes:
        values[RFPRequest.manager_notes] = manager_notes
    if clarification_notes:
        values[RFPRequest.clarification_notes] = clarification_notes
    if rejection_reason:
        values[RFPRequest.rejection_reason] = rejection_reason

    with unit_of_work(db):
        guarded_update(db, RFPRequest, rfp.id, REVIEWABLE_STATUSES, values, "RFP request")
        record_audit(
            db, member, "review_rfp_request", "rfp_request", rfp.id,
            from_status=previous, to_status=decision,
        )
    db.refresh(rfp)
    return rfp


def _require_requester(member, rfp: RFPRequest, action: str) -> None:
    if rfp.requested_by_id != member.id:
        raise AuthorizationError(f"Only the original requester can {action} this request")


def update_rfp_request(
    db: Session, principal: Principal, rfp_id: str, fields: Dict[str, Any]
) -> RFPRequest:
    member = require_org_user(principal, "update RFP requests")
    rfp = get_or_404(db, RFPRequest, rfp_id, "RFP request")
    _require_requester(member, rfp, "update")

    data = rules.filter_fields(fields, rules.RFP_UPDATABLE_FIELDS)
    _validate_fields(data)
    if not data:
        return rfp

    with unit_of_work(db):
        guarded_update(
            db, RFPRequest, rfp.id, [RFPStatus.PENDING.value],
            {getattr(RFPRequest, k): v for k, v in data.items()},
            "RFP request",
        )
        record_audit(
            db, member, "update_rfp_request", "rfp_request", rfp.id,
            details={"fields": sorted(data)},
        )
    db.refresh(rfp)
    return rfp


def delete_rfp_request(db: Session, principal: Principal, rfp_id: str) -> None:
    member = require_org_user(principal, "delete RFP requests")
    rfp = get_or_404(db, RFPRequest, rfp_id, "RFP request")
    _require_requester(member, rfp, "delete")

    with unit_of_work(db):
        deleted = (
            db.query(RFPRequest)
            .filter(RFPRequest.id == rfp.id, RFPRequest.status == RFPStatus.PENDING.value)
            .delete(synchronize_session=False)
        )
        if not deleted:
            raise StateError("Only pending RFP requests can be deleted")
        record_audit(db, member, "delete_rfp_request", "rfp_request", rfp_id)
    db.expunge(rfp)


def convert_to_market(
    db: Session, principal: Principal, rfp_id: str, fields: Dict[str, Any]
):
    """Publish an approved RFP request as an open market request."""
    return create_market_request(db, principal, rfp_id, fields)
