"""
Vendor directory, vendor self-service profile and the vendor dashboard.
"""
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from procureflow.core.errors import AuthorizationError, ValidationError
from procureflow.core.rbac import Principal, VendorPrincipal, require_org_user, require_vendor
from procureflow.db.models import InterestedVendor, Proposal, ProposalStatus, Vendor
from procureflow.services import accounts, proposals
from procureflow.services.persistence import apply_pagination, get_or_404

SORTABLE_FIELDS = {
    "first_name": Vendor.first_name,
    "last_name": Vendor.last_name,
    "company_name": Vendor.company_name,
    "rating": Vendor.rating,
    "accepted_proposals": Vendor.accepted_proposals,
    "created_at": Vendor.created_at,
}

RECENT_ACTIVITY_LIMIT = 5


# ============= DIRECTORY =============

def list_vendors(
    db: Session,
    principal: Principal,
    specialization: Optional[str] = None,
    location: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    sort_by: str = "first_name",
    sort_order: str = "asc",
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[Vendor], int]:
    """
    Browse vendors; returns the page and the unpaginated total.

    Organization users only: vendors never browse their competitors.
    """
    require_org_user(principal, "browse the vendor directory")
    if sort_by not in SORTABLE_FIELDS:
        raise ValidationError(f"Cannot sort vendors by {sort_by}", {"allowed": sorted(SORTABLE_FIELDS)})
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be 'asc' or 'desc'")

    query = db.query(Vendor)
    if is_active is not None:
        query = query.filter(Vendor.is_active == is_active)
    if specialization:
        # specialization and location are JSON; match against their serialized text
        query = query.filter(cast(Vendor.specialization, String).ilike(f'%"{specialization}"%'))
    if location:
        query = query.filter(cast(Vendor.location, String).ilike(f"%{location}%"))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Vendor.first_name.ilike(pattern),
            Vendor.last_name.ilike(pattern),
            Vendor.company_name.ilike(pattern),
            Vendor.email.ilike(pattern),
        ))

    total = query.count()
    column = SORTABLE_FIELDS[sort_by]
    ordered = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Vendor.id)
    return apply_pagination(ordered, skip, limit).all(), total


def get_vendor(db: Session, principal: Principal, vendor_id: str) -> Vendor:
    if isinstance(principal, VendorPrincipal) and principal.id != vendor_id:
        raise AuthorizationError("Vendors can only view their own profile")
    return get_or_404(db, Vendor, vendor_id, "Vendor")


def update_vendor_profile(
    db: Session, principal: Principal, vendor_id: str, fields: Dict[str, Any]
) -> Vendor:
    vendor = require_vendor(principal, "update vendor profiles")
    if vendor.id != vendor_id:
        raise AuthorizationError("Can only update your own profile")
    return accounts.update_profile(db, vendor, fields)


# ============= DASHBOARD =============

def vendor_dashboard(db: Session, principal: Principal) -> Dict[str, Any]:
    """Proposal counts per status, win rate, requests viewed and recent activity."""
    vendor = require_vendor(principal, "access the vendor dashboard")

    counts = dict(
        db.query(Proposal.status, func.count(Proposal.id))
        .filter(Proposal.vendor_id == vendor.id)
        .group_by(Proposal.status)
        .all()
    )
    by_status = {s.value: counts.get(s.value, 0) for s in ProposalStatus}
    total = sum(by_status.values())
    accepted = by_status[ProposalStatus.ACCEPTED.value]

    viewed = (
        db.query(func.count(InterestedVendor.id))
        .filter(InterestedVendor.vendor_id == vendor.id)
        .scalar()
    )

    recent = (
        db.query(Proposal)
        .filter(Proposal.vendor_id == vendor.id)
        .order_by(Proposal.created_at.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
        .all()
    )

    return {
        "proposals": dict(
            by_status,
            total=total,
            win_rate=accepted / total * 100 if total else 0.0,
        ),
        "market_requests": {"viewed": viewed or 0},
        "recent_activity": [
            {
                "proposal_id": p.id,
                "market_request_id": p.market_request_id,
                "market_request_title": p.market_request.title if p.market_request else None,
                "status": p.status,
                "total_price": p.total_price,
                "currency": p.currency,
                "submitted_at": p.submitted_at,
            }
            for p in recent
        ],
    }


def list_vendor_proposals(
    db: Session,
    principal: Principal,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
) -> List[Proposal]:
    vendor = require_vendor(principal, "list vendor proposals")
    return proposals.list_proposals(db, vendor, status=status, skip=skip, limit=limit)
