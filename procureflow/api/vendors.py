"""
Vendors API routes: directory for organizations, profile and dashboard for vendors.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from procureflow.db.session import get_db
from procureflow.db.models import ProposalStatus
from procureflow.core.rbac import Principal, get_current_principal
from procureflow.api.proposals import ProposalResponse
from procureflow.services import vendors

router = APIRouter(prefix="/api/vendors", tags=["Vendors"])


# ============= SCHEMAS =============

class VendorUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    company_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, pattern=r'^\+?[\d\s\-()]+$')
    specialization: Optional[List[str]] = None
    location: Optional[Dict[str, Any]] = None
    description: Optional[str] = Field(None, max_length=2000)
    certifications: Optional[List[str]] = None
    portfolio: Optional[List[Dict[str, Any]]] = None
    preferences: Optional[Dict[str, Any]] = None


class VendorResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    company_name: Optional[str]
    phone: Optional[str]
    specialization: Optional[List[str]]
    location: Optional[Dict[str, Any]]
    description: Optional[str]
    certifications: Optional[List[str]]
    portfolio: Optional[List[Dict[str, Any]]]
    rating: Optional[float]
    total_proposals: int
    accepted_proposals: int
    rejected_proposals: int
    is_active: bool
    is_verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    skip: int
    limit: int
    total: int


class VendorListResponse(BaseModel):
    vendors: List[VendorResponse]
    pagination: Pagination


class RecentActivity(BaseModel):
    proposal_id: str
    market_request_id: str
    market_request_title: Optional[str]
    status: str
    total_price: float
    currency: Optional[str]
    submitted_at: Optional[datetime]


class DashboardResponse(BaseModel):
    proposals: Dict[str, float]
    market_requests: Dict[str, int]
    recent_activity: List[RecentActivity]


# ============= VENDOR ROUTES =============

@router.get("", response_model=VendorListResponse)
async def list_vendors(
    specialization: Optional[str] = Query(None, description="Filter by specialization tag"),
    location: Optional[str] = Query(None, description="Match anywhere in the location"),
    is_active: Optional[bool] = None,
    search: Optional[str] = Query(None, description="Search by name, company or email"),
    sort_by: str = Query("first_name"),
    sort_order: Literal["asc", "desc"] = "asc",
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Vendor directory for organization users."""
    found, total = vendors.list_vendors(
        db, principal, specialization, location, is_active, search, sort_by, sort_order, skip, limit
    )
    return VendorListResponse(
        vendors=found,
        pagination=Pagination(skip=skip, limit=limit, total=total),
    )


@router.get("/dashboard", response_model=DashboardResponse)
async def vendor_dashboard(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return vendors.vendor_dashboard(db, principal)


@router.get("/proposals", response_model=List[ProposalResponse])
async def list_vendor_proposals(
    status: Optional[ProposalStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return vendors.list_vendor_proposals(db, principal, status.value if status else None, skip, limit)


@router.get("/{vendor_id}", response_model=VendorResponse)
async def get_vendor(
    vendor_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return vendors.get_vendor(db, principal, vendor_id)


@router.patch("/{vendor_id}", response_model=VendorResponse)
async def update_vendor(
    vendor_id: str,
    payload: VendorUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Vendors edit their own directory entry."""
    return vendors.update_vendor_profile(db, principal, vendor_id, payload.model_dump(exclude_unset=True))
